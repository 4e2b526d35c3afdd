"""Conversation persistence seen from the chat core.

Real storage lives outside this service; the gateway only depends on the
:class:`ConversationStore` protocol. :class:`InMemoryConversationStore` backs
development runs and tests.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from shared.schemas import ChatMessage, TokenUsage

PLACEHOLDER_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationNotFound(Exception):
    pass


@dataclass
class Conversation:
    id: int
    subject: str
    title: str = PLACEHOLDER_TITLE
    created_at: datetime = field(default_factory=utcnow)

    @property
    def has_placeholder_title(self) -> bool:
        return not self.title or self.title == PLACEHOLDER_TITLE


@dataclass
class StoredMessage:
    id: int
    conversation_id: int
    role: str
    content: str
    thinking: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    created_at: datetime = field(default_factory=utcnow)

    def as_chat_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.content)


class ConversationStore(Protocol):
    async def get_or_create(self, conversation_id: int, subject: str) -> Conversation: ...

    async def append_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        thinking: str | None = None,
        usage: TokenUsage | None = None,
    ) -> StoredMessage: ...

    async def list_messages(self, conversation_id: int) -> list[StoredMessage]: ...

    async def set_title(self, conversation_id: int, title: str) -> None: ...


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, list[StoredMessage]] = {}

    async def get_or_create(self, conversation_id: int, subject: str) -> Conversation:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = Conversation(id=conversation_id, subject=subject)
                self._conversations[conversation_id] = conversation
                self._messages[conversation_id] = []
            elif conversation.subject != subject:
                raise ConversationNotFound(conversation_id)
            return conversation

    async def append_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        thinking: str | None = None,
        usage: TokenUsage | None = None,
    ) -> StoredMessage:
        async with self._lock:
            if conversation_id not in self._conversations:
                raise ConversationNotFound(conversation_id)
            message = StoredMessage(
                id=next(self._ids),
                conversation_id=conversation_id,
                role=role,
                content=content,
                thinking=thinking,
            )
            if usage is not None:
                message.prompt_tokens = usage.prompt_tokens
                message.completion_tokens = usage.completion_tokens
                message.total_tokens = usage.total_tokens
            self._messages[conversation_id].append(message)
            return message

    async def list_messages(self, conversation_id: int) -> list[StoredMessage]:
        async with self._lock:
            messages = list(self._messages.get(conversation_id, []))
        return sorted(messages, key=lambda m: (m.created_at, m.id))

    async def set_title(self, conversation_id: int, title: str) -> None:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ConversationNotFound(conversation_id)
            conversation.title = title
