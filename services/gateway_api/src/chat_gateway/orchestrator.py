"""Single- and two-pass chat orchestration over the wire adapters.

A two-pass ("scaffolded") call first asks the model for a private plan, then
asks for the user-facing answer with that plan supplied as context. The passes
run strictly one after the other because the second depends on the first.
The orchestrator keeps no state between calls.
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import httpx

from chat_gateway.adapters import transport as wire
from chat_gateway.adapters.selector import get_adapter
from chat_gateway.errors import AdapterError
from chat_gateway.settings import Settings
from shared.schemas import (
    ChatMessage,
    ChatRequest,
    ChatResult,
    StreamEvent,
    TokenUsage,
    TwoPassTokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_PERSONA_PATH = Path(__file__).resolve().parent / "persona" / "default.md"
DEV_MODE_PREFIX = "[DEV MODE] Echo: "

PLANNING_PROMPT = """\
Analyze the user's request and create a structured plan:

1. Core Intent: What is the user actually asking?
2. Ambiguities: What details are unclear or missing?
3. Context Check: What relevant information from conversation history applies?
4. Assumptions: What assumptions need validation?
5. Clarifications Needed: What questions should be asked (if any)?
6. Response Strategy: If answerable, how should the response be structured?

If clarification is needed, state that clearly. Otherwise, provide a detailed plan.
"""

EXECUTION_WITH_PERSONA = (
    "{persona}\n\n---\n\n# Your Planning Analysis\n\n{thinking}\n\n---\n\n"
    "Now provide your final response based on this analysis."
)
EXECUTION_PLAIN = (
    "Here is your planning analysis:\n\n{thinking}\n\n"
    "Now provide your final response based on this analysis."
)

EventHandler = Callable[[StreamEvent], Awaitable[None] | None]


@lru_cache
def load_persona(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


@dataclass
class ChatTranscript:
    """Fold of a stream of events into the text a blocking call would return."""

    thinking: str = ""
    reply: str = ""
    error: str | None = None
    finished: bool = False

    def apply(self, event: StreamEvent) -> "ChatTranscript":
        if event.type == "thinking":
            self.thinking += event.content
        elif event.type == "response":
            self.reply += event.content
        elif event.type == "error":
            self.error = event.content
            self.finished = True
        elif event.type == "done":
            self.finished = True
        return self


class ChatOrchestrator:
    def __init__(
        self,
        settings: Settings,
        enabled: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        echo_delay: float | None = None,
    ) -> None:
        self._settings = settings
        self.enabled = settings.ai_enabled if enabled is None else enabled
        self._transport = transport
        self._echo_delay = (
            settings.dev_echo_delay_seconds if echo_delay is None else echo_delay
        )

    # ------------------------------------------------------------------
    # Message assembly
    # ------------------------------------------------------------------

    def persona(self) -> str:
        return load_persona(self._settings.persona_path or str(DEFAULT_PERSONA_PATH))

    def with_persona(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        if messages and messages[0].role == "system":
            return list(messages)
        return [ChatMessage(role="system", content=self.persona()), *messages]

    def planning_messages(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        return [ChatMessage(role="system", content=PLANNING_PROMPT), *messages]

    def execution_messages(
        self, messages: list[ChatMessage], thinking: str, use_persona: bool
    ) -> list[ChatMessage]:
        if use_persona:
            system = EXECUTION_WITH_PERSONA.format(persona=self.persona(), thinking=thinking)
        else:
            system = EXECUTION_PLAIN.format(thinking=thinking)
        return [ChatMessage(role="system", content=system), *messages]

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    async def complete(self, request: ChatRequest) -> ChatResult:
        if not self.enabled:
            return ChatResult(reply=self._echo_text(request), tokens=TokenUsage())

        model = self._settings.resolve_model(request.model)
        adapter = get_adapter(model)
        logger.info("chat using %s adapter model=%s", adapter.kind.value, model)

        if not request.use_scaffolding:
            messages = request.messages
            if request.use_persona:
                messages = self.with_persona(messages)
            return await wire.complete(adapter, self._settings, model, messages, self._transport)

        logger.info("starting planning pass model=%s", model)
        planning = await wire.complete(
            adapter,
            self._settings,
            model,
            self.planning_messages(request.messages),
            self._transport,
        )
        logger.info("starting execution pass model=%s", model)
        execution = await wire.complete(
            adapter,
            self._settings,
            model,
            self.execution_messages(request.messages, planning.reply, request.use_persona),
            self._transport,
        )
        return ChatResult(
            reply=execution.reply,
            thinking=planning.reply,
            tokens=TwoPassTokenUsage(planning=planning.tokens, execution=execution.tokens),
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def events(
        self, request: ChatRequest, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield thinking/response events followed by exactly one terminal event.

        Nothing is yielded after the terminal event. When ``cancel`` is set the
        stream stops without a terminal event, since nobody is listening.
        """
        try:
            async with aclosing(self._fragment_events(request, cancel)) as fragments:
                async for event in fragments:
                    yield event
        except AdapterError as exc:
            logger.warning("chat stream failed type=%s code=%s", exc.err_type, exc.code)
            yield StreamEvent.error(exc.message)
            return
        if cancel is not None and cancel.is_set():
            return
        yield StreamEvent.done()

    async def _fragment_events(
        self, request: ChatRequest, cancel: asyncio.Event | None
    ) -> AsyncIterator[StreamEvent]:
        if not self.enabled:
            for char in self._echo_text(request):
                yield StreamEvent.response(char)
                await asyncio.sleep(self._echo_delay)
            return

        model = self._settings.resolve_model(request.model)
        adapter = get_adapter(model)
        logger.info("chat stream using %s adapter model=%s", adapter.kind.value, model)

        if not request.use_scaffolding:
            messages = request.messages
            if request.use_persona:
                messages = self.with_persona(messages)
            async with aclosing(
                wire.stream(adapter, self._settings, model, messages, cancel, self._transport)
            ) as fragments:
                async for text in fragments:
                    yield StreamEvent.response(text)
            return

        transcript = ChatTranscript()
        logger.info("starting planning pass model=%s", model)
        async with aclosing(
            wire.stream(
                adapter,
                self._settings,
                model,
                self.planning_messages(request.messages),
                cancel,
                self._transport,
            )
        ) as fragments:
            async for text in fragments:
                event = StreamEvent.thinking(text)
                transcript.apply(event)
                yield event

        if cancel is not None and cancel.is_set():
            return

        logger.info("starting execution pass model=%s", model)
        execution = self.execution_messages(
            request.messages, transcript.thinking, request.use_persona
        )
        async with aclosing(
            wire.stream(adapter, self._settings, model, execution, cancel, self._transport)
        ) as fragments:
            async for text in fragments:
                yield StreamEvent.response(text)

    # ------------------------------------------------------------------
    # Unified entry point
    # ------------------------------------------------------------------

    async def run(
        self, request: ChatRequest, on_event: EventHandler | None = None
    ) -> ChatResult | None:
        if not request.stream:
            return await self.complete(request)
        if on_event is None:
            raise ValueError("streaming chat requires an on_event handler")
        async with aclosing(self.events(request)) as events:
            async for event in events:
                outcome = on_event(event)
                if inspect.isawaitable(outcome):
                    await outcome
        return None

    def _echo_text(self, request: ChatRequest) -> str:
        last = request.messages[-1].content if request.messages else ""
        return f"{DEV_MODE_PREFIX}{last}"


async def run_chat(
    orchestrator: ChatOrchestrator,
    messages: list[ChatMessage],
    model: str | None = None,
    *,
    use_persona: bool = False,
    use_scaffolding: bool = False,
    stream: bool = False,
    on_event: EventHandler | None = None,
) -> ChatResult | None:
    request = ChatRequest(
        messages=messages,
        model=model or "",
        stream=stream,
        use_persona=use_persona,
        use_scaffolding=use_scaffolding,
    )
    return await orchestrator.run(request, on_event)
