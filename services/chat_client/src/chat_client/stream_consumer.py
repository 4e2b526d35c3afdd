"""Client side of the chat stream.

``StreamConsumer`` opens ``/v1/conversations/{id}/messages`` with
``stream=True``, decodes the SSE frames as they arrive and folds them into a
``ClientStreamState`` that a UI can render at any moment.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum

import httpx

from chat_client.frames import SSEFrameDecoder
from chat_client.gateway_client import gateway_headers
from chat_client.settings import Settings
from shared.schemas import ConversationMessageIn

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "The response took too long. Please try again."
CONNECTION_LOST_MESSAGE = "Connection to the server was lost. Please try again."
UNTERMINATED_MESSAGE = "The response ended unexpectedly. Please try again."
DEFAULT_ERROR_MESSAGE = "Something went wrong. Please try again."


class Phase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    THINKING = "thinking"
    RESPONDING = "responding"
    DONE = "done"


@dataclass(frozen=True)
class PendingMessage:
    conversation_id: int
    content: str
    model: str | None = None
    use_persona: bool = False
    use_scaffolding: bool = False


@dataclass
class ClientStreamState:
    thinking_text: str = ""
    response_text: str = ""
    phase: Phase = Phase.IDLE
    error: str | None = None
    last_request: PendingMessage | None = field(default=None)


class StreamConsumer:
    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.state = ClientStreamState()
        self._transport = transport
        self._task: asyncio.Task | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._generation = 0
        self._timed_out_generation: int | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def send_message(
        self,
        conversation_id: int,
        content: str,
        model: str | None = None,
        use_persona: bool = False,
        use_scaffolding: bool = False,
    ) -> asyncio.Task:
        """Start streaming a reply and return the task reading it.

        Any stream still in flight is cancelled first. The returned task
        finishes normally on done, error and timeout. An invalid message raises
        ``pydantic.ValidationError`` before anything is cancelled or reset.
        """
        body = ConversationMessageIn(
            content=content,
            model=model,
            use_persona=use_persona,
            use_scaffolding=use_scaffolding,
            stream=True,
        ).model_dump()
        self.cleanup()
        message = PendingMessage(
            conversation_id=conversation_id,
            content=content,
            model=model,
            use_persona=use_persona,
            use_scaffolding=use_scaffolding,
        )
        self.state.thinking_text = ""
        self.state.response_text = ""
        self.state.error = None
        self.state.last_request = message
        self.state.phase = Phase.CONNECTING

        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._consume(message, body, generation))
        self._timeout_handle = loop.call_later(
            self.settings.stream_timeout_seconds, self._on_timeout, generation
        )
        return self._task

    async def retry_last_message(self) -> asyncio.Task | None:
        if self.state.last_request is None:
            return None
        return await self.send_message(**asdict(self.state.last_request))

    def cleanup(self) -> None:
        self._disarm_timeout()
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.info("cancelling in-flight chat stream")
            task.cancel()

    def _disarm_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_timeout(self, generation: int) -> None:
        self._timeout_handle = None
        if generation != self._generation or not self.active:
            return
        logger.warning(
            "chat stream timed out after %ss", self.settings.stream_timeout_seconds
        )
        self._timed_out_generation = generation
        self._task.cancel()

    def _fail(self, generation: int, message: str) -> None:
        if generation != self._generation:
            return
        self._disarm_timeout()
        self.state.error = message
        self.state.phase = Phase.IDLE

    def _finish(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._disarm_timeout()
        self.state.phase = Phase.DONE

    def _apply_frame(self, generation: int, frame: dict) -> bool:
        """Fold one decoded frame into the state; True when the stream is over."""
        frame_type = frame.get("type")
        content = frame.get("content") or ""
        if frame_type == "thinking":
            if self.state.phase == Phase.CONNECTING:
                self.state.phase = Phase.THINKING
            self.state.thinking_text += content
            return False
        if frame_type == "response":
            self.state.phase = Phase.RESPONDING
            self.state.response_text += content
            return False
        if frame_type == "done":
            self._finish(generation)
            return True
        if frame_type == "error":
            logger.warning("chat stream reported an error")
            self._fail(generation, content or DEFAULT_ERROR_MESSAGE)
            return True
        logger.debug("ignoring frame type=%s", frame_type)
        return False

    async def _consume(self, message: PendingMessage, body: dict, generation: int) -> None:
        url = (
            f"{self.settings.gateway_url}/v1/conversations/"
            f"{message.conversation_id}/messages"
        )
        decoder = SSEFrameDecoder()

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.gateway_timeout_seconds, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST", url, json=body, headers=gateway_headers(self.settings)
                ) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        logger.warning("chat stream rejected status=%s", resp.status_code)
                        self._fail(
                            generation, f"Server responded with status {resp.status_code}."
                        )
                        return
                    async for text in resp.aiter_text():
                        for frame in decoder.feed(text):
                            if self._apply_frame(generation, frame):
                                return
        except asyncio.CancelledError:
            if self._timed_out_generation == generation:
                self._fail(generation, TIMEOUT_MESSAGE)
                return
            logger.info("chat stream cancelled")
            raise
        except httpx.HTTPError as exc:
            logger.warning("chat stream connection failed: %s", exc.__class__.__name__)
            self._fail(generation, CONNECTION_LOST_MESSAGE)
            return
        except Exception:
            logger.exception("chat stream failed")
            self._fail(generation, DEFAULT_ERROR_MESSAGE)
            return

        logger.warning("chat stream ended without a terminal frame")
        self._fail(generation, UNTERMINATED_MESSAGE)
