import asyncio
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing

from fastapi.responses import StreamingResponse

from shared.schemas import StreamEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_COMMENT = "keep-alive"
INTERNAL_ERROR_MESSAGE = "internal error"
UNTERMINATED_MESSAGE = "stream ended before completion"


def format_event(event: StreamEvent) -> str:
    data = {"type": event.type, "content": event.content}
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


async def event_stream(
    events: AsyncGenerator[StreamEvent, None],
    heartbeat_seconds: float,
) -> AsyncIterator[str]:
    """Frame ``events`` for the wire, one frame per event.

    Events are pumped through a queue by a producer task so that a heartbeat
    comment can be written while the provider is silent. Exactly one terminal
    frame ends the stream, even if the producer fails midway.
    """
    queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

    async def produce() -> None:
        try:
            async with aclosing(events) as source:
                async for event in source:
                    await queue.put(event)
                    if event.is_terminal:
                        return
        except Exception:
            logger.exception("event producer failed")
            await queue.put(StreamEvent.error(INTERNAL_ERROR_MESSAGE))
            return
        await queue.put(None)

    producer = asyncio.create_task(produce())
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield format_comment(HEARTBEAT_COMMENT)
                continue
            if event is None:
                logger.warning("event source ended without a terminal event")
                yield format_event(StreamEvent.error(UNTERMINATED_MESSAGE))
                return
            yield format_event(event)
            if event.is_terminal:
                return
    finally:
        producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)


def sse_response(frames: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
