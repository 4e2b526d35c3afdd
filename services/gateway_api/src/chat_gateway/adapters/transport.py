import asyncio
import json
import logging
from collections.abc import AsyncIterator

import httpx

from chat_gateway.adapters.base import WireAdapter, extract_error
from chat_gateway.errors import MalformedResponse, ProviderRejected, TransportError
from chat_gateway.settings import Settings
from shared.schemas import ChatMessage, ChatResult

logger = logging.getLogger(__name__)


def _rejected(status_code: int, raw: bytes) -> ProviderRejected:
    code, message = "upstream_error", "upstream error"
    try:
        code, message = extract_error(json.loads(raw))
    except ValueError:
        logger.warning("non-json upstream error status=%s bytes=%s", status_code, len(raw))
    return ProviderRejected(status_code=status_code, message=message, code=code, body=raw)


def _fragments(adapter: WireAdapter, payloads: list[dict]) -> list[str]:
    fragments = []
    for payload in payloads:
        adapter.check_chunk(payload)
        text = adapter.extract_delta(payload)
        if text:
            fragments.append(text)
    return fragments


def _client(
    transport: httpx.AsyncBaseTransport | None, timeout: httpx.Timeout
) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport, timeout=timeout)


async def complete(
    adapter: WireAdapter,
    settings: Settings,
    model: str,
    messages: list[ChatMessage],
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatResult:
    request = adapter.build_request(settings, model, messages, False)
    try:
        async with _client(transport, request.timeout) as client:
            resp = await client.post(request.url, json=request.payload, headers=request.headers)
    except httpx.TimeoutException:
        raise TransportError("upstream timeout", code="upstream_timeout")
    except httpx.RequestError as exc:
        logger.warning("%s connection error: %s", adapter.kind.value, type(exc).__name__)
        raise TransportError("upstream connection error")

    if not resp.is_success:
        raise _rejected(resp.status_code, resp.content)

    try:
        data = resp.json()
    except ValueError:
        raise MalformedResponse("response is not JSON", body=resp.content)
    if not isinstance(data, dict):
        raise MalformedResponse("unexpected response shape", body=resp.content)
    return adapter.parse_completion(data)


async def stream(
    adapter: WireAdapter,
    settings: Settings,
    model: str,
    messages: list[ChatMessage],
    cancel: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[str]:
    """Yield reply fragments as soon as the provider's framing makes them decodable."""
    request = adapter.build_request(settings, model, messages, True)
    decoder = adapter.new_decoder()
    try:
        async with _client(transport, request.timeout) as client:
            async with client.stream(
                "POST", request.url, json=request.payload, headers=request.headers
            ) as resp:
                if not resp.is_success:
                    raise _rejected(resp.status_code, await resp.aread())

                async for chunk in resp.aiter_bytes():
                    if cancel is not None and cancel.is_set():
                        logger.info("%s stream cancelled", adapter.kind.value)
                        return
                    for text in _fragments(adapter, decoder.feed(chunk)):
                        yield text
                    if getattr(decoder, "done", False):
                        return

                flush = getattr(decoder, "flush", None)
                if flush is not None:
                    for text in _fragments(adapter, flush()):
                        yield text
                if getattr(decoder, "pending", False):
                    logger.warning("%s stream ended mid-object", adapter.kind.value)
                    raise MalformedResponse("stream ended mid-object", code="truncated_stream")
    except httpx.TimeoutException:
        raise TransportError("upstream timeout", code="upstream_timeout")
    except httpx.RequestError as exc:
        logger.warning("%s stream connection error: %s", adapter.kind.value, type(exc).__name__)
        raise TransportError("upstream connection error")
