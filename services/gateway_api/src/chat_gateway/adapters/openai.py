import httpx

from chat_gateway.adapters.base import (
    AdapterKind,
    ProviderRequest,
    WireAdapter,
    extract_error,
)
from chat_gateway.adapters.decoders import SSELineDecoder
from chat_gateway.errors import MalformedResponse, ProviderRejected
from chat_gateway.settings import Settings
from shared.schemas import ChatMessage, ChatResult, TokenUsage


def serialize_messages(messages: list[ChatMessage]) -> list[dict]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def build_request(
    settings: Settings, model: str, messages: list[ChatMessage], stream: bool
) -> ProviderRequest:
    if not settings.openai_api_key:
        raise ProviderRejected(
            status_code=503,
            message="missing OpenAI API key",
            code="missing_api_key",
        )
    return ProviderRequest(
        url=f"{settings.openai_base_url.rstrip('/')}/chat/completions",
        payload={
            "model": model,
            "messages": serialize_messages(messages),
            "stream": stream,
        },
        headers={
            "Authorization": f"Bearer {settings.openai_api_key}",
            "Content-Type": "application/json",
        },
        timeout=httpx.Timeout(settings.openai_timeout_seconds, connect=10),
    )


def parse_usage(data: dict) -> TokenUsage:
    usage = data.get("usage") or {}
    return TokenUsage.from_counts(
        usage.get("prompt_tokens"),
        usage.get("completion_tokens"),
        usage.get("total_tokens"),
    )


def parse_completion(data: dict) -> ChatResult:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise MalformedResponse("empty response", code="empty_response")
    message = choices[0].get("message") or {}
    text = message.get("content")
    if text is None:
        raise MalformedResponse("missing content", code="missing_content")
    return ChatResult(reply=text, tokens=parse_usage(data))


def extract_delta(chunk: dict) -> str | None:
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


def check_chunk(chunk: dict) -> None:
    if "error" in chunk:
        code, message = extract_error(chunk)
        raise ProviderRejected(status_code=502, message=message, code=code)


ADAPTER = WireAdapter(
    kind=AdapterKind.OPENAI,
    build_request=build_request,
    parse_completion=parse_completion,
    new_decoder=SSELineDecoder,
    extract_delta=extract_delta,
    check_chunk=check_chunk,
)
