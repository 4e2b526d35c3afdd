"""Google Gemini ``generateContent`` / ``streamGenerateContent``.

Request format::

    {
        "contents": [
            {"role": "user", "parts": [{"text": "..."}]},
            {"role": "model", "parts": [{"text": "..."}]}
        ],
        "systemInstruction": {"parts": [{"text": "..."}]},
        "generationConfig": {"temperature": 0.7}
    }

Without ``alt=sse`` the streaming endpoint returns one JSON array whose
elements arrive incrementally, which is why streaming uses
:class:`JSONObjectStreamDecoder` instead of a line decoder.
"""

import httpx

from chat_gateway.adapters.base import (
    AdapterKind,
    ProviderRequest,
    WireAdapter,
    extract_error,
)
from chat_gateway.adapters.decoders import JSONObjectStreamDecoder
from chat_gateway.errors import MalformedResponse, ProviderRejected
from chat_gateway.settings import Settings
from shared.schemas import ChatMessage, ChatResult, TokenUsage


def _convert_role(role: str) -> str:
    return "user" if role == "user" else "model"


def build_payload(messages: list[ChatMessage], temperature: float) -> dict:
    system_parts = [msg.content for msg in messages if msg.role == "system"]
    contents = [
        {"role": _convert_role(msg.role), "parts": [{"text": msg.content}]}
        for msg in messages
        if msg.role != "system"
    ]
    payload: dict = {
        "contents": contents,
        "generationConfig": {"temperature": temperature},
    }
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n".join(system_parts)}]}
    return payload


def build_request(
    settings: Settings, model: str, messages: list[ChatMessage], stream: bool
) -> ProviderRequest:
    if not settings.gemini_api_key:
        raise ProviderRejected(
            status_code=503,
            message="missing Gemini API key",
            code="missing_api_key",
        )
    method = "streamGenerateContent" if stream else "generateContent"
    return ProviderRequest(
        url=f"{settings.gemini_base_url.rstrip('/')}/{model}:{method}",
        payload=build_payload(messages, settings.temperature),
        headers={
            "x-goog-api-key": settings.gemini_api_key,
            "Content-Type": "application/json",
        },
        timeout=httpx.Timeout(settings.gemini_timeout_seconds, connect=10),
    )


def candidate_text(data: dict) -> str | None:
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [part["text"] for part in parts if isinstance(part, dict) and "text" in part]
    if not texts:
        return None
    return "".join(texts)


def parse_usage(data: dict) -> TokenUsage:
    usage = data.get("usageMetadata") or {}
    return TokenUsage.from_counts(
        usage.get("promptTokenCount"),
        usage.get("candidatesTokenCount"),
        usage.get("totalTokenCount"),
    )


def parse_completion(data: dict) -> ChatResult:
    if not data.get("candidates"):
        raise MalformedResponse("empty response", code="empty_response")
    return ChatResult(reply=candidate_text(data) or "", tokens=parse_usage(data))


def extract_delta(chunk: dict) -> str | None:
    return candidate_text(chunk) or None


def check_chunk(chunk: dict) -> None:
    if "error" in chunk:
        code, message = extract_error(chunk)
        raise ProviderRejected(status_code=502, message=message, code=code)


ADAPTER = WireAdapter(
    kind=AdapterKind.GEMINI,
    build_request=build_request,
    parse_completion=parse_completion,
    new_decoder=JSONObjectStreamDecoder,
    extract_delta=extract_delta,
    check_chunk=check_chunk,
)
