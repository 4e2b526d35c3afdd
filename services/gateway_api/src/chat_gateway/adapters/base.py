from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

import httpx

from chat_gateway.settings import Settings
from shared.schemas import ChatMessage, ChatResult


class AdapterKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    LLAMA = "llama"


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    timeout: httpx.Timeout = field(default_factory=lambda: httpx.Timeout(30.0))


class StreamDecoder(Protocol):
    def feed(self, chunk: bytes) -> list[dict]: ...


@dataclass(frozen=True)
class WireAdapter:
    """Function table describing one provider's wire format."""

    kind: AdapterKind
    build_request: Callable[[Settings, str, list[ChatMessage], bool], ProviderRequest]
    parse_completion: Callable[[dict], ChatResult]
    new_decoder: Callable[[], StreamDecoder]
    extract_delta: Callable[[dict], str | None]
    check_chunk: Callable[[dict], None] = lambda payload: None


def extract_error(payload: Any) -> tuple[str, str]:
    """Return ``(code, message)`` from an ``{"error": {...}}`` body."""
    err = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(err, dict):
        return ("upstream_error", "upstream error")
    code = err.get("code") or err.get("status") or err.get("type") or "upstream_error"
    message = err.get("message") or "upstream error"
    return (str(code), str(message))
