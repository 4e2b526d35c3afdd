"""llama.cpp-style local server.

Speaks the OpenAI wire format, so parsing is shared with the OpenAI adapter.
Only the transport defaults differ: a local base URL, a placeholder bearer
token that llama.cpp ignores, and a long read timeout for slow local models.
"""

import httpx

from chat_gateway.adapters import openai
from chat_gateway.adapters.base import AdapterKind, ProviderRequest, WireAdapter
from chat_gateway.adapters.decoders import SSELineDecoder
from chat_gateway.settings import Settings
from shared.schemas import ChatMessage

PLACEHOLDER_TOKEN = "unused"


def build_request(
    settings: Settings, model: str, messages: list[ChatMessage], stream: bool
) -> ProviderRequest:
    token = settings.llama_api_key or PLACEHOLDER_TOKEN
    return ProviderRequest(
        url=f"{settings.llama_api_url.rstrip('/')}/chat/completions",
        payload={
            "model": model,
            "messages": openai.serialize_messages(messages),
            "temperature": settings.temperature,
            "stream": stream,
        },
        headers={
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        },
        timeout=httpx.Timeout(settings.llama_timeout_seconds, connect=10),
    )


ADAPTER = WireAdapter(
    kind=AdapterKind.LLAMA,
    build_request=build_request,
    parse_completion=openai.parse_completion,
    new_decoder=SSELineDecoder,
    extract_delta=openai.extract_delta,
    check_chunk=openai.check_chunk,
)
