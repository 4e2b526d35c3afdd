import json
import uuid

import httpx

from chat_client.settings import Settings
from shared.schemas import ChatRequest, ChatResult

REQUEST_ID_HEADER = "X-Request-ID"


class GatewayError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def gateway_headers(settings: Settings) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        REQUEST_ID_HEADER: str(uuid.uuid4()),
    }
    if settings.gateway_token:
        headers["Authorization"] = f"Bearer {settings.gateway_token}"
    return headers


async def send_chat(
    settings: Settings,
    payload: ChatRequest,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatResult:
    url = f"{settings.gateway_url}/v1/chat"
    body = json.dumps(
        payload.model_copy(update={"stream": False}).model_dump(),
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")

    try:
        async with httpx.AsyncClient(
            timeout=settings.gateway_timeout_seconds, transport=transport
        ) as client:
            resp = await client.post(url, content=body, headers=gateway_headers(settings))
    except httpx.HTTPError as exc:
        raise GatewayError(502, f"gateway unreachable: {exc.__class__.__name__}") from exc

    if resp.status_code != 200:
        raise GatewayError(resp.status_code, f"gateway status {resp.status_code}")

    return ChatResult.model_validate(resp.json())
