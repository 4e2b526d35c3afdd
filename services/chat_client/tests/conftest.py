import asyncio
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
REPO_ROOT = Path(__file__).resolve().parents[3]
if str(SRC) not in sys.path:
    sys.path.append(str(SRC))
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

import httpx
import pytest

os.environ.setdefault("GATEWAY_URL", "http://gateway.test")
os.environ.setdefault("GATEWAY_TOKEN", "user-1.signature")

from chat_client import settings as settings_module

settings_module.get_settings.cache_clear()


def frame(frame_type: str, content: str = "") -> bytes:
    return f"data: {json.dumps({'type': frame_type, 'content': content})}\n\n".encode()


class QueueStream(httpx.AsyncByteStream):
    """Response body the test feeds chunk by chunk; ``None`` ends it."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.closed = False

    async def __aiter__(self):
        while True:
            chunk = await self.queue.get()
            if chunk is None:
                return
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class GatewayStub:
    """Records requests to the gateway and answers from a list of responders."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.AsyncByteStream):
            return httpx.Response(200, stream=response)
        if isinstance(response, bytes):
            return httpx.Response(
                200, content=response, headers={"Content-Type": "text/event-stream"}
            )
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture()
def settings():
    return settings_module.Settings(GATEWAY_URL="http://gateway.test/", STREAM_TIMEOUT_SECONDS=5)


@pytest.fixture()
def helpers():
    class Helpers:
        GatewayStub = GatewayStub
        QueueStream = QueueStream
        frame = staticmethod(frame)

    return Helpers
