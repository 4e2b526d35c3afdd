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
from fastapi.testclient import TestClient

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("GATEWAY_TOKEN_SECRET", "test-token-secret")
os.environ.setdefault("AI_ENABLED", "true")
os.environ.setdefault("DEFAULT_MODEL", "gpt-4o-2024-08-06")
os.environ.setdefault(
    "ALLOWED_MODELS", '["gpt-4o-2024-08-06", "gemini-1.5-flash", "llama-3-8b-local"]'
)
os.environ.setdefault("OPENAI_API_KEY", "sk-test-openai-key")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("SSE_HEARTBEAT_SECONDS", "15")
os.environ.setdefault("DEV_ECHO_DELAY_SECONDS", "0")

from chat_gateway import settings as settings_module

settings_module.get_settings.cache_clear()

from chat_gateway import main as main_module
from chat_gateway.main import app
from chat_gateway.orchestrator import ChatOrchestrator
from chat_gateway.security import issue_token
from chat_gateway.store import InMemoryConversationStore

TEST_SUBJECT = "user-1"


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the chunks given."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


def chunked(chunks: list[bytes], status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, stream=ChunkedStream(chunks))


def openai_sse(*fragments: str) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": text}}]})
        for text in fragments
    ]
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def openai_completion(text: str, prompt: int, completion: int, total: int) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": total,
        },
    }


class ProviderStub:
    """Records provider requests and answers them from a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture()
def settings():
    return settings_module.get_settings()


@pytest.fixture()
def helpers():
    class Helpers:
        ProviderStub = ProviderStub
        chunked = staticmethod(chunked)
        openai_sse = staticmethod(openai_sse)
        openai_completion = staticmethod(openai_completion)

    return Helpers


@pytest.fixture()
def auth_headers():
    token = issue_token("test-token-secret", TEST_SUBJECT)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def store():
    store = InMemoryConversationStore()
    app.dependency_overrides[main_module.get_store] = lambda: store
    yield store
    app.dependency_overrides.pop(main_module.get_store, None)


@pytest.fixture()
def use_orchestrator():
    def _use(orchestrator: ChatOrchestrator) -> ChatOrchestrator:
        app.dependency_overrides[main_module.get_orchestrator] = lambda: orchestrator
        return orchestrator

    yield _use
    app.dependency_overrides.pop(main_module.get_orchestrator, None)


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
async def async_client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
