import asyncio

import httpx
import pytest
from pydantic import ValidationError

from chat_client.gateway_client import GatewayError, send_chat
from chat_client.settings import Settings
from chat_client.stream_consumer import (
    CONNECTION_LOST_MESSAGE,
    DEFAULT_ERROR_MESSAGE,
    TIMEOUT_MESSAGE,
    UNTERMINATED_MESSAGE,
    Phase,
    StreamConsumer,
)
from shared.schemas import ChatMessage, ChatRequest

pytestmark = pytest.mark.asyncio


async def _settle():
    await asyncio.sleep(0.05)


async def test_happy_path(settings, helpers):
    f = helpers.frame
    body = f("thinking", "plan ") + f("thinking", "more") + f("response", "Hi") + f("done")
    stub = helpers.GatewayStub(body)
    consumer = StreamConsumer(settings, transport=stub.transport)

    task = await consumer.send_message(5, "hello", model="gpt-4o", use_scaffolding=True)
    await task

    assert consumer.state.thinking_text == "plan more"
    assert consumer.state.response_text == "Hi"
    assert consumer.state.phase is Phase.DONE
    assert consumer.state.error is None

    request = stub.requests[0]
    assert str(request.url) == "http://gateway.test/v1/conversations/5/messages"
    assert request.headers["Authorization"] == "Bearer user-1.signature"
    assert request.headers["X-Request-ID"]
    assert stub.body(0) == {
        "content": "hello",
        "model": "gpt-4o",
        "use_persona": False,
        "use_scaffolding": True,
        "stream": True,
    }


async def test_phases_follow_frames(settings, helpers):
    stream = helpers.QueueStream()
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(stream).transport)

    task = await consumer.send_message(1, "hi")
    assert consumer.state.phase is Phase.CONNECTING

    await stream.queue.put(helpers.frame("thinking", "a"))
    await _settle()
    assert consumer.state.phase is Phase.THINKING

    await stream.queue.put(helpers.frame("response", "b"))
    await _settle()
    assert consumer.state.phase is Phase.RESPONDING

    await stream.queue.put(helpers.frame("thinking", "late"))
    await _settle()
    assert consumer.state.phase is Phase.RESPONDING
    assert consumer.state.thinking_text == "alate"

    await stream.queue.put(helpers.frame("done"))
    await task
    assert consumer.state.phase is Phase.DONE


async def test_frames_split_across_chunks(settings, helpers):
    stream = helpers.QueueStream()
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(stream).transport)
    body = helpers.frame("response", "héllo") + b": keep-alive\n\n" + helpers.frame("done")

    task = await consumer.send_message(1, "hi")
    for index in range(len(body)):
        await stream.queue.put(body[index : index + 1])
    await task

    assert consumer.state.response_text == "héllo"
    assert consumer.state.phase is Phase.DONE


async def test_error_frame_keeps_partial_text(settings, helpers):
    body = helpers.frame("response", "par") + helpers.frame("error", "upstream timeout")
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(body).transport)

    await (await consumer.send_message(1, "hi"))

    assert consumer.state.error == "upstream timeout"
    assert consumer.state.phase is Phase.IDLE
    assert consumer.state.response_text == "par"


async def test_http_error_status(settings, helpers):
    stub = helpers.GatewayStub(httpx.Response(500, json={"detail": "boom"}))
    consumer = StreamConsumer(settings, transport=stub.transport)

    await (await consumer.send_message(1, "hi"))

    assert consumer.state.error == "Server responded with status 500."
    assert consumer.state.phase is Phase.IDLE


async def test_network_failure(settings, helpers):
    stub = helpers.GatewayStub(httpx.ConnectError("refused"))
    consumer = StreamConsumer(settings, transport=stub.transport)

    await (await consumer.send_message(1, "hi"))

    assert consumer.state.error == CONNECTION_LOST_MESSAGE
    assert consumer.state.phase is Phase.IDLE


async def test_stream_ending_without_terminal_frame(settings, helpers):
    stub = helpers.GatewayStub(helpers.frame("response", "half"))
    consumer = StreamConsumer(settings, transport=stub.transport)

    await (await consumer.send_message(1, "hi"))

    assert consumer.state.error == UNTERMINATED_MESSAGE
    assert consumer.state.response_text == "half"


async def test_timeout_closes_connection(helpers):
    settings = Settings(GATEWAY_URL="http://gateway.test", STREAM_TIMEOUT_SECONDS=0.1)
    stream = helpers.QueueStream()
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(stream).transport)

    task = await consumer.send_message(1, "hi")
    await stream.queue.put(helpers.frame("thinking", "slow"))
    await task

    assert consumer.state.error == TIMEOUT_MESSAGE
    assert consumer.state.phase is Phase.IDLE
    assert consumer.state.thinking_text == "slow"
    assert stream.closed is True


async def test_cleanup_cancels_without_error(settings, helpers):
    stream = helpers.QueueStream()
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(stream).transport)

    task = await consumer.send_message(1, "hi")
    await stream.queue.put(helpers.frame("response", "par"))
    await _settle()
    consumer.cleanup()
    consumer.cleanup()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert consumer.state.error is None
    assert consumer.state.phase is Phase.RESPONDING
    assert consumer.active is False
    assert stream.closed is True


async def test_cleanup_with_nothing_active(settings):
    consumer = StreamConsumer(settings)
    consumer.cleanup()
    assert consumer.state.phase is Phase.IDLE
    assert consumer.state.error is None


async def test_new_message_replaces_in_flight_stream(settings, helpers):
    first = helpers.QueueStream()
    second = helpers.frame("response", "fresh") + helpers.frame("done")
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(first, second).transport)

    old = await consumer.send_message(1, "one")
    await first.queue.put(helpers.frame("response", "stale"))
    await _settle()
    new = await consumer.send_message(1, "two")
    await new

    with pytest.raises(asyncio.CancelledError):
        await old
    assert consumer.state.response_text == "fresh"
    assert consumer.state.phase is Phase.DONE
    assert consumer.state.last_request.content == "two"


async def test_retry_last_message(settings, helpers):
    stub = helpers.GatewayStub(
        helpers.frame("error", "try again"),
        helpers.frame("response", "ok") + helpers.frame("done"),
    )
    consumer = StreamConsumer(settings, transport=stub.transport)

    assert await consumer.retry_last_message() is None

    await (await consumer.send_message(2, "again", use_persona=True))
    assert consumer.state.error == "try again"

    await (await consumer.retry_last_message())

    assert consumer.state.error is None
    assert consumer.state.response_text == "ok"
    assert stub.body(0) == stub.body(1)


async def test_send_chat_blocking(settings, helpers):
    stub = helpers.GatewayStub(
        httpx.Response(
            200,
            json={
                "reply": "pong",
                "thinking": None,
                "tokens": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
            },
        )
    )
    request = ChatRequest(messages=[ChatMessage(role="user", content="ping")], stream=True)

    result = await send_chat(settings, request, transport=stub.transport)

    assert result.reply == "pong"
    assert result.total_tokens == 2
    assert stub.body(0)["stream"] is False


async def test_send_chat_error_status(settings, helpers):
    stub = helpers.GatewayStub(httpx.Response(401, json={"detail": "invalid token"}))
    request = ChatRequest(messages=[ChatMessage(role="user", content="ping")])

    with pytest.raises(GatewayError) as exc:
        await send_chat(settings, request, transport=stub.transport)
    assert exc.value.status_code == 401


async def test_empty_message_is_rejected_before_anything_starts(settings, helpers):
    stub = helpers.GatewayStub()
    consumer = StreamConsumer(settings, transport=stub.transport)

    with pytest.raises(ValidationError):
        await consumer.send_message(1, "")

    assert consumer.state.phase is Phase.IDLE
    assert consumer.state.last_request is None
    assert consumer.active is False
    assert stub.requests == []


async def test_empty_message_leaves_in_flight_stream_alone(settings, helpers):
    stream = helpers.QueueStream()
    consumer = StreamConsumer(settings, transport=helpers.GatewayStub(stream).transport)

    task = await consumer.send_message(1, "hi")
    with pytest.raises(ValidationError):
        await consumer.send_message(1, "")
    await stream.queue.put(helpers.frame("done"))
    await task

    assert consumer.state.phase is Phase.DONE


async def test_unexpected_failure_is_reported(settings, helpers):
    stub = helpers.GatewayStub(RuntimeError("bug"))
    consumer = StreamConsumer(settings, transport=stub.transport)

    await (await consumer.send_message(1, "hi"))

    assert consumer.state.error == DEFAULT_ERROR_MESSAGE
    assert consumer.state.phase is Phase.IDLE
    assert consumer.active is False
