import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from chat_gateway.errors import AdapterError
from chat_gateway.logging_config import configure_logging
from chat_gateway.orchestrator import ChatOrchestrator, ChatTranscript
from chat_gateway.request_id import REQUEST_ID_HEADER, ensure_request_id
from chat_gateway.security import require_subject
from chat_gateway.settings import get_settings
from chat_gateway.sse import event_stream, sse_response
from chat_gateway.store import ConversationNotFound, ConversationStore, InMemoryConversationStore
from chat_gateway.titles import entitle_conversation
from shared.schemas import ChatRequest, ConversationMessageIn, StreamEvent

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

ERROR_REPLY_PREFIX = "Error: "

app = FastAPI(title="Chat Gateway")
orchestrator = ChatOrchestrator(settings)
conversation_store = InMemoryConversationStore()


def get_orchestrator() -> ChatOrchestrator:
    return orchestrator


def get_store() -> ConversationStore:
    return conversation_store


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = ensure_request_id(request.headers.get(REQUEST_ID_HEADER))
    if settings.app_env.lower() == "prod":
        if request.url.path in ("/docs", "/openapi.json"):
            return JSONResponse(status_code=404, content={"detail": "not found"})
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.get("/health")
def health():
    return {"status": "ok", "ai_enabled": orchestrator.enabled}


def _resolve_model(model: str | None) -> str:
    resolved = settings.resolve_model(model)
    if not settings.is_model_allowed(resolved):
        raise HTTPException(status_code=400, detail="unsupported model")
    return resolved


def _error_response(exc: AdapterError) -> JSONResponse:
    logger.warning(
        "chat failed type=%s code=%s status=%s", exc.err_type, exc.code, exc.status_code
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_payload()})


async def _until_disconnected(
    request: Request,
    events: AsyncGenerator[StreamEvent, None],
    cancel: asyncio.Event,
) -> AsyncGenerator[StreamEvent, None]:
    async with aclosing(events) as source:
        async for event in source:
            if await request.is_disconnected():
                logger.info("client disconnected, cancelling chat stream")
                cancel.set()
                return
            yield event


@app.post("/v1/chat")
async def chat(
    payload: ChatRequest,
    request: Request,
    subject: str = Depends(require_subject),
    chat_orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    chat_request = payload.model_copy(update={"model": _resolve_model(payload.model)})
    logger.info(
        "chat request subject=%s model=%s stream=%s persona=%s scaffolding=%s messages=%s",
        subject,
        chat_request.model,
        chat_request.stream,
        chat_request.use_persona,
        chat_request.use_scaffolding,
        len(chat_request.messages),
    )

    if chat_request.stream:
        cancel = asyncio.Event()
        events = _until_disconnected(
            request, chat_orchestrator.events(chat_request, cancel), cancel
        )
        return sse_response(event_stream(events, settings.sse_heartbeat_seconds))

    try:
        result = await chat_orchestrator.complete(chat_request)
    except AdapterError as exc:
        return _error_response(exc)
    return result


@app.post("/v1/conversations/{conversation_id}/messages")
async def conversation_message(
    conversation_id: int,
    payload: ConversationMessageIn,
    request: Request,
    background_tasks: BackgroundTasks,
    subject: str = Depends(require_subject),
    chat_orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    store: ConversationStore = Depends(get_store),
):
    model = _resolve_model(payload.model)
    try:
        conversation = await store.get_or_create(conversation_id, subject)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="conversation not found")

    logger.info(
        "conversation message subject=%s conversation_id=%s model=%s stream=%s",
        subject,
        conversation_id,
        model,
        payload.stream,
    )
    if conversation.has_placeholder_title:
        background_tasks.add_task(
            entitle_conversation,
            store,
            chat_orchestrator,
            conversation_id,
            payload.content,
            settings.title_model,
        )

    await store.append_message(conversation_id, "user", payload.content)
    history = [message.as_chat_message() for message in await store.list_messages(conversation_id)]
    chat_request = ChatRequest(
        messages=history,
        model=model,
        stream=payload.stream,
        use_persona=payload.use_persona,
        use_scaffolding=payload.use_scaffolding,
    )

    if payload.stream:
        cancel = asyncio.Event()

        async def persisted_events() -> AsyncGenerator[StreamEvent, None]:
            transcript = ChatTranscript()
            source = _until_disconnected(
                request, chat_orchestrator.events(chat_request, cancel), cancel
            )
            async with aclosing(source) as events:
                async for event in events:
                    transcript.apply(event)
                    if event.type == "done":
                        await store.append_message(
                            conversation_id,
                            "assistant",
                            transcript.reply,
                            thinking=transcript.thinking or None,
                        )
                    elif event.type == "error":
                        await store.append_message(
                            conversation_id, "assistant", ERROR_REPLY_PREFIX + event.content
                        )
                    yield event

        return sse_response(event_stream(persisted_events(), settings.sse_heartbeat_seconds))

    try:
        result = await chat_orchestrator.complete(chat_request)
    except AdapterError as exc:
        await store.append_message(conversation_id, "assistant", ERROR_REPLY_PREFIX + exc.message)
        return _error_response(exc)

    await store.append_message(
        conversation_id,
        "assistant",
        result.reply,
        thinking=result.thinking,
        usage=result.usage(),
    )
    return {"conversation_id": conversation_id, **result.model_dump()}
