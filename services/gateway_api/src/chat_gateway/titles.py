import logging

from chat_gateway.errors import AdapterError
from chat_gateway.orchestrator import ChatOrchestrator
from chat_gateway.store import ConversationNotFound, ConversationStore
from shared.schemas import ChatMessage, ChatRequest

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a short 3-6 word chat title in the style of an article title, "
    "based on the following user message. No punctuation."
)
FALLBACK_TITLE_CHARS = 41


async def generate_title(
    orchestrator: ChatOrchestrator, content: str, model: str | None = None
) -> str:
    fallback = content[:FALLBACK_TITLE_CHARS].strip()
    if not orchestrator.enabled:
        return fallback
    request = ChatRequest(
        messages=[
            ChatMessage(role="system", content=TITLE_PROMPT),
            ChatMessage(role="user", content=content),
        ],
        model=model or "",
    )
    title = ""
    try:
        result = await orchestrator.complete(request)
        title = result.reply.strip()
    except AdapterError as exc:
        logger.warning("title generation failed type=%s code=%s", exc.err_type, exc.code)
    return title or fallback


async def entitle_conversation(
    store: ConversationStore,
    orchestrator: ChatOrchestrator,
    conversation_id: int,
    content: str,
    model: str | None = None,
) -> None:
    title = await generate_title(orchestrator, content, model)
    try:
        await store.set_title(conversation_id, title)
    except ConversationNotFound:
        logger.warning("conversation %s disappeared before it was titled", conversation_id)
        return
    logger.info("conversation %s titled", conversation_id)
