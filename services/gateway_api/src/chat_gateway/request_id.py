import uuid
from contextvars import ContextVar

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(value: str) -> None:
    _request_id_ctx.set(value)


def get_request_id() -> str:
    return _request_id_ctx.get()


def ensure_request_id(incoming: str | None) -> str:
    request_id = (incoming or "").strip() or str(uuid.uuid4())
    set_request_id(request_id)
    return request_id
