import logging
import logging.config
import re

from chat_gateway.request_id import get_request_id

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_SECRET_KV_RE = re.compile(
    r"(?i)\b(authorization|x-goog-api-key|api_key|apikey|key|token|secret|password)\b"
    r"\s*[:=]\s*([^\s,;&]+)"
)
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-._~+/]+=*")
_PROVIDER_KEY_RE = re.compile(r"\b(sk-[A-Za-z0-9_\-]{8,}|AIza[0-9A-Za-z_\-]{20,})")
_CONTENT_JSON_RE = re.compile(r'(?i)("(?:content|text)"\s*:\s*")(?:[^"\\]|\\.)*(")')


def redact(text: str) -> str:
    text = _EMAIL_RE.sub("[redacted_email]", text)
    text = _CONTENT_JSON_RE.sub(r"\1[redacted]\2", text)
    text = _BEARER_RE.sub("Bearer [redacted]", text)
    text = _PROVIDER_KEY_RE.sub("[redacted_key]", text)
    text = _SECRET_KV_RE.sub(r"\1=[redacted]", text)
    return text


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = ()
        return True


SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
QUIET_LOGGERS = ("httpx", "httpcore")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s"


def build_logging_config(log_level: str) -> dict:
    level = log_level.upper()
    loggers: dict[str, dict] = {
        name: {"handlers": ["console"], "level": level, "propagate": False}
        for name in SERVER_LOGGERS
    }
    # Provider URLs and headers show up in these at INFO.
    loggers.update({name: {"level": "WARNING"} for name in QUIET_LOGGERS})
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
            "redact": {"()": RedactionFilter},
        },
        "formatters": {"standard": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["request_id", "redact"],
                "level": level,
            }
        },
        "loggers": loggers,
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(log_level: str) -> None:
    logging.config.dictConfig(build_logging_config(log_level))
