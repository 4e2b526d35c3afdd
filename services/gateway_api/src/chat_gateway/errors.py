BODY_EXCERPT_CHARS = 500


class AdapterError(Exception):
    err_type = "adapter_error"

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 502,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    def to_payload(self) -> dict:
        return {
            "type": self.err_type,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class TransportError(AdapterError):
    """Connection, DNS or timeout failure before a usable response arrived."""

    err_type = "transport"

    def __init__(self, message: str, code: str = "upstream_unavailable") -> None:
        super().__init__(message, code=code, status_code=502, retryable=True)


class ProviderRejected(AdapterError):
    """The provider answered with a non-success status."""

    err_type = "provider_rejected"

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str = "upstream_error",
        body: str = "",
    ) -> None:
        super().__init__(
            message,
            code=code,
            status_code=status_code,
            retryable=_retryable_for_status(status_code),
        )
        self.body_excerpt = excerpt(body)


class MalformedResponse(AdapterError):
    """The provider answered, but not with the JSON shape we expect."""

    err_type = "malformed_response"

    def __init__(self, message: str, code: str = "malformed_response", body: str = "") -> None:
        super().__init__(message, code=code, status_code=502, retryable=True)
        self.body_excerpt = excerpt(body)


def _retryable_for_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def excerpt(body: str | bytes) -> str:
    if isinstance(body, bytes):
        body = body.decode("utf-8", "replace")
    return body[:BODY_EXCERPT_CHARS]
