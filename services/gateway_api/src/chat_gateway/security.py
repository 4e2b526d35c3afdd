import hashlib
import hmac
from typing import Protocol

from fastapi import Depends, HTTPException, Request, status

from chat_gateway.settings import get_settings

AUTHORIZATION_HEADER = "Authorization"


class TokenValidator(Protocol):
    def validate(self, token: str) -> str | None:
        """Return the token's subject, or ``None`` when the token is not valid."""
        ...


def sign_subject(secret: str, subject: str) -> str:
    return hmac.new(secret.encode("utf-8"), subject.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_token(secret: str, subject: str) -> str:
    return f"{subject}.{sign_subject(secret, subject)}"


class SignedTokenValidator:
    """Accepts ``<subject>.<hex hmac-sha256 of subject>`` tokens."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def validate(self, token: str) -> str | None:
        subject, _, signature = token.rpartition(".")
        if not subject or not signature:
            return None
        expected = sign_subject(self._secret, subject)
        if not hmac.compare_digest(expected, signature):
            return None
        return subject


_validator = SignedTokenValidator(get_settings().gateway_token_secret)


def get_token_validator() -> TokenValidator:
    return _validator


async def require_subject(
    request: Request,
    validator: TokenValidator = Depends(get_token_validator),
) -> str:
    header = request.headers.get(AUTHORIZATION_HEADER, "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    subject = validator.validate(token.strip())
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return subject
