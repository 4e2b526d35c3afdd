import logging

from chat_gateway.logging_config import RedactionFilter, build_logging_config, redact
from chat_gateway.security import SignedTokenValidator, issue_token, sign_subject


def test_signed_token_round_trip():
    validator = SignedTokenValidator("s3cret")
    assert validator.validate(issue_token("s3cret", "user.with.dots")) == "user.with.dots"


def test_signed_token_rejects_tampering():
    validator = SignedTokenValidator("s3cret")
    token = issue_token("s3cret", "alice")
    assert validator.validate(token.replace("alice", "mallory")) is None
    assert validator.validate(issue_token("other", "alice")) is None
    assert validator.validate("alice") is None
    assert validator.validate(f".{sign_subject('s3cret', '')}") is None


def test_missing_bearer_token(client):
    resp = client.post("/v1/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "missing bearer token"


def test_invalid_bearer_token(client):
    resp = client.post(
        "/v1/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers={"Authorization": "Bearer alice.deadbeef"},
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "invalid token"


def test_redact_masks_secrets_and_content():
    text = redact(
        'bob@example.com sent {"content": "my diary"} with key sk-abcdefghijklmnop '
        "and Authorization: Bearer abc.def"
    )
    assert "bob@example.com" not in text
    assert "my diary" not in text
    assert "sk-abcdefghijklmnop" not in text
    assert "abc.def" not in text


def test_redaction_filter_formats_args():
    record = logging.LogRecord(
        "test", logging.INFO, __file__, 1, "api_key=%s", ("AIza" + "x" * 30,), None
    )
    assert RedactionFilter().filter(record) is True
    assert "AIza" not in record.getMessage()
    assert record.args == ()


def test_logging_config_quiets_http_client_loggers():
    config = build_logging_config("debug")
    assert config["root"]["level"] == "DEBUG"
    assert config["loggers"]["httpx"] == {"level": "WARNING"}
    assert config["loggers"]["uvicorn.access"]["propagate"] is False
    assert config["handlers"]["console"]["filters"] == ["request_id", "redact"]
