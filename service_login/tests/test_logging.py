"""
Tests for token masking in logs.
"""

from shared.logging import (
    add_correlation_context,
    clear_context,
    mask_token,
    redact_sensitive_fields,
    set_request_id,
    set_subject,
)


def test_mask_token():
    token = "eyJhbGciOiJSUzI1NiJ9.payload.signature-bytes"

    assert mask_token(token) == "eyJhbGciOi...ture-bytes"
    assert mask_token("short") == "***"
    assert mask_token(None) == "***"
    assert mask_token("") == "***"


def test_sensitive_fields_are_redacted():
    event = {
        "event": "Token exchange",
        "client_secret": "a-very-long-client-secret-value",
        "code": "short-code",
        "access_token": mask_token("x" * 40),
        "client_id": "access-login",
    }

    redacted = redact_sensitive_fields(None, "info", dict(event))

    assert redacted["client_secret"] == "a-very-lon...cret-value"
    assert redacted["code"] == "***"
    assert redacted["access_token"] == event["access_token"]
    assert redacted["client_id"] == "access-login"


def test_redaction_keys_on_field_name():
    """Values that merely look masked, and non-string secrets, are still hidden."""
    event = {
        "event": "Token exchange",
        "code": "abc...def",
        "refresh_token": "0123456789...-looks-masked-but-is-not",
        "authorization": {"scheme": "Basic", "credentials": "Y2xpZW50OnNlY3JldA=="},
        "id_token": None,
    }

    redacted = redact_sensitive_fields(None, "info", dict(event))

    assert redacted["code"] == "***"
    assert redacted["refresh_token"] == "0123456789...but-is-not"
    assert redacted["authorization"] == "***"
    assert redacted["id_token"] is None


def test_correlation_context():
    set_request_id("req-1")
    set_subject("u1")

    event = add_correlation_context(None, "info", {"event": "x"})

    assert event["request_id"] == "req-1"
    assert event["subject"] == "u1"

    clear_context()
    assert add_correlation_context(None, "info", {"event": "x"}) == {"event": "x"}
