"""Tests for log redaction."""

from app.core.logging_config import REDACTED, get_log_level, redact_sensitive_values


def test_redacts_credential_keys():
    event = redact_sensitive_values(
        None,
        "info",
        {
            "event": "cas_upload_received",
            "cas_password": "ABCDE1234F",
            "ciphertext": "deadbeef",
            "internal_api_secret": "s3cret",
            "client_id": "client-1",
        },
    )

    assert event["cas_password"] == REDACTED
    assert event["ciphertext"] == REDACTED
    assert event["internal_api_secret"] == REDACTED
    assert event["client_id"] == "client-1"
    assert event["event"] == "cas_upload_received"


def test_keeps_flags_and_empty_values():
    event = redact_sensitive_values(
        None,
        "info",
        {"password_protected": True, "password": None, "token": ""},
    )

    assert event == {"password_protected": True, "password": None, "token": ""}


def test_log_level_from_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert get_log_level() == "INFO"

    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert get_log_level() == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "verbose")
    monkeypatch.setenv("ENVIRONMENT", "test")
    assert get_log_level() == "WARNING"


def test_redacts_bare_key_and_iv_names():
    event = redact_sensitive_values(
        None,
        "info",
        {
            "iv": "00ff",
            "key": "abc",
            "iv_hex": "00ff",
            "encrypted_password": "beef",
            "encryptedPassword": "beef",
            "X-Internal-Secret": "s3cret",
        },
    )

    assert set(event.values()) == {REDACTED}


def test_key_parts_must_match_whole():
    event = redact_sensitive_values(
        None,
        "info",
        {"keyword_count": 3, "division": "equity", "monkey": "banana", "storage_path": "/tmp/a.pdf"},
    )

    assert event == {
        "keyword_count": 3,
        "division": "equity",
        "monkey": "banana",
        "storage_path": "/tmp/a.pdf",
    }
