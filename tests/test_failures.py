import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import httpx
import pytest

from backend.app.sync.encryption import ConfigEncryption
from backend.app.sync.exceptions import (
    ProviderConfigurationError,
    RateLimitError,
    TransientProviderError,
)
from backend.app.sync.failures import (
    FailureKind,
    backoff_anchor,
    classify_failure,
    is_rate_limit_message,
    rate_limit_hint,
    retry_after,
)


def status_error(status_code, text=""):
    request = httpx.Request("GET", "https://api.example.com/accounts")
    response = httpx.Response(status_code, text=text, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


@pytest.mark.parametrize("message", [
    "429 Too Many Requests",
    "Rate limit exceeded for this consent",
    "RATE_LIMIT",
    "too many requests, slow down",
])
def test_rate_limit_messages(message) -> None:
    assert is_rate_limit_message(message)
    assert classify_failure(message) == FailureKind.RATE_LIMIT


def test_provider_specific_signature() -> None:
    message = "ASPSP_RATE_LIMIT_EXCEEDED"
    assert classify_failure(message, "enable_banking") == FailureKind.RATE_LIMIT
    assert classify_failure(message, None) == FailureKind.RATE_LIMIT
    assert classify_failure("RateLimitException: slow down", "bitvavo") == FailureKind.RATE_LIMIT


def test_plain_messages_are_fatal() -> None:
    assert classify_failure("Invalid API key") == FailureKind.FATAL
    assert classify_failure("") == FailureKind.FATAL
    assert classify_failure(None) == FailureKind.FATAL


def test_http_status_errors() -> None:
    assert classify_failure(status_error(429)) == FailureKind.RATE_LIMIT
    assert classify_failure(status_error(400, "too many requests")) == FailureKind.RATE_LIMIT
    assert classify_failure(status_error(503)) == FailureKind.TRANSIENT
    assert classify_failure(status_error(401, "unauthorized")) == FailureKind.FATAL


def test_exception_types() -> None:
    assert classify_failure(RateLimitError("upstream busy")) == FailureKind.RATE_LIMIT
    assert classify_failure(TransientProviderError("maintenance")) == FailureKind.TRANSIENT
    assert classify_failure(httpx.ConnectTimeout("connect timed out")) == FailureKind.TRANSIENT
    assert classify_failure(asyncio.TimeoutError()) == FailureKind.TRANSIENT
    assert classify_failure(ProviderConfigurationError("Missing API key")) == FailureKind.FATAL
    assert classify_failure(ValueError("HTTP 429 from upstream")) == FailureKind.RATE_LIMIT


def test_backoff_anchor_prefers_completion() -> None:
    completed = datetime(2024, 6, 1, 10, 0)
    synced = datetime(2024, 5, 31, 10, 0)
    updated = datetime(2024, 5, 30, 10, 0)

    connection = SimpleNamespace(last_sync_completed_at=completed, last_synced_at=synced, updated_at=updated)
    assert backoff_anchor(connection) == completed
    assert retry_after(connection) == completed + timedelta(hours=24)

    connection = SimpleNamespace(last_sync_completed_at=None, last_synced_at=synced, updated_at=updated)
    assert backoff_anchor(connection) == synced

    connection = SimpleNamespace(last_sync_completed_at=None, last_synced_at=None, updated_at=None)
    assert retry_after(connection) is None


def test_rate_limit_hint_format() -> None:
    assert rate_limit_hint(datetime(2024, 6, 2, 9, 30, 5)) == \
        "Rate limit actief. Probeer opnieuw na 2024-06-02T09:30:05Z"


class TestConfigEncryption:

    def test_config_roundtrip(self):
        encryption = ConfigEncryption("test-secret-key")

        token = encryption.encrypt_config({"api_key": "abc", "retries": 3, "empty": None})

        assert "abc" not in token
        assert encryption.decrypt_config(token) == {"api_key": "abc", "retries": "3", "empty": ""}

    def test_empty_config(self):
        encryption = ConfigEncryption("test-secret-key")

        assert encryption.encrypt_config({}) is None
        assert encryption.encrypt_config(None) is None
        assert encryption.decrypt_config(None) == {}

    def test_wrong_key_is_configuration_error(self):
        token = ConfigEncryption("first-secret").encrypt_config({"api_key": "abc"})

        with pytest.raises(ProviderConfigurationError):
            ConfigEncryption("second-secret").decrypt_config(token)

    def test_non_object_payload(self):
        encryption = ConfigEncryption("test-secret-key")

        with pytest.raises(ProviderConfigurationError):
            encryption.decrypt_config(encryption.encrypt('["not", "a", "map"]'))
