"""Tests for logging context and processors."""
import pytest

from meownocode.logging import bind_context, clear_context, get_context, unbind_context
from meownocode.logging.processors import inject_context, redact_secrets


@pytest.fixture(autouse=True)
def clean_context():
    clear_context()
    yield
    clear_context()


def test_bind_and_unbind():
    bind_context(storage_type="localdb", user_id="default")
    unbind_context("user_id")
    assert get_context() == {"storage_type": "localdb"}


def test_inject_context_keeps_explicit_values():
    bind_context(storage_type="localdb", user_id="default")
    event = inject_context(None, "info", {"event": "x", "storage_type": "s3"})
    assert event == {"event": "x", "storage_type": "s3", "user_id": "default"}


def test_redact_secrets_top_level_and_nested():
    event = redact_secrets(None, "info", {
        "event": "Connecting",
        "api_key": "s3cret",
        "password": "",
        "config": {
            "bucket": "notes",
            "secret_access_key": "abc",
            "nested": {"connection_string": "postgresql://u:p@h/db"},
        },
    })
    assert event["api_key"] == "***"
    assert event["password"] == ""
    assert event["config"]["bucket"] == "notes"
    assert event["config"]["secret_access_key"] == "***"
    assert event["config"]["nested"]["connection_string"] == "***"
