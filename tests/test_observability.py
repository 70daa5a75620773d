"""Tests for redaction, JSON logging and correlation IDs."""

import json
import logging
import sys

from pacelane.observability.correlation import correlation_scope, get_correlation_id
from pacelane.observability.logging import JsonFormatter, get_logger
from pacelane.observability.redaction import (
    MAX_LOGGED_STRING,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_jid(self):
        result = redact_string("from 5511999998888@s.whatsapp.net")
        assert "5511999998888" not in result

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result

    def test_url_keeps_origin_only(self):
        result = redact_string("fetching https://chat.example.com/rails/active_storage/blobs/abc123/audio.ogg")
        assert result == "fetching https://chat.example.com/[REDACTED]"

    def test_bare_origin_untouched(self):
        assert redact_string("https://chat.example.com") == "https://chat.example.com"

    def test_token_query_param(self):
        result = redact_string("token=abc123&x=1")
        assert "abc123" not in result
        assert result.startswith("token=[REDACTED]")

    def test_long_text_is_summarized(self):
        text = "a" * (MAX_LOGGED_STRING + 1)
        assert redact_string(text) == f"str(len={MAX_LOGGED_STRING + 1})"

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"password": "secret123", "user": "john"})
        assert result == "dict(keys=['password', 'user'])"

    def test_redact_value_list_only_len(self):
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(3) == "3"
        assert redact_value(object()) == "<object>"

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+5511999998888", count=42)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"


def _record(msg="buffer flushed", exc_info=None, **extra):
    record = logging.LogRecord("pacelane.test", logging.INFO, __file__, 1, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_base_fields(self, monkeypatch):
        monkeypatch.delenv("K_SERVICE", raising=False)
        monkeypatch.setenv("APP_ROLE", "worker")
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "buffer flushed"
        assert data["severity"] == "INFO"
        assert data["logger"] == "pacelane.test"
        assert data["service"] == "pacelane-worker"
        assert "timestamp" in data
        assert "correlationId" not in data

    def test_correlation_and_extra_fields(self):
        with correlation_scope("cid-1"):
            data = json.loads(JsonFormatter().format(
                _record(extra_fields={"buffer_id": "b1", "message": "overwrite attempt"})
            ))

        assert data["correlationId"] == "cid-1"
        assert data["buffer_id"] == "b1"
        assert data["message"] == "buffer flushed"

    def test_exception_fields(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(exc_info=sys.exc_info())

        data = json.loads(JsonFormatter().format(record))
        assert data["error_type"] == "ValueError"
        assert "boom" in data["exception"]

    def test_get_logger_attaches_one_handler(self):
        logger = get_logger("pacelane.test.handlers")
        again = get_logger("pacelane.test.handlers")
        assert logger is again
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)


class TestCorrelationScope:
    def test_generates_and_resets(self):
        assert get_correlation_id() == ""
        with correlation_scope() as cid:
            assert cid
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""

    def test_nested_scopes_restore_outer(self):
        with correlation_scope("outer"):
            with correlation_scope("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
