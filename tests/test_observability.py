"""Tests for observability utilities."""

import json
import logging

from linegate.observability.correlation import (
    accept_correlation_id,
    correlation_scope,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from linegate.observability.logging import JsonFormatter, get_logger
from linegate.observability.redaction import (
    hash_identifier,
    redact_string,
    redact_value,
    safe_log_context,
)

from .helpers import USER_ID


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_line_user_id(self):
        result = redact_string(f"user {USER_ID} said hi")
        assert USER_ID not in result
        assert "[REDACTED]" in result

    def test_redact_bearer_token(self):
        result = redact_string("Authorization: Bearer abc.def.ghi")
        assert "abc.def.ghi" not in result

    def test_redact_email(self):
        result = redact_string("Email: user@example.com")
        assert "user@example.com" not in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"replyToken": "secret123", "type": "message"})
        assert "secret123" not in result
        assert "replyToken" in result

    def test_redact_value_list_only_len(self):
        result = redact_value([{"type": "text", "text": "hello"}] * 3)
        assert "hello" not in result
        assert "len=3" in result

    def test_safe_log_context(self):
        ctx = safe_log_context(user=USER_ID, count=42, dry_run=True, missing=None)
        assert ctx == {"user": "[REDACTED]", "count": "42", "dry_run": "true", "missing": "null"}


class TestHashIdentifier:
    def test_stable_and_short(self):
        assert hash_identifier(USER_ID) == hash_identifier(USER_ID)
        assert len(hash_identifier(USER_ID)) == 12
        assert USER_ID not in hash_identifier(USER_ID)

    def test_empty(self):
        assert hash_identifier(None) == "none"
        assert hash_identifier("") == "none"


class TestJsonLogging:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("linegate.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_format_includes_fields(self):
        line = JsonFormatter().format(self._record(extra_fields={"event_count": "2"}))
        data = json.loads(line)
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["event_count"] == "2"
        assert "correlationId" not in data

    def test_format_includes_correlation_id(self):
        token = set_correlation_id("cid-123")
        try:
            data = json.loads(JsonFormatter().format(self._record()))
        finally:
            reset_correlation_id(token)
        assert data["correlationId"] == "cid-123"
        assert get_correlation_id() == ""

    def test_get_logger_single_handler(self):
        logger = get_logger("linegate.test.single")
        get_logger("linegate.test.single")
        assert len(logger.handlers) == 1
        assert logger.propagate is False


class TestCorrelationScope:
    def test_binds_and_restores(self):
        with correlation_scope("cid-outer") as outer:
            assert outer == "cid-outer"
            with correlation_scope() as inner:
                assert inner != "cid-outer"
                assert get_correlation_id() == inner
            assert get_correlation_id() == "cid-outer"
        assert get_correlation_id() == ""

    def test_accepts_plain_ids(self):
        assert accept_correlation_id("req-42_a.b:c") == "req-42_a.b:c"

    def test_replaces_unsafe_ids(self):
        for value in (None, "", "x" * 129, 'quote"injection', "new\nline"):
            cid = accept_correlation_id(value)
            assert cid != value
            assert len(cid) == 36
