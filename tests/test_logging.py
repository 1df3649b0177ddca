"""Tests for logging helpers."""
from __future__ import annotations

import json
import logging

from core.logging_config import ContextLogger, JSONFormatter, get_context_logger


def _record(**extra):
    record = logging.LogRecord("loops", logging.INFO, __file__, 10, "Updated loop %s", (7,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """JSONFormatter output."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "loops"
        assert data["message"] == "Updated loop 7"
        assert "request_id" not in data

    def test_context_and_extra(self):
        line = JSONFormatter().format(_record(request_id="abc", loop_id=7, extra_data={"fields": ["notes"]}))
        data = json.loads(line)
        assert data["request_id"] == "abc"
        assert data["loop_id"] == 7
        assert data["extra"] == {"fields": ["notes"]}


def test_context_logger_merges_extra():
    logger = get_context_logger("loops", request_id="abc")
    assert isinstance(logger, ContextLogger)

    _, kwargs = logger.process("hello", {"extra": {"loop_id": 3}})

    assert kwargs["extra"] == {"request_id": "abc", "loop_id": 3}


def test_request_id_header_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
