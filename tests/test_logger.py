"""
Tests for common/logger.py

Covers LogContext binding, both formatters and the error webhook.
Run from project root: pytest tests/test_logger.py -v -s
"""

import json
import logging
import sys

import requests

from graph_lifecycle.common import logger as logger_module
from graph_lifecycle.common.logger import (
    JsonFormatter,
    LifecycleLogger,
    LogContext,
    TextFormatter,
    current_context,
    logger,
)


def make_record(message="hello", level=logging.INFO):
    return logging.LogRecord("graph_lifecycle", level, __file__, 10, message, None, None)


def test_basic_log_levels(caplog):
    """Records at every level reach the handlers."""
    logger.info("This is an INFO message")
    logger.warning("This is a WARNING message")
    logger.error("This is an ERROR message")
    logger.critical("This is a CRITICAL message")

    assert len(caplog.records) >= 4
    assert any(record.levelname == "CRITICAL" for record in caplog.records)


def test_nested_contexts():
    """Inner contexts add fields and restore the outer ones on exit."""
    with LogContext(run_id="run-1"):
        assert current_context() == {"run_id": "run-1"}

        with LogContext(stage="seed", operation="add_vertex"):
            assert current_context() == {"run_id": "run-1", "stage": "seed", "operation": "add_vertex"}

        assert current_context() == {"run_id": "run-1"}

    assert current_context() == {}


def test_json_formatter_includes_context():
    """JSON records carry the context that is set, and only that."""
    with LogContext(run_id="abc", stage="schema"):
        data = json.loads(JsonFormatter().format(make_record()))

    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["run_id"] == "abc"
    assert data["stage"] == "schema"
    assert "operation" not in data

    data = json.loads(JsonFormatter().format(make_record()))
    assert "run_id" not in data


def test_json_formatter_includes_exception():
    """Exception info is rendered into the JSON record."""
    try:
        raise ValueError("bad value")
    except ValueError:
        record = logging.LogRecord("graph_lifecycle", logging.ERROR, __file__, 10, "failed", None, sys.exc_info())

    data = json.loads(JsonFormatter().format(record))
    assert "ValueError: bad value" in data["exception"]


def test_text_formatter_context_prefix():
    """TEXT format shows the context in brackets before the location."""
    with LogContext(run_id="r1", stage="drain"):
        text = TextFormatter().format(make_record("deleting"))

    assert "[run_id=r1 stage=drain]" in text
    assert "deleting" in text
    assert "[INFO]" in text


def test_exception_logging(caplog):
    """logger.exception keeps the stack trace on the record."""
    try:
        10 / 0
    except ZeroDivisionError as e:
        logger.exception(e)

    assert any(record.exc_info for record in caplog.records)


def test_webhook_receives_errors(monkeypatch):
    """ERROR records are posted to the configured webhook."""
    calls = []
    monkeypatch.setattr(logger_module.requests, "post", lambda url, **kwargs: calls.append((url, kwargs)))

    alert_logger = LifecycleLogger("graph_lifecycle.test_webhook")
    alert_logger.webhook_url = "https://hooks.example.com/T000"
    alert_logger.error("seed failed")

    assert len(calls) == 1
    url, kwargs = calls[0]
    assert url == "https://hooks.example.com/T000"
    payload = json.loads(kwargs["data"])
    assert "seed failed" in payload["attachments"][0]["fields"][0]["value"]


def test_webhook_failure_is_not_raised(monkeypatch):
    """A webhook that cannot be reached does not break logging."""
    def failing_post(url, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(logger_module.requests, "post", failing_post)

    alert_logger = LifecycleLogger("graph_lifecycle.test_webhook_failure")
    alert_logger.webhook_url = "https://hooks.example.com/T000"
    alert_logger.error(RuntimeError("boom"))


def test_no_webhook_without_url(monkeypatch):
    """Without a webhook URL nothing is posted."""
    calls = []
    monkeypatch.setattr(logger_module.requests, "post", lambda url, **kwargs: calls.append(url))

    alert_logger = LifecycleLogger("graph_lifecycle.test_no_webhook")
    alert_logger.webhook_url = None
    alert_logger.error("quiet")

    assert calls == []
