"""Tests for logging helpers."""

import logging
from datetime import date

import structlog

from ledger_scheduler.config import (
    bind_tick_context,
    clear_tick_context,
    configure_logging,
    get_logger,
)


def test_tick_context_bound_and_cleared():
    bind_tick_context(date(2024, 1, 31), "abc12345")
    try:
        context = structlog.contextvars.get_contextvars()
        assert context["tick_date"] == "2024-01-31"
        assert context["tick_id"] == "abc12345"
    finally:
        clear_tick_context()

    assert "tick_date" not in structlog.contextvars.get_contextvars()


def test_configure_logging_json_renderer():
    configure_logging("DEBUG", "json")
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    configure_logging("INFO", "console")
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_library_loggers_quietened():
    configure_logging("DEBUG", "console")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    configure_logging("ERROR", "console")
    assert logging.getLogger("httpx").level == logging.ERROR


def test_get_logger_logs_with_bound_values():
    with structlog.testing.capture_logs() as logs:
        get_logger("ledger_scheduler.test").bind(component="test").info(
            "schedule_materialized", schedule_id="s-1"
        )

    assert logs == [
        {
            "event": "schedule_materialized",
            "log_level": "info",
            "component": "test",
            "schedule_id": "s-1",
        }
    ]
