"""Structured logging for the scheduler.

Log lines are snake_case events with key/value context. Output goes to
stderr so commands that print results (``tick`` prints its report as JSON)
keep stdout machine-readable. While a tick runs, its date and a short id are
bound to every line via contextvars.
"""

import logging
import sys
from datetime import date
from typing import Literal

import structlog

from ledger_scheduler.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# Chatty at INFO; their warnings still come through.
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "sqlalchemy.engine")


def _renderer(format: LogFormat) -> structlog.types.Processor:
    if format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: LogLevel | None = None, format: LogFormat | None = None) -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL.
        format: ``json`` or ``console``. Defaults to LOG_FORMAT.
    """
    if level is None or format is None:
        settings = get_settings()
        level = level or settings.log_level
        format = format or settings.log_format

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, getattr(logging, level)))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_tick_context(tick_date: date, tick_id: str) -> None:
    """Attach the current tick to every log line emitted from this task."""
    structlog.contextvars.bind_contextvars(tick_date=tick_date.isoformat(), tick_id=tick_id)


def clear_tick_context() -> None:
    structlog.contextvars.unbind_contextvars("tick_date", "tick_id")
