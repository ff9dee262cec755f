"""Configuration module for the recurring-transaction scheduler."""

from ledger_scheduler.config.logging import (
    bind_tick_context,
    clear_tick_context,
    configure_logging,
    get_logger,
)
from ledger_scheduler.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "bind_tick_context",
    "clear_tick_context",
]
