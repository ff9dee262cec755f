"""Ledger Scheduler - recurring transactions for household finance ledgers."""

__version__ = "0.1.0"

from ledger_scheduler.config import configure_logging, get_settings
from ledger_scheduler.errors import (
    DependencyFailure,
    InvalidTransition,
    ScheduleNotFoundError,
    SchedulerError,
    ValidationError,
)
from ledger_scheduler.events import EventPublisher, EventType
from ledger_scheduler.ledger import LedgerAPIClient
from ledger_scheduler.materializer import (
    MaterializationOutcome,
    MaterializationResult,
    Materializer,
)
from ledger_scheduler.occurrences import first_occurrence, next_occurrence
from ledger_scheduler.recurrence import Frequency, RecurrenceRule
from ledger_scheduler.runner import SchedulerRunner, TickReport
from ledger_scheduler.schedules import (
    ScheduleRecord,
    ScheduleStatus,
    TransactionTemplate,
    TransactionType,
)
from ledger_scheduler.service import ScheduleService
from ledger_scheduler.store import InMemoryScheduleStore, SqlScheduleStore

__all__ = [
    # Version
    "__version__",
    # Rules & calendar
    "Frequency",
    "RecurrenceRule",
    "first_occurrence",
    "next_occurrence",
    # Schedules
    "ScheduleRecord",
    "ScheduleStatus",
    "TransactionTemplate",
    "TransactionType",
    # Stores
    "InMemoryScheduleStore",
    "SqlScheduleStore",
    # Materialization & runner
    "Materializer",
    "MaterializationOutcome",
    "MaterializationResult",
    "SchedulerRunner",
    "TickReport",
    "ScheduleService",
    # Ledger & events
    "LedgerAPIClient",
    "EventPublisher",
    "EventType",
    # Errors
    "SchedulerError",
    "ValidationError",
    "ScheduleNotFoundError",
    "InvalidTransition",
    "DependencyFailure",
    # Config
    "get_settings",
    "configure_logging",
]
