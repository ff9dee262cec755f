"""Schedule persistence."""

from ledger_scheduler.store.base import ScheduleStore
from ledger_scheduler.store.memory import InMemoryScheduleStore
from ledger_scheduler.store.sql import SqlScheduleStore, build_engine

__all__ = [
    "ScheduleStore",
    "InMemoryScheduleStore",
    "SqlScheduleStore",
    "build_engine",
]
