"""Typed events emitted by the scheduler.

Consumers (UI refreshers, notification fan-out, audit) subscribe to these
instead of re-reading every schedule after each change.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from ledger_scheduler.schedules import MaterializedTransaction, ScheduleRecord


class EventType(str, Enum):
    """Types of events published by the scheduler."""

    # Schedule lifecycle
    SCHEDULE_CREATED = "schedule.created"
    SCHEDULE_UPDATED = "schedule.updated"
    SCHEDULE_DELETED = "schedule.deleted"
    SCHEDULE_PAUSED = "schedule.paused"
    SCHEDULE_RESUMED = "schedule.resumed"
    SCHEDULE_COMPLETED = "schedule.completed"

    # Materialization
    SCHEDULE_ADVANCED = "schedule.advanced"
    SCHEDULE_ROLLED_FORWARD = "schedule.rolled_forward"
    SCHEDULE_FAILED = "schedule.failed"
    TRANSACTION_CREATED = "transaction.created"

    # Runner
    TICK_STARTED = "tick.started"
    TICK_COMPLETED = "tick.completed"
    REMINDER_SENT = "reminder.sent"


@dataclass
class SchedulerEvent:
    """Base event structure for all scheduler events."""

    event_type: EventType
    household_id: UUID | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-ready dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "household_id": str(self.household_id) if self.household_id else None,
            "data": self.data,
        }


@dataclass
class ScheduleEvent(SchedulerEvent):
    """A schedule changed state or position."""

    schedule_id: UUID | None = None
    status: str = ""
    next_occurrence: date | None = None
    occurrence_count: int = 0
    last_occurrence: date | None = None

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["schedule"] = {
            "id": str(self.schedule_id) if self.schedule_id else None,
            "status": self.status,
            "next_occurrence": (
                self.next_occurrence.isoformat() if self.next_occurrence else None
            ),
            "occurrence_count": self.occurrence_count,
            "last_occurrence": (
                self.last_occurrence.isoformat() if self.last_occurrence else None
            ),
        }
        return base


@dataclass
class TransactionEvent(SchedulerEvent):
    """A transaction was created in the ledger from a schedule."""

    schedule_id: UUID | None = None
    transaction_id: str | None = None
    occurrence_date: date | None = None
    transaction_type: str = ""
    amount: Decimal = Decimal("0")
    currency: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["transaction"] = {
            "id": self.transaction_id,
            "schedule_id": str(self.schedule_id) if self.schedule_id else None,
            "date": self.occurrence_date.isoformat() if self.occurrence_date else None,
            "type": self.transaction_type,
            "amount": str(self.amount),
            "currency": self.currency,
            "description": self.description,
        }
        return base


@dataclass
class TickEvent(SchedulerEvent):
    """Start or end of a runner tick."""

    tick_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["tick"] = {"date": self.tick_date.isoformat() if self.tick_date else None}
        return base


# Factory functions for creating events


def _schedule_event(
    event_type: EventType, schedule: ScheduleRecord, data: dict[str, Any] | None = None
) -> ScheduleEvent:
    return ScheduleEvent(
        event_type=event_type,
        household_id=schedule.household_id,
        schedule_id=schedule.id,
        status=schedule.status.value,
        next_occurrence=schedule.next_occurrence,
        occurrence_count=schedule.occurrence_count,
        last_occurrence=schedule.last_occurrence,
        data=data or {},
    )


def schedule_created(schedule: ScheduleRecord) -> ScheduleEvent:
    return _schedule_event(
        EventType.SCHEDULE_CREATED, schedule, {"label": schedule.rule.describe()}
    )


def schedule_updated(schedule: ScheduleRecord, changed: list[str]) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_UPDATED, schedule, {"changed": changed})


def schedule_deleted(schedule: ScheduleRecord) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_DELETED, schedule)


def schedule_paused(schedule: ScheduleRecord) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_PAUSED, schedule)


def schedule_resumed(schedule: ScheduleRecord) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_RESUMED, schedule)


def schedule_completed(schedule: ScheduleRecord) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_COMPLETED, schedule)


def schedule_advanced(schedule: ScheduleRecord, occurrence_date: date) -> ScheduleEvent:
    """The schedule posted ``occurrence_date`` and moved on."""
    return _schedule_event(
        EventType.SCHEDULE_ADVANCED,
        schedule,
        {"materialized_date": occurrence_date.isoformat()},
    )


def schedule_rolled_forward(schedule: ScheduleRecord, skipped_from: date) -> ScheduleEvent:
    """A manual schedule skipped unconfirmed occurrences for display."""
    return _schedule_event(
        EventType.SCHEDULE_ROLLED_FORWARD,
        schedule,
        {"skipped_from": skipped_from.isoformat()},
    )


def schedule_failed(schedule: ScheduleRecord, error: str) -> ScheduleEvent:
    return _schedule_event(EventType.SCHEDULE_FAILED, schedule, {"error": error})


def transaction_created(transaction: MaterializedTransaction) -> TransactionEvent:
    return TransactionEvent(
        event_type=EventType.TRANSACTION_CREATED,
        household_id=transaction.household_id,
        schedule_id=transaction.schedule_id,
        transaction_id=transaction.transaction_id,
        occurrence_date=transaction.date,
        transaction_type=transaction.type.value,
        amount=transaction.amount,
        currency=transaction.currency,
        description=transaction.description or "",
    )


def tick_started(tick_date: date, due: int) -> TickEvent:
    return TickEvent(event_type=EventType.TICK_STARTED, tick_date=tick_date, data={"due": due})


def tick_completed(tick_date: date, summary: dict[str, Any]) -> TickEvent:
    return TickEvent(
        event_type=EventType.TICK_COMPLETED, tick_date=tick_date, data={"summary": summary}
    )


def reminder_sent(schedule: ScheduleRecord, days_until: int) -> ScheduleEvent:
    return _schedule_event(EventType.REMINDER_SENT, schedule, {"days_until": days_until})
