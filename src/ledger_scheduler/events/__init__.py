"""Scheduler events and their publisher."""

from ledger_scheduler.events.publisher import EventPublisher, Subscriber
from ledger_scheduler.events.types import (
    EventType,
    ScheduleEvent,
    SchedulerEvent,
    TickEvent,
    TransactionEvent,
    reminder_sent,
    schedule_advanced,
    schedule_completed,
    schedule_created,
    schedule_deleted,
    schedule_failed,
    schedule_paused,
    schedule_resumed,
    schedule_rolled_forward,
    schedule_updated,
    tick_completed,
    tick_started,
    transaction_created,
)

__all__ = [
    "EventPublisher",
    "Subscriber",
    "EventType",
    "SchedulerEvent",
    "ScheduleEvent",
    "TransactionEvent",
    "TickEvent",
    "schedule_created",
    "schedule_updated",
    "schedule_deleted",
    "schedule_paused",
    "schedule_resumed",
    "schedule_completed",
    "schedule_advanced",
    "schedule_rolled_forward",
    "schedule_failed",
    "transaction_created",
    "tick_started",
    "tick_completed",
    "reminder_sent",
]
