"""UI-facing operations on recurring schedules.

Edits take the same per-schedule lock the runner uses, so a user change never
interleaves with a materialization of the same schedule in this process.
Across processes every write is conditional on the version that was read and
is retried on a fresh read when another process wrote first.
"""

import asyncio
from collections.abc import Callable
from dataclasses import asdict
from datetime import date
from typing import Any
from uuid import UUID

import structlog

from ledger_scheduler.errors import (
    ConcurrentUpdateError,
    FieldError,
    SchedulerError,
    ValidationError,
)
from ledger_scheduler.events import (
    EventPublisher,
    schedule_completed,
    schedule_created,
    schedule_deleted,
    schedule_paused,
    schedule_resumed,
    schedule_updated,
)
from ledger_scheduler.locks import ScheduleLocks
from ledger_scheduler.materializer import MaterializationResult, Materializer
from ledger_scheduler.occurrences import occurrences_after
from ledger_scheduler.recurrence import RecurrenceRule
from ledger_scheduler.schedules import (
    ScheduleRecord,
    ScheduleStatus,
    TransactionTemplate,
)
from ledger_scheduler.store.base import ScheduleStore

logger = structlog.get_logger(__name__)

RULE_FIELDS = frozenset(
    {"frequency", "start_date", "end_date", "day_of_week", "day_of_month", "month"}
)
TEMPLATE_FIELDS = frozenset(
    {
        "account_id",
        "type",
        "amount",
        "currency",
        "description",
        "merchant",
        "category_id",
        "transfer_account_id",
    }
)
FLAG_FIELDS = frozenset({"auto_create", "is_active"})

# Read-modify-write attempts before a concurrent writer wins.
WRITE_ATTEMPTS = 3


def _build(
    template_fields: dict[str, Any], rule_fields: dict[str, Any]
) -> tuple[TransactionTemplate, RecurrenceRule]:
    """Validate template and rule together so every bad field is reported."""
    errors: list[FieldError] = []
    template = rule = None
    try:
        template = TransactionTemplate.create(**template_fields)
    except ValidationError as e:
        errors.extend(e.errors)
    try:
        rule = RecurrenceRule.create(**rule_fields)
    except ValidationError as e:
        errors.extend(e.errors)
    if errors:
        raise ValidationError(errors)
    assert template is not None and rule is not None
    return template, rule


def _rule_fields(rule: RecurrenceRule) -> dict[str, Any]:
    return {
        "frequency": rule.frequency,
        "start_date": rule.start_date,
        "end_date": rule.end_date,
        "day_of_week": rule.day_of_week,
        "day_of_month": rule.day_of_month,
        "month": rule.month,
    }


class ScheduleService:
    """Create, edit, toggle, delete, read and manually trigger schedules."""

    def __init__(
        self,
        store: ScheduleStore,
        materializer: Materializer | None = None,
        publisher: EventPublisher | None = None,
    ):
        self._store = store
        self._materializer = materializer
        self._publisher = publisher
        self._locks = materializer.locks if materializer else ScheduleLocks()
        self._logger = logger.bind(component="schedule_service")

    def _publish(self, event: Any) -> None:
        if self._publisher:
            self._publisher.publish(event)

    # === Commands ===

    async def create(
        self,
        household_id: UUID,
        *,
        account_id: UUID | str,
        type: str,
        amount: Any,
        frequency: str,
        start_date: date | str,
        end_date: date | str | None = None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        month: int | None = None,
        currency: str = "USD",
        description: str | None = None,
        merchant: str | None = None,
        category_id: UUID | str | None = None,
        transfer_account_id: UUID | str | None = None,
        auto_create: bool = False,
        is_active: bool = True,
    ) -> ScheduleRecord:
        """Validate and persist a new schedule.

        Raises:
            ValidationError: Any field is invalid, or no occurrence falls
                between start and end date. Nothing is persisted.
        """
        template, rule = _build(
            {
                "account_id": account_id,
                "type": type,
                "amount": amount,
                "currency": currency,
                "description": description,
                "merchant": merchant,
                "category_id": category_id,
                "transfer_account_id": transfer_account_id,
            },
            {
                "frequency": frequency,
                "start_date": start_date,
                "end_date": end_date,
                "day_of_week": day_of_week,
                "day_of_month": day_of_month,
                "month": month,
            },
        )
        schedule = await asyncio.to_thread(
            self._store.create,
            ScheduleRecord.new(
                household_id,
                template,
                rule,
                auto_create=auto_create,
                is_active=is_active,
            ),
        )
        self._logger.info(
            "schedule_created",
            schedule_id=str(schedule.id),
            frequency=rule.frequency.value,
            next_occurrence=(
                schedule.next_occurrence.isoformat() if schedule.next_occurrence else None
            ),
            auto_create=auto_create,
        )
        self._publish(schedule_created(schedule))
        return schedule

    async def update(self, schedule_id: UUID, **changes: Any) -> ScheduleRecord:
        """Apply a partial edit.

        Changing any recurrence field re-derives ``next_occurrence`` from the
        last posted date, so dates already posted are never produced again.

        Raises:
            ValidationError: Unknown or invalid fields.
            InvalidTransition: ``is_active=True`` on a Completed schedule.
            ScheduleNotFoundError: No such schedule.
        """
        unknown = sorted(set(changes) - RULE_FIELDS - TEMPLATE_FIELDS - FLAG_FIELDS)
        if unknown:
            raise ValidationError([FieldError(f, "is not an editable field") for f in unknown])

        def change(current: ScheduleRecord) -> ScheduleRecord:
            template, rule = _build(
                {
                    **asdict(current.template),
                    **{k: v for k, v in changes.items() if k in TEMPLATE_FIELDS},
                },
                {
                    **_rule_fields(current.rule),
                    **{k: v for k, v in changes.items() if k in RULE_FIELDS},
                },
            )
            updated = current.with_template(template).with_rule(rule)
            if "auto_create" in changes:
                updated = updated.with_auto_create(bool(changes["auto_create"]))
            if "is_active" in changes:
                updated = updated.resumed() if changes["is_active"] else updated.paused()
            return updated

        current, stored = await self._read_modify_write(schedule_id, change)
        if stored is current:
            return current

        changed = sorted(changes)
        self._logger.info(
            "schedule_updated",
            schedule_id=str(stored.id),
            changed=changed,
            status=stored.status.value,
            next_occurrence=(
                stored.next_occurrence.isoformat() if stored.next_occurrence else None
            ),
        )
        self._publish(schedule_updated(stored, changed))
        if stored.status is not current.status:
            self._publish_status_change(stored)
        return stored

    async def delete(self, schedule_id: UUID) -> None:
        async with self._locks.for_schedule(schedule_id):
            schedule = await asyncio.to_thread(self._store.get, schedule_id)
            await asyncio.to_thread(self._store.delete, schedule_id)
        self._locks.discard(schedule_id)
        self._logger.info("schedule_deleted", schedule_id=str(schedule_id))
        self._publish(schedule_deleted(schedule))

    async def pause(self, schedule_id: UUID) -> ScheduleRecord:
        return await self._transition(schedule_id, lambda s: s.paused())

    async def resume(self, schedule_id: UUID) -> ScheduleRecord:
        """Resume from the frozen next occurrence, even if it is now in the past."""
        return await self._transition(schedule_id, lambda s: s.resumed())

    async def toggle(self, schedule_id: UUID) -> ScheduleRecord:
        return await self._transition(schedule_id, lambda s: s.toggled())

    async def _transition(
        self, schedule_id: UUID, change: Callable[[ScheduleRecord], ScheduleRecord]
    ) -> ScheduleRecord:
        current, stored = await self._read_modify_write(schedule_id, change)
        if stored is current:
            return current
        self._logger.info(
            "schedule_toggled", schedule_id=str(stored.id), status=stored.status.value
        )
        self._publish_status_change(stored)
        return stored

    async def _read_modify_write(
        self, schedule_id: UUID, change: Callable[[ScheduleRecord], ScheduleRecord]
    ) -> tuple[ScheduleRecord, ScheduleRecord]:
        """Apply ``change`` to the stored schedule under its lock.

        Another process may write the schedule between our read and write; the
        change is then re-applied to a fresh read, up to ``WRITE_ATTEMPTS`` times.
        Returns the record as read and as stored (the same object if ``change``
        was a no-op).
        """
        async with self._locks.for_schedule(schedule_id):
            attempt = 1
            while True:
                current = await asyncio.to_thread(self._store.get, schedule_id)
                updated = change(current)
                if updated is current:
                    return current, current
                try:
                    stored = await asyncio.to_thread(
                        self._store.compare_and_update, updated, current.next_occurrence
                    )
                except ConcurrentUpdateError:
                    if attempt >= WRITE_ATTEMPTS:
                        raise
                    self._logger.debug(
                        "schedule_write_retried", schedule_id=str(schedule_id), attempt=attempt
                    )
                    attempt += 1
                    continue
                return current, stored

    def _publish_status_change(self, schedule: ScheduleRecord) -> None:
        match schedule.status:
            case ScheduleStatus.ACTIVE:
                self._publish(schedule_resumed(schedule))
            case ScheduleStatus.PAUSED:
                self._publish(schedule_paused(schedule))
            case ScheduleStatus.COMPLETED:
                self._publish(schedule_completed(schedule))

    async def materialize_now(self, schedule_id: UUID, today: date) -> MaterializationResult:
        """Post the current occurrence of a schedule on the user's request.

        Works on manual and paused schedules, but the occurrence must be due.

        Raises:
            DependencyFailure: A referenced account or category is gone.
        """
        if self._materializer is None:
            raise SchedulerError("Manual materialization needs a configured ledger")
        result = await self._materializer.materialize(schedule_id, today, manual=True)
        self._logger.info(
            "manual_materialization",
            schedule_id=str(schedule_id),
            outcome=result.outcome.value,
        )
        return result

    # === Queries ===

    def get(self, schedule_id: UUID) -> ScheduleRecord:
        return self._store.get(schedule_id)

    def list_schedules(
        self, household_id: UUID | None = None, status: ScheduleStatus | None = None
    ) -> list[ScheduleRecord]:
        schedules = self._store.list_schedules(household_id)
        if status is not None:
            schedules = [s for s in schedules if s.status is status]
        return schedules

    def preview(self, schedule_id: UUID, count: int = 5) -> list[date]:
        """Upcoming occurrences, starting with the stored next occurrence."""
        schedule = self._store.get(schedule_id)
        if schedule.next_occurrence is None or count <= 0:
            return []
        return [schedule.next_occurrence] + occurrences_after(
            schedule.rule, schedule.next_occurrence, count - 1
        )
