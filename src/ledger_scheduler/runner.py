"""Periodic driver that materializes due schedules.

Each tick:

1. materializes every active auto-create schedule that is due, catching a
   schedule that is several periods behind up within the same tick;
2. rolls manual schedules whose next occurrence has passed forward to the
   first occurrence on or after today, without posting;
3. sends bill reminders for occurrences coming up within a few days, once
   per occurrence; sent reminders are claimed in the store, so a restarted
   runner or a second process does not repeat them.

One schedule failing never aborts the batch. Overlapping ticks are safe: the
per-schedule lock and the store's unique posting keep each date to a single
transaction.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID, uuid4

import structlog

from ledger_scheduler.config import bind_tick_context, clear_tick_context, get_settings
from ledger_scheduler.errors import (
    ConcurrentUpdateError,
    DependencyFailure,
    ScheduleNotFoundError,
)
from ledger_scheduler.events import (
    EventPublisher,
    reminder_sent,
    schedule_completed,
    schedule_failed,
    schedule_rolled_forward,
    tick_completed,
    tick_started,
)
from ledger_scheduler.ledger.base import Notifier
from ledger_scheduler.materializer import MaterializationOutcome, Materializer
from ledger_scheduler.schedules import (
    MaterializedTransaction,
    ScheduleRecord,
    ScheduleStatus,
)
from ledger_scheduler.store.base import ScheduleStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScheduleFailure:
    """One schedule that could not be processed this tick."""

    schedule_id: UUID
    error_type: str
    message: str


@dataclass
class TickReport:
    """What a single tick did."""

    tick_date: date
    materialized: list[MaterializedTransaction] = field(default_factory=list)
    already_materialized: int = 0
    rolled_forward: list[UUID] = field(default_factory=list)
    reminders: list[UUID] = field(default_factory=list)
    failures: list[ScheduleFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> dict[str, Any]:
        return {
            "materialized": len(self.materialized),
            "already_materialized": self.already_materialized,
            "rolled_forward": len(self.rolled_forward),
            "reminders": len(self.reminders),
            "failures": len(self.failures),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_date": self.tick_date.isoformat(),
            **self.summary(),
            "transactions": [
                {
                    "schedule_id": str(t.schedule_id),
                    "transaction_id": t.transaction_id,
                    "date": t.date.isoformat(),
                    "amount": str(t.amount),
                    "currency": t.currency,
                }
                for t in self.materialized
            ],
            "errors": [
                {
                    "schedule_id": str(f.schedule_id),
                    "error_type": f.error_type,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }


def _days_text(days_until: int) -> str:
    if days_until == 0:
        return "today"
    if days_until == 1:
        return "tomorrow"
    return f"in {days_until} days"


class SchedulerRunner:
    """Runs ticks over a schedule store, once or on an interval."""

    def __init__(
        self,
        store: ScheduleStore,
        materializer: Materializer,
        notifier: Notifier | None = None,
        publisher: EventPublisher | None = None,
        reminder_days_ahead: int | None = None,
        max_catch_up: int | None = None,
    ):
        if reminder_days_ahead is None or max_catch_up is None:
            settings = get_settings()
            if reminder_days_ahead is None:
                reminder_days_ahead = settings.reminder_days_ahead
            if max_catch_up is None:
                max_catch_up = settings.max_catch_up
        self._store = store
        self._materializer = materializer
        self._notifier = notifier
        self._publisher = publisher
        self._reminder_days_ahead = reminder_days_ahead
        self._max_catch_up = max_catch_up

        self._reminders_sent = 0
        self._is_running = False
        self._tick_count = 0

        self._logger = logger.bind(component="scheduler_runner")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def _publish(self, event: Any) -> None:
        if self._publisher:
            self._publisher.publish(event)

    async def tick(self, now: date) -> TickReport:
        """Process every schedule that needs attention as of ``now``."""
        report = TickReport(tick_date=now)
        bind_tick_context(now, uuid4().hex[:8])
        try:
            due = [
                s
                for s in await asyncio.to_thread(self._store.list_active_due, now)
                if s.auto_create
            ]
            self._logger.info("tick_started", due=len(due))
            self._publish(tick_started(now, len(due)))

            for schedule in due:
                await self._catch_up(schedule, now, report)

            await self._roll_forward_manual(now, report)
            await self._send_reminders(now, report)

            self._tick_count += 1
            summary = report.summary()
            self._logger.info("tick_completed", **summary)
            self._publish(tick_completed(now, summary))
            return report
        finally:
            clear_tick_context()

    async def _catch_up(self, schedule: ScheduleRecord, now: date, report: TickReport) -> None:
        """Materialize one schedule repeatedly until it is no longer due."""
        for _ in range(self._max_catch_up):
            try:
                result = await self._materializer.materialize(schedule.id, now)
            except ScheduleNotFoundError:
                self._logger.debug("schedule_deleted_during_tick", schedule_id=str(schedule.id))
                return
            except DependencyFailure as e:
                await self._record_dependency_failure(schedule, e, report)
                return
            except Exception as e:
                self._logger.exception(
                    "materialization_failed", schedule_id=str(schedule.id), error=str(e)
                )
                report.failures.append(
                    ScheduleFailure(schedule.id, type(e).__name__, str(e))
                )
                return

            match result.outcome:
                case MaterializationOutcome.MATERIALIZED:
                    assert result.transaction is not None
                    report.materialized.append(result.transaction)
                case MaterializationOutcome.ALREADY_MATERIALIZED:
                    report.already_materialized += 1
                case MaterializationOutcome.NOT_DUE:
                    return

        self._logger.warning(
            "catch_up_limit_reached",
            schedule_id=str(schedule.id),
            max_catch_up=self._max_catch_up,
        )

    async def _record_dependency_failure(
        self, schedule: ScheduleRecord, error: DependencyFailure, report: TickReport
    ) -> None:
        self._logger.warning(
            "dependency_failure",
            schedule_id=str(schedule.id),
            reference=error.reference,
            reference_id=str(error.reference_id),
        )
        report.failures.append(
            ScheduleFailure(schedule.id, type(error).__name__, str(error))
        )
        self._publish(schedule_failed(schedule, str(error)))

        if self._notifier is None:
            return
        label = schedule.template.description or "Recurring transaction"
        try:
            await self._notifier.notify(
                schedule.household_id,
                "Recurring transaction failed",
                f"{label} could not be created: its {error.reference.replace('_', ' ')} "
                "no longer exists.",
                resource_id=schedule.id,
            )
        except Exception as e:
            self._logger.error(
                "failure_notification_error", schedule_id=str(schedule.id), error=str(e)
            )

    async def _roll_forward_manual(self, now: date, report: TickReport) -> None:
        """Move stale manual schedules to their first occurrence on or after ``now``."""
        stale = [
            s
            for s in await asyncio.to_thread(self._store.list_schedules)
            if s.is_active
            and not s.auto_create
            and s.next_occurrence is not None
            and s.next_occurrence < now
        ]
        for candidate in stale:
            async with self._materializer.locks.for_schedule(candidate.id):
                try:
                    schedule = await asyncio.to_thread(self._store.get, candidate.id)
                except ScheduleNotFoundError:
                    continue
                rolled = schedule.rolled_forward(now)
                if rolled is schedule or schedule.auto_create:
                    continue
                try:
                    stored = await asyncio.to_thread(
                        self._store.compare_and_update, rolled, schedule.next_occurrence
                    )
                except ConcurrentUpdateError:
                    self._logger.debug("roll_forward_skipped", schedule_id=str(schedule.id))
                    continue

            assert schedule.next_occurrence is not None
            report.rolled_forward.append(stored.id)
            self._logger.info(
                "schedule_rolled_forward",
                schedule_id=str(stored.id),
                skipped_from=schedule.next_occurrence.isoformat(),
                next_occurrence=(
                    stored.next_occurrence.isoformat() if stored.next_occurrence else None
                ),
            )
            self._publish(schedule_rolled_forward(stored, schedule.next_occurrence))
            if stored.status is ScheduleStatus.COMPLETED:
                self._publish(schedule_completed(stored))

    async def _send_reminders(self, now: date, report: TickReport) -> None:
        """Notify about occurrences due within the reminder window."""
        if self._notifier is None or self._reminder_days_ahead < 0:
            return

        for schedule in await asyncio.to_thread(self._store.list_schedules):
            upcoming = schedule.next_occurrence
            if not schedule.is_active or upcoming is None:
                continue
            days_until = (upcoming - now).days
            if not 0 <= days_until <= self._reminder_days_ahead:
                continue
            try:
                claimed = await asyncio.to_thread(
                    self._store.claim_reminder, schedule.id, upcoming
                )
            except ScheduleNotFoundError:
                continue
            if not claimed:
                continue

            t = schedule.template
            days_text = _days_text(days_until)
            try:
                await self._notifier.notify(
                    schedule.household_id,
                    f"Bill due {days_text}",
                    f"{t.description or 'Recurring payment'} of {t.amount:.2f} "
                    f"{t.currency} is due {days_text}.",
                    resource_id=schedule.id,
                )
            except Exception as e:
                self._logger.error(
                    "reminder_failed", schedule_id=str(schedule.id), error=str(e)
                )
                await asyncio.to_thread(self._store.release_reminder, schedule.id, upcoming)
                continue

            self._reminders_sent += 1
            report.reminders.append(schedule.id)
            self._publish(reminder_sent(schedule, days_until))

    async def run_forever(
        self, interval: float | None = None, today: Callable[[], date] | None = None
    ) -> None:
        """Tick every ``interval`` seconds until :meth:`stop` is called.

        Args:
            interval: Seconds between ticks; defaults to TICK_INTERVAL_SECONDS.
            today: Zero-argument callable returning the current date.
        """
        interval = get_settings().tick_interval_seconds if interval is None else interval
        today = today or date.today
        self._is_running = True
        self._logger.info("runner_starting", interval=interval)

        try:
            while self._is_running:
                try:
                    await self.tick(today())
                except Exception as e:
                    self._logger.exception("tick_error", error=str(e))

                elapsed = 0.0
                while elapsed < interval and self._is_running:
                    step = min(0.5, interval - elapsed)
                    await asyncio.sleep(step)
                    elapsed += step
        finally:
            self._is_running = False
            self._logger.info("runner_stopped", ticks=self._tick_count)

    def stop(self) -> None:
        """Stop after the current tick."""
        self._is_running = False

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self._is_running,
            "tick_count": self._tick_count,
            "reminder_days_ahead": self._reminder_days_ahead,
            "max_catch_up": self._max_catch_up,
            "reminders_sent": self._reminders_sent,
        }
