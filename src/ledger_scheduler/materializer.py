"""Materializer: turns one due schedule into one ledger transaction.

The read-decide-write sequence for a schedule runs under that schedule's lock.
Posting is at most once per ``(schedule_id, occurrence_date)``: the store
rejects a second posting row, and the ledger call carries the same pair as
its idempotency key, so a retried or overlapping attempt never produces a
second transaction.

Store calls are blocking, so they run in a worker thread to keep the event
loop free while a database round-trip is in progress.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from uuid import UUID

import structlog

from ledger_scheduler.errors import (
    ConcurrentUpdateError,
    DependencyFailure,
    DuplicatePostingError,
)
from ledger_scheduler.events import (
    EventPublisher,
    schedule_advanced,
    schedule_completed,
    transaction_created,
)
from ledger_scheduler.ledger.base import ReferenceDirectory, TransactionLedger
from ledger_scheduler.locks import ScheduleLocks
from ledger_scheduler.schedules import (
    MaterializedTransaction,
    Posting,
    ScheduleRecord,
    ScheduleStatus,
)
from ledger_scheduler.store.base import ScheduleStore

logger = structlog.get_logger(__name__)


class MaterializationOutcome(str, Enum):
    """What a materialization attempt did."""

    MATERIALIZED = "materialized"
    NOT_DUE = "not_due"
    ALREADY_MATERIALIZED = "already_materialized"


@dataclass
class MaterializationResult:
    """Outcome of one attempt, with the schedule as stored afterwards."""

    outcome: MaterializationOutcome
    schedule: ScheduleRecord
    occurrence_date: date | None = None
    transaction: MaterializedTransaction | None = None

    @property
    def materialized(self) -> bool:
        return self.outcome is MaterializationOutcome.MATERIALIZED


class Materializer:
    """Creates transactions for due schedules and advances them."""

    def __init__(
        self,
        store: ScheduleStore,
        ledger: TransactionLedger,
        directory: ReferenceDirectory,
        publisher: EventPublisher | None = None,
        locks: ScheduleLocks | None = None,
    ):
        self._store = store
        self._ledger = ledger
        self._directory = directory
        self._publisher = publisher
        self.locks = locks if locks is not None else ScheduleLocks()
        self._logger = logger.bind(component="materializer")

    async def materialize(
        self, schedule_id: UUID, today: date, manual: bool = False
    ) -> MaterializationResult:
        """Materialize the schedule's current occurrence if it is due.

        Args:
            schedule_id: Schedule to materialize.
            today: The calendar date considered "now".
            manual: Explicit user action; allowed on paused and
                non-auto-create schedules, but the occurrence must still be due.

        Returns:
            MATERIALIZED with the posted transaction, NOT_DUE, or
            ALREADY_MATERIALIZED when the date was posted before.

        Raises:
            DependencyFailure: A referenced account or category is gone; the
                schedule is left untouched.
            ScheduleNotFoundError: The schedule was deleted.
        """
        async with self.locks.for_schedule(schedule_id):
            schedule = await asyncio.to_thread(self._store.get, schedule_id)
            due = schedule.next_occurrence

            automatic = schedule.is_active and schedule.auto_create
            if due is None or due > today or not (manual or automatic):
                return MaterializationResult(MaterializationOutcome.NOT_DUE, schedule)

            if await asyncio.to_thread(self._store.get_posting, schedule.id, due) is not None:
                return await self._repair(schedule, due)

            await self._check_references(schedule)

            transaction = schedule.materialize_for(due)
            transaction_id = await self._ledger.create_transaction(
                transaction, transaction.idempotency_key
            )
            transaction = replace(transaction, transaction_id=transaction_id)

            try:
                stored = await asyncio.to_thread(
                    self._store.record_materialization,
                    Posting(
                        schedule_id=schedule.id,
                        occurrence_date=due,
                        transaction_id=transaction_id,
                    ),
                    schedule.advanced(due),
                    due,
                )
            except DuplicatePostingError:
                self._logger.debug(
                    "already_materialized",
                    schedule_id=str(schedule.id),
                    occurrence_date=due.isoformat(),
                )
                return MaterializationResult(
                    MaterializationOutcome.ALREADY_MATERIALIZED,
                    await asyncio.to_thread(self._store.get, schedule.id),
                    occurrence_date=due,
                )

        self._logger.info(
            "schedule_materialized",
            schedule_id=str(stored.id),
            occurrence_date=due.isoformat(),
            transaction_id=transaction_id,
            next_occurrence=(
                stored.next_occurrence.isoformat() if stored.next_occurrence else None
            ),
            occurrence_count=stored.occurrence_count,
            manual=manual,
        )
        self._emit(stored, transaction, due)
        return MaterializationResult(
            MaterializationOutcome.MATERIALIZED,
            stored,
            occurrence_date=due,
            transaction=transaction,
        )

    async def _repair(self, schedule: ScheduleRecord, due: date) -> MaterializationResult:
        """The date was posted but the schedule never advanced; advance it now."""
        self._logger.debug(
            "already_materialized",
            schedule_id=str(schedule.id),
            occurrence_date=due.isoformat(),
        )
        try:
            stored = await asyncio.to_thread(
                self._store.compare_and_update, schedule.advanced(due), due
            )
        except ConcurrentUpdateError:
            stored = await asyncio.to_thread(self._store.get, schedule.id)
        else:
            self._logger.warning(
                "schedule_advance_repaired",
                schedule_id=str(schedule.id),
                occurrence_date=due.isoformat(),
            )
            if self._publisher:
                self._publisher.publish(schedule_advanced(stored, due))
        return MaterializationResult(
            MaterializationOutcome.ALREADY_MATERIALIZED, stored, occurrence_date=due
        )

    async def _check_references(self, schedule: ScheduleRecord) -> None:
        t = schedule.template
        if not await self._directory.account_exists(t.account_id):
            raise DependencyFailure(schedule.id, "account", t.account_id)
        if t.transfer_account_id and not await self._directory.account_exists(
            t.transfer_account_id
        ):
            raise DependencyFailure(schedule.id, "transfer_account", t.transfer_account_id)
        if t.category_id and not await self._directory.category_exists(t.category_id):
            raise DependencyFailure(schedule.id, "category", t.category_id)

    def _emit(
        self, schedule: ScheduleRecord, transaction: MaterializedTransaction, due: date
    ) -> None:
        if self._publisher is None:
            return
        self._publisher.publish(transaction_created(transaction))
        self._publisher.publish(schedule_advanced(schedule, due))
        if schedule.status is ScheduleStatus.COMPLETED:
            self._logger.info("schedule_completed", schedule_id=str(schedule.id))
            self._publisher.publish(schedule_completed(schedule))
