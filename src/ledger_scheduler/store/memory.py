"""In-process schedule store backed by dictionaries."""

import threading
from dataclasses import replace
from datetime import date
from uuid import UUID

import structlog

from ledger_scheduler.errors import (
    ConcurrentUpdateError,
    DuplicatePostingError,
    ScheduleNotFoundError,
    SchedulerError,
)
from ledger_scheduler.schedules import Posting, ScheduleRecord
from ledger_scheduler.store.base import ScheduleStore

logger = structlog.get_logger(__name__)


class InMemoryScheduleStore(ScheduleStore):
    """Thread-safe store for tests, previews and single-process deployments.

    Records are copied on the way in and out so callers never share state
    with the arena.
    """

    def __init__(self) -> None:
        self._schedules: dict[UUID, ScheduleRecord] = {}
        self._postings: dict[tuple[UUID, date], Posting] = {}
        self._reminders: set[tuple[UUID, date]] = set()
        self._lock = threading.RLock()
        self._logger = logger.bind(component="memory_store")

    def __len__(self) -> int:
        return len(self._schedules)

    def _require(self, schedule_id: UUID) -> ScheduleRecord:
        try:
            return self._schedules[schedule_id]
        except KeyError:
            raise ScheduleNotFoundError(schedule_id) from None

    def _write(self, schedule: ScheduleRecord, current: ScheduleRecord) -> ScheduleRecord:
        stored = replace(schedule, version=current.version + 1)
        self._schedules[schedule.id] = stored
        return replace(stored)

    def create(self, schedule: ScheduleRecord) -> ScheduleRecord:
        with self._lock:
            if schedule.id in self._schedules:
                raise SchedulerError(f"Recurring schedule {schedule.id} already exists")
            self._schedules[schedule.id] = replace(schedule)
        self._logger.debug("schedule_stored", schedule_id=str(schedule.id))
        return replace(schedule)

    def get(self, schedule_id: UUID) -> ScheduleRecord:
        with self._lock:
            return replace(self._require(schedule_id))

    def update(self, schedule: ScheduleRecord) -> ScheduleRecord:
        with self._lock:
            return self._write(schedule, self._require(schedule.id))

    def compare_and_update(
        self, schedule: ScheduleRecord, expected_next_occurrence: date | None
    ) -> ScheduleRecord:
        with self._lock:
            current = self._require(schedule.id)
            if (
                current.version != schedule.version
                or current.next_occurrence != expected_next_occurrence
            ):
                raise ConcurrentUpdateError(
                    schedule.id, expected_next_occurrence, current.next_occurrence
                )
            return self._write(schedule, current)

    def delete(self, schedule_id: UUID) -> None:
        with self._lock:
            self._require(schedule_id)
            del self._schedules[schedule_id]
            for key in [k for k in self._postings if k[0] == schedule_id]:
                del self._postings[key]
            self._reminders = {k for k in self._reminders if k[0] != schedule_id}

    def list_schedules(self, household_id: UUID | None = None) -> list[ScheduleRecord]:
        with self._lock:
            records = [
                replace(s)
                for s in self._schedules.values()
                if household_id is None or s.household_id == household_id
            ]
        return sorted(records, key=self._sort_key)

    def list_active_due(self, now: date) -> list[ScheduleRecord]:
        with self._lock:
            records = [replace(s) for s in self._schedules.values() if s.is_due(now)]
        return sorted(records, key=self._sort_key)

    def get_posting(self, schedule_id: UUID, occurrence_date: date) -> Posting | None:
        with self._lock:
            return self._postings.get((schedule_id, occurrence_date))

    def list_postings(self, schedule_id: UUID) -> list[Posting]:
        with self._lock:
            postings = [p for (sid, _), p in self._postings.items() if sid == schedule_id]
        return sorted(postings, key=lambda p: p.occurrence_date)

    def record_materialization(
        self,
        posting: Posting,
        schedule: ScheduleRecord,
        expected_next_occurrence: date | None,
    ) -> ScheduleRecord:
        key = (posting.schedule_id, posting.occurrence_date)
        with self._lock:
            if key in self._postings:
                raise DuplicatePostingError(posting.schedule_id, posting.occurrence_date)
            current = self._require(schedule.id)
            if current.next_occurrence != expected_next_occurrence:
                raise ConcurrentUpdateError(
                    schedule.id, expected_next_occurrence, current.next_occurrence
                )
            self._postings[key] = posting
            return self._write(replace(current, **self._progress(schedule)), current)

    def claim_reminder(self, schedule_id: UUID, occurrence_date: date) -> bool:
        key = (schedule_id, occurrence_date)
        with self._lock:
            self._require(schedule_id)
            if key in self._reminders:
                return False
            self._reminders.add(key)
            return True

    def release_reminder(self, schedule_id: UUID, occurrence_date: date) -> None:
        with self._lock:
            self._reminders.discard((schedule_id, occurrence_date))
