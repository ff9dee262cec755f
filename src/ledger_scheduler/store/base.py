"""Repository interface for schedule persistence."""

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from ledger_scheduler.schedules import Posting, ScheduleRecord


class ScheduleStore(ABC):
    """Arena of schedule records keyed by id, plus their postings.

    Each method is atomic for the record it touches. Implementations must
    enforce uniqueness of ``(schedule_id, occurrence_date)`` across postings
    and across sent reminders. Every write stores ``version + 1``; the
    returned record carries the new version.
    """

    @abstractmethod
    def create(self, schedule: ScheduleRecord) -> ScheduleRecord:
        """Persist a new schedule."""

    @abstractmethod
    def get(self, schedule_id: UUID) -> ScheduleRecord:
        """Load a schedule.

        Raises:
            ScheduleNotFoundError: If no such schedule exists.
        """

    @abstractmethod
    def update(self, schedule: ScheduleRecord) -> ScheduleRecord:
        """Overwrite a schedule unconditionally, bumping its version."""

    @abstractmethod
    def compare_and_update(
        self, schedule: ScheduleRecord, expected_next_occurrence: date | None
    ) -> ScheduleRecord:
        """Overwrite a schedule only if nobody wrote it since it was read.

        The stored record must still have ``schedule.version`` and
        ``expected_next_occurrence``.

        Raises:
            ConcurrentUpdateError: If another writer changed the schedule first.
        """

    @abstractmethod
    def delete(self, schedule_id: UUID) -> None:
        """Remove a schedule with its postings and reminders."""

    @abstractmethod
    def list_schedules(self, household_id: UUID | None = None) -> list[ScheduleRecord]:
        """All schedules, optionally for one household, soonest first."""

    @abstractmethod
    def list_active_due(self, now: date) -> list[ScheduleRecord]:
        """Active schedules whose next occurrence is on or before ``now``."""

    @abstractmethod
    def get_posting(self, schedule_id: UUID, occurrence_date: date) -> Posting | None:
        """The posting for one schedule and date, if materialized."""

    @abstractmethod
    def list_postings(self, schedule_id: UUID) -> list[Posting]:
        """Postings of one schedule in date order."""

    @abstractmethod
    def record_materialization(
        self,
        posting: Posting,
        schedule: ScheduleRecord,
        expected_next_occurrence: date | None,
    ) -> ScheduleRecord:
        """Insert a posting and advance the stored schedule in one step.

        Only the progress fields of ``schedule`` are written (next and last
        occurrence, occurrence count). Flags, template and rule keep whatever
        is stored, so a pause or edit that lands while the ledger call is in
        flight survives. Returns the stored record.

        Raises:
            DuplicatePostingError: If the posting already exists.
            ConcurrentUpdateError: If the stored next occurrence moved since
                it was read.
        """

    @abstractmethod
    def claim_reminder(self, schedule_id: UUID, occurrence_date: date) -> bool:
        """Mark the reminder for one occurrence as sent.

        Returns False if it was already claimed, by this process or another.
        """

    @abstractmethod
    def release_reminder(self, schedule_id: UUID, occurrence_date: date) -> None:
        """Forget a claimed reminder so a later tick can send it again."""

    @staticmethod
    def _progress(schedule: ScheduleRecord) -> dict[str, object]:
        return {
            "next_occurrence": schedule.next_occurrence,
            "last_occurrence": schedule.last_occurrence,
            "occurrence_count": schedule.occurrence_count,
            "updated_at": schedule.updated_at,
        }

    @staticmethod
    def _sort_key(schedule: ScheduleRecord) -> tuple[bool, date, str]:
        # Completed schedules (no next occurrence) sort last.
        return (
            schedule.next_occurrence is None,
            schedule.next_occurrence or date.max,
            schedule.created_at.isoformat(),
        )
