"""Exception hierarchy for the recurring-transaction scheduler."""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


@dataclass(frozen=True)
class FieldError:
    """A single invalid field on a rule or template."""

    field: str
    message: str


class ValidationError(SchedulerError):
    """A schedule or recurrence rule failed validation.

    Raised at create/update time; nothing is persisted.
    """

    def __init__(self, errors: list[FieldError]):
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Invalid schedule: {summary}", details=errors)
        self.errors = errors

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])


class ScheduleNotFoundError(SchedulerError):
    """No schedule exists with the requested id."""

    def __init__(self, schedule_id: UUID):
        super().__init__(f"Recurring schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class InvalidTransition(SchedulerError):
    """The requested lifecycle transition is not allowed from the current state."""

    pass


class DependencyFailure(SchedulerError):
    """A referenced account or category no longer exists at materialization time."""

    def __init__(self, schedule_id: UUID, reference: str, reference_id: UUID):
        super().__init__(
            f"Schedule {schedule_id}: {reference} {reference_id} no longer exists",
            details={"reference": reference, "reference_id": str(reference_id)},
        )
        self.schedule_id = schedule_id
        self.reference = reference
        self.reference_id = reference_id


class DuplicatePostingError(SchedulerError):
    """A posting for (schedule_id, occurrence_date) already exists."""

    def __init__(self, schedule_id: UUID, occurrence_date: date):
        super().__init__(
            f"Schedule {schedule_id} already posted for {occurrence_date.isoformat()}"
        )
        self.schedule_id = schedule_id
        self.occurrence_date = occurrence_date


class ConcurrentUpdateError(SchedulerError):
    """The stored schedule changed between read and write.

    ``expected`` and ``actual`` are the next occurrences seen at read and
    write time; they can be equal when only another field changed.
    """

    def __init__(self, schedule_id: UUID, expected: date | None, actual: date | None):
        super().__init__(
            f"Schedule {schedule_id} was changed by another writer"
            f" (next occurrence {expected} -> {actual})"
        )
        self.schedule_id = schedule_id
        self.expected = expected
        self.actual = actual


class LedgerAPIError(SchedulerError):
    """Base exception for ledger API errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class RateLimitError(LedgerAPIError):
    """Rate limit exceeded."""

    pass
