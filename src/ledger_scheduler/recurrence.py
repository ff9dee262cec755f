"""Recurrence rules: the declarative shape of "every X".

A rule is a frequency plus the anchors that frequency needs. Weekdays use the
finance app's convention, 0 = Sunday through 6 = Saturday.
"""

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any

from ledger_scheduler.errors import FieldError, ValidationError

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


class Frequency(str, Enum):
    """How often a schedule recurs."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def uses_day_of_week(self) -> bool:
        return self in (Frequency.WEEKLY, Frequency.BIWEEKLY)

    @property
    def uses_day_of_month(self) -> bool:
        return self in (Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY)

    @property
    def uses_month(self) -> bool:
        return self is Frequency.YEARLY

    @property
    def month_step(self) -> int:
        """Calendar months between periods (0 for day-based frequencies)."""
        match self:
            case Frequency.MONTHLY:
                return 1
            case Frequency.QUARTERLY:
                return 3
            case Frequency.YEARLY:
                return 12
            case Frequency.DAILY | Frequency.WEEKLY | Frequency.BIWEEKLY:
                return 0


def weekday_index(day: date) -> int:
    """Weekday of a date with 0 = Sunday."""
    return (day.weekday() + 1) % 7


def ordinal(n: int) -> str:
    """Format 1 -> '1st', 12 -> '12th', 22 -> '22nd'."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _parse_frequency(value: Any) -> Frequency | None:
    if isinstance(value, Frequency):
        return value
    if isinstance(value, str):
        try:
            return Frequency(value.strip().lower())
        except ValueError:
            return None
    return None


def _check_int(
    errors: list[FieldError], field: str, value: Any, low: int, high: int
) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(FieldError(field, f"must be an integer between {low} and {high}"))
        return None
    if not low <= value <= high:
        errors.append(FieldError(field, f"must be between {low} and {high}, got {value}"))
        return None
    return value


def _coerce_date(errors: list[FieldError], field: str, value: Any) -> Any:
    """Accept ISO date strings and datetimes; only the calendar date is kept."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            errors.append(FieldError(field, f"is not an ISO date: {value!r}"))
            return None
    return value


@dataclass(frozen=True)
class RecurrenceRule:
    """Frequency, anchors and inclusive date bounds of a schedule.

    Build rules with :meth:`create`, which validates and normalizes. Anchors
    that the frequency does not use are dropped rather than interpreted.
    """

    frequency: Frequency
    start_date: date
    end_date: date | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    month: int | None = None

    @classmethod
    def create(
        cls,
        frequency: Frequency | str,
        start_date: date | str,
        end_date: date | str | None = None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        month: int | None = None,
    ) -> "RecurrenceRule":
        """Validate raw rule fields and return a normalized rule.

        Raises:
            ValidationError: If a required anchor is missing, a value is out
                of range, or ``end_date`` precedes ``start_date``.
        """
        errors: list[FieldError] = []

        start_date = _coerce_date(errors, "start_date", start_date)
        end_date = _coerce_date(errors, "end_date", end_date)

        freq = _parse_frequency(frequency)
        if freq is None:
            allowed = ", ".join(f.value for f in Frequency)
            errors.append(FieldError("frequency", f"must be one of: {allowed}"))

        if not isinstance(start_date, date) and not any(
            e.field == "start_date" for e in errors
        ):
            errors.append(FieldError("start_date", "is required"))
        if end_date is not None and not isinstance(end_date, date):
            errors.append(FieldError("end_date", "must be a date"))
        elif (
            end_date is not None
            and isinstance(start_date, date)
            and end_date < start_date
        ):
            errors.append(FieldError("end_date", "must not be before start_date"))

        if freq is not None:
            if freq.uses_day_of_week:
                day_of_week = _check_int(errors, "day_of_week", day_of_week, 0, 6)
                if day_of_week is None and freq is Frequency.WEEKLY:
                    if not any(e.field == "day_of_week" for e in errors):
                        errors.append(FieldError("day_of_week", "is required for weekly"))
            else:
                day_of_week = None

            if freq.uses_day_of_month:
                day_of_month = _check_int(errors, "day_of_month", day_of_month, 1, 31)
                if day_of_month is None and not any(
                    e.field == "day_of_month" for e in errors
                ):
                    errors.append(
                        FieldError("day_of_month", f"is required for {freq.value}")
                    )
            else:
                day_of_month = None

            if freq.uses_month:
                month = _check_int(errors, "month", month, 1, 12)
                if month is None and not any(e.field == "month" for e in errors):
                    errors.append(FieldError("month", "is required for yearly"))
            else:
                month = None

        if errors:
            raise ValidationError(errors)

        assert freq is not None
        # Biweekly without an explicit weekday recurs on the start date's weekday.
        if freq is Frequency.BIWEEKLY and day_of_week is None:
            day_of_week = weekday_index(start_date)

        return cls(
            frequency=freq,
            start_date=start_date,
            end_date=end_date,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            month=month,
        )

    def with_changes(self, **changes: Any) -> "RecurrenceRule":
        """Return a revalidated copy with the given fields replaced.

        Anchors left out of ``changes`` carry over; :meth:`create` drops the
        ones the (possibly new) frequency does not use.
        """
        merged = replace(self, **changes)
        return RecurrenceRule.create(
            frequency=merged.frequency,
            start_date=merged.start_date,
            end_date=merged.end_date,
            day_of_week=merged.day_of_week,
            day_of_month=merged.day_of_month,
            month=merged.month,
        )

    def describe(self) -> str:
        """Human-readable label, e.g. 'Monthly on the 31st'."""
        match self.frequency:
            case Frequency.DAILY:
                return "Every day"
            case Frequency.WEEKLY:
                return f"Every {WEEKDAY_NAMES[self.day_of_week or 0]}"
            case Frequency.BIWEEKLY:
                return f"Every 2 weeks on {WEEKDAY_NAMES[self.day_of_week or 0]}"
            case Frequency.MONTHLY:
                return f"Monthly on the {ordinal(self.day_of_month or 1)}"
            case Frequency.QUARTERLY:
                return f"Quarterly on the {ordinal(self.day_of_month or 1)}"
            case Frequency.YEARLY:
                return f"Yearly on {calendar.month_name[self.month or 1]} {self.day_of_month}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "month": self.month,
        }
