"""Occurrence calculator: pure calendar arithmetic over recurrence rules.

All functions work on calendar dates only. Day-of-month anchors that do not
exist in a target month clamp to that month's last day, so a day-31 monthly
rule lands on Feb 28 (Feb 29 in leap years), Apr 30 and so on.
"""

import calendar
from collections.abc import Iterator
from datetime import date, timedelta

from ledger_scheduler.recurrence import Frequency, RecurrenceRule, weekday_index

BIWEEKLY_PERIOD_DAYS = 14
ONE_DAY = timedelta(days=1)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, clamping ``day`` to the month's last day."""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    """Shift a (year, month) pair by a number of calendar months."""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _months_between(earlier: date, later: date) -> int:
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def _next_weekday_on_or_after(day: date, target: int) -> date:
    return day + timedelta(days=(target - weekday_index(day)) % 7)


def biweekly_anchor(rule: RecurrenceRule) -> date:
    """First matching weekday on or after the start date.

    Biweekly occurrences are this date plus multiples of 14 days.
    """
    return _next_weekday_on_or_after(rule.start_date, rule.day_of_week or 0)


def biweekly_window(rule: RecurrenceRule, day: date) -> int:
    """Index of the 14-day window (counted from the start date) holding ``day``."""
    return (day - rule.start_date).days // BIWEEKLY_PERIOD_DAYS


def _on_or_after(rule: RecurrenceRule, floor: date) -> date:
    """Smallest date >= ``floor`` satisfying the rule's anchor, ignoring end_date."""
    match rule.frequency:
        case Frequency.DAILY:
            return floor

        case Frequency.WEEKLY:
            return _next_weekday_on_or_after(floor, rule.day_of_week or 0)

        case Frequency.BIWEEKLY:
            anchor = biweekly_anchor(rule)
            if floor <= anchor:
                return anchor
            periods = -(-(floor - anchor).days // BIWEEKLY_PERIOD_DAYS)
            return anchor + timedelta(days=periods * BIWEEKLY_PERIOD_DAYS)

        case Frequency.MONTHLY | Frequency.QUARTERLY:
            step = rule.frequency.month_step
            # Periods count from the start month so quarters stay aligned.
            period = max(0, _months_between(rule.start_date, floor) // step)
            while True:
                year, month = add_months(
                    rule.start_date.year, rule.start_date.month, period * step
                )
                candidate = clamped_date(year, month, rule.day_of_month or 1)
                if candidate >= floor:
                    return candidate
                period += 1

        case Frequency.YEARLY:
            year = floor.year
            while True:
                candidate = clamped_date(year, rule.month or 1, rule.day_of_month or 1)
                if candidate >= floor:
                    return candidate
                year += 1


def _within_bounds(rule: RecurrenceRule, candidate: date) -> date | None:
    if rule.end_date is not None and candidate > rule.end_date:
        return None
    return candidate


def first_occurrence(rule: RecurrenceRule) -> date | None:
    """First occurrence of a brand-new schedule.

    This is the only case where the result may equal the reference date:
    a start date that already satisfies the anchor is itself the first
    occurrence.
    """
    return _within_bounds(rule, _on_or_after(rule, rule.start_date))


def next_occurrence(rule: RecurrenceRule, after: date) -> date | None:
    """Next occurrence strictly after ``after``.

    Returns the smallest date >= max(after + 1 day, start_date) matching the
    rule's anchor, or None when that date falls beyond ``end_date``.
    """
    floor = max(after + ONE_DAY, rule.start_date)
    return _within_bounds(rule, _on_or_after(rule, floor))


def occurrence_on_or_after(rule: RecurrenceRule, day: date) -> date | None:
    """First occurrence on or after ``day`` (used to roll a schedule forward)."""
    floor = max(day, rule.start_date)
    return _within_bounds(rule, _on_or_after(rule, floor))


def resume_after(rule: RecurrenceRule, last_occurrence: date | None) -> date | None:
    """Re-derive the next occurrence after an edit to the rule.

    Without a previous posting this is the first occurrence. Otherwise the
    result is strictly after the last posted date; biweekly rules additionally
    skip the rest of the 14-day window the last posting fell in, so changing
    the weekday never yields two occurrences in one window.
    """
    if last_occurrence is None:
        return first_occurrence(rule)
    if rule.frequency is Frequency.BIWEEKLY and last_occurrence >= rule.start_date:
        window = biweekly_window(rule, last_occurrence)
        window_end = rule.start_date + timedelta(
            days=(window + 1) * BIWEEKLY_PERIOD_DAYS - 1
        )
        return next_occurrence(rule, window_end)
    return next_occurrence(rule, last_occurrence)


def occurrences_after(
    rule: RecurrenceRule, after: date | None = None, count: int = 5
) -> list[date]:
    """The next ``count`` occurrences after ``after`` (from the start if None)."""
    results: list[date] = []
    current = first_occurrence(rule) if after is None else next_occurrence(rule, after)
    while current is not None and len(results) < count:
        results.append(current)
        current = next_occurrence(rule, current)
    return results


def occurrences_between(
    rule: RecurrenceRule, start: date, end: date, limit: int | None = None
) -> Iterator[date]:
    """Yield occurrences inside the inclusive window [start, end]."""
    current = occurrence_on_or_after(rule, start)
    produced = 0
    while current is not None and current <= end:
        if limit is not None and produced >= limit:
            return
        yield current
        produced += 1
        current = next_occurrence(rule, current)
