"""Utilities for loading recurring schedules from YAML files.

A file holds an optional default ``household_id`` and a ``schedules`` list::

    household_id: 0b5c...
    schedules:
      - id: 5f1e...            # optional; keeps re-imports idempotent
        description: Rent
        account_id: 9a2d...
        type: expense
        amount: 1500.00
        frequency: monthly
        day_of_month: 1
        start_date: 2024-01-01
        auto_create: true
"""

from pathlib import Path
from typing import Any
from uuid import UUID

import yaml  # type: ignore[import-untyped]

from ledger_scheduler.errors import ValidationError
from ledger_scheduler.recurrence import WEEKDAY_NAMES, RecurrenceRule
from ledger_scheduler.schedules import ScheduleRecord, TransactionTemplate

WEEKDAY_NAME_TO_INDEX = {name.lower(): i for i, name in enumerate(WEEKDAY_NAMES)} | {
    name[:3].lower(): i for i, name in enumerate(WEEKDAY_NAMES)
}

_TEMPLATE_KEYS = (
    "account_id",
    "type",
    "amount",
    "currency",
    "description",
    "merchant",
    "category_id",
    "transfer_account_id",
)
_RULE_KEYS = ("frequency", "start_date", "end_date", "day_of_month", "month")


def _normalize_day_of_week(value: Any) -> Any:
    """Weekday names become indexes (0=Sun..6=Sat); anything else passes through."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key in WEEKDAY_NAME_TO_INDEX:
            return WEEKDAY_NAME_TO_INDEX[key]
    return value


def _parse_uuid(where: str, key: str, value: Any) -> UUID:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError as exc:
        raise ValueError(f"{where}: invalid {key} {value!r}") from exc


def parse_schedule(
    item: dict[str, Any], default_household: UUID | None = None, where: str = "schedule"
) -> ScheduleRecord:
    """Build a validated schedule from one YAML mapping.

    Raises:
        ValueError: On a missing household or any invalid field.
    """
    household_raw = item.get("household_id", default_household)
    if household_raw is None:
        raise ValueError(f"{where}: household_id is required")
    household_id = _parse_uuid(where, "household_id", household_raw)
    schedule_id = _parse_uuid(where, "id", item["id"]) if item.get("id") else None

    template_fields = {k: item[k] for k in _TEMPLATE_KEYS if k in item}
    rule_fields = {k: item[k] for k in _RULE_KEYS if k in item}
    if "day_of_week" in item:
        rule_fields["day_of_week"] = _normalize_day_of_week(item["day_of_week"])

    try:
        template = TransactionTemplate.create(**template_fields)
        rule = RecurrenceRule.create(**rule_fields)
        return ScheduleRecord.new(
            household_id,
            template,
            rule,
            auto_create=bool(item.get("auto_create", False)),
            is_active=bool(item.get("is_active", True)),
            schedule_id=schedule_id,
        )
    except ValidationError as exc:
        raise ValueError(f"{where}: {exc}") from exc
    except TypeError as exc:
        # Missing required keys surface as TypeError from the factories.
        raise ValueError(f"{where}: {exc}") from exc


def load_schedules(path: Path | str) -> list[ScheduleRecord]:
    """Load every schedule declared in a YAML file.

    Returns:
        Schedules in file order, each with its first occurrence computed.
    """
    path = Path(path)
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: top level must be a mapping")

    default_household = data.get("household_id")
    if default_household is not None:
        default_household = _parse_uuid(path.name, "household_id", default_household)

    items = data.get("schedules")
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError(f"{path.name}: schedules must be a list")

    schedules: list[ScheduleRecord] = []
    for idx, item in enumerate(items):
        where = f"{path.name}: schedules[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"{where} must be a mapping")
        schedules.append(parse_schedule(item, default_household, where))
    return schedules
