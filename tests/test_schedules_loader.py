"""Tests for loading schedules from YAML."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import CHECKING_ID, HOUSEHOLD_ID, SAVINGS_ID
from ledger_scheduler.config.schedules_loader import load_schedules, parse_schedule
from ledger_scheduler.recurrence import Frequency
from ledger_scheduler.schedules import ScheduleStatus, TransactionType


@pytest.fixture
def schedules_file(tmp_path):
    def _write(body: str):
        path = tmp_path / "household.yaml"
        path.write_text(body, encoding="utf-8")
        return path

    return _write


class TestLoadSchedules:
    def test_loads_schedules_with_default_household(self, schedules_file):
        path = schedules_file(
            f"""
household_id: "{HOUSEHOLD_ID}"
schedules:
  - description: Rent
    account_id: "{CHECKING_ID}"
    type: expense
    amount: "1500.00"
    frequency: monthly
    day_of_month: 31
    start_date: 2024-01-15
    auto_create: true
  - description: Savings sweep
    account_id: "{CHECKING_ID}"
    transfer_account_id: "{SAVINGS_ID}"
    type: transfer
    amount: 200
    frequency: biweekly
    day_of_week: Friday
    start_date: 2024-01-01
    end_date: 2024-12-31
"""
        )

        rent, sweep = load_schedules(path)

        assert rent.household_id == HOUSEHOLD_ID
        assert rent.template.amount == Decimal("1500.00")
        assert rent.next_occurrence == date(2024, 1, 31)
        assert rent.auto_create is True

        assert sweep.template.type is TransactionType.TRANSFER
        assert sweep.rule.frequency is Frequency.BIWEEKLY
        assert sweep.rule.day_of_week == 5
        assert sweep.rule.end_date == date(2024, 12, 31)
        assert sweep.auto_create is False
        assert sweep.status is ScheduleStatus.ACTIVE

    def test_short_weekday_names_and_explicit_id(self, schedules_file):
        schedule_id = uuid4()
        path = schedules_file(
            f"""
schedules:
  - id: "{schedule_id}"
    household_id: "{HOUSEHOLD_ID}"
    account_id: "{CHECKING_ID}"
    type: income
    amount: 50
    frequency: weekly
    day_of_week: sun
    start_date: 2024-01-01
    is_active: false
"""
        )

        (loaded,) = load_schedules(path)

        assert loaded.id == schedule_id
        assert loaded.rule.day_of_week == 0
        assert loaded.next_occurrence == date(2024, 1, 7)
        assert loaded.status is ScheduleStatus.PAUSED

    def test_empty_file(self, schedules_file):
        assert load_schedules(schedules_file("")) == []

    def test_top_level_must_be_mapping(self, schedules_file):
        with pytest.raises(ValueError, match="household.yaml: top level must be a mapping"):
            load_schedules(schedules_file("- just\n- a list\n"))

    def test_invalid_schedule_names_file_and_index(self, schedules_file):
        path = schedules_file(
            f"""
household_id: "{HOUSEHOLD_ID}"
schedules:
  - account_id: "{CHECKING_ID}"
    type: expense
    amount: -10
    frequency: monthly
    start_date: 2024-01-01
"""
        )

        with pytest.raises(ValueError) as exc_info:
            load_schedules(path)

        message = str(exc_info.value)
        assert message.startswith("household.yaml: schedules[0]")
        assert "amount" in message


class TestParseSchedule:
    def test_household_required(self):
        with pytest.raises(ValueError, match="household_id is required"):
            parse_schedule({"account_id": str(CHECKING_ID)})

    def test_invalid_uuid(self):
        with pytest.raises(ValueError, match="invalid household_id"):
            parse_schedule({"household_id": "not-a-uuid"})

    def test_missing_required_key(self):
        with pytest.raises(ValueError, match="schedule:"):
            parse_schedule({"account_id": str(CHECKING_ID)}, default_household=HOUSEHOLD_ID)
