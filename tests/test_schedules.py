"""Tests for schedule records, templates and the lifecycle state machine."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import CHECKING_ID, HOUSEHOLD_ID, SAVINGS_ID
from ledger_scheduler.errors import InvalidTransition, ValidationError
from ledger_scheduler.recurrence import RecurrenceRule
from ledger_scheduler.schedules import (
    ScheduleRecord,
    ScheduleStatus,
    TransactionTemplate,
    TransactionType,
)


def rent_template() -> TransactionTemplate:
    return TransactionTemplate.create(
        account_id=CHECKING_ID, type="expense", amount="1500", description="Rent"
    )


def monthly_31(end_date: date | None = None) -> RecurrenceRule:
    return RecurrenceRule.create(
        "monthly", date(2024, 1, 15), end_date=end_date, day_of_month=31
    )


class TestTransactionTemplate:
    """Tests for template validation."""

    def test_valid_expense(self):
        t = TransactionTemplate.create(
            account_id=str(CHECKING_ID), type="EXPENSE", amount=12.5, currency="eur"
        )
        assert t.account_id == CHECKING_ID
        assert t.type is TransactionType.EXPENSE
        assert t.amount == Decimal("12.5")
        assert t.currency == "EUR"

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(account_id=CHECKING_ID, type="expense", amount=0)
        assert exc_info.value.fields == ["amount"]

        with pytest.raises(ValidationError):
            TransactionTemplate.create(account_id=CHECKING_ID, type="expense", amount="abc")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(account_id=CHECKING_ID, type="refund", amount=1)
        assert exc_info.value.fields == ["type"]

    def test_bad_currency_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(
                account_id=CHECKING_ID, type="income", amount=1, currency="DOLLARS"
            )
        assert exc_info.value.fields == ["currency"]

    @pytest.mark.parametrize("currency", [840, None, ["USD"]])
    def test_non_string_currency_is_a_field_error(self, currency):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(
                account_id=CHECKING_ID, type="income", amount=1, currency=currency
            )
        assert exc_info.value.fields == ["currency"]

    def test_transfer_requires_distinct_destination(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(account_id=CHECKING_ID, type="transfer", amount=100)
        assert exc_info.value.fields == ["transfer_account_id"]

        with pytest.raises(ValidationError):
            TransactionTemplate.create(
                account_id=CHECKING_ID,
                type="transfer",
                amount=100,
                transfer_account_id=CHECKING_ID,
            )

        t = TransactionTemplate.create(
            account_id=CHECKING_ID,
            type="transfer",
            amount=100,
            transfer_account_id=SAVINGS_ID,
        )
        assert t.transfer_account_id == SAVINGS_ID

    def test_non_transfer_drops_transfer_account(self):
        t = TransactionTemplate.create(
            account_id=CHECKING_ID,
            type="expense",
            amount=100,
            transfer_account_id=SAVINGS_ID,
        )
        assert t.transfer_account_id is None

    def test_errors_are_collected(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionTemplate.create(
                account_id="not-a-uuid", type="gift", amount=-1, currency="X"
            )
        assert set(exc_info.value.fields) == {"account_id", "type", "amount", "currency"}


class TestScheduleRecord:
    """Tests for ScheduleRecord creation and transitions."""

    def test_new_sets_first_occurrence(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        assert s.next_occurrence == date(2024, 1, 31)
        assert s.status is ScheduleStatus.ACTIVE
        assert s.occurrence_count == 0
        assert s.last_occurrence is None

    def test_new_without_any_occurrence_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ScheduleRecord.new(
                HOUSEHOLD_ID, rent_template(), monthly_31(end_date=date(2024, 1, 20))
            )
        assert exc_info.value.fields == ["end_date"]

    def test_is_due(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        assert not s.is_due(date(2024, 1, 30))
        assert s.is_due(date(2024, 1, 31))
        assert s.is_due(date(2024, 2, 10))
        assert not s.paused().is_due(date(2024, 2, 10))

    def test_advanced_moves_forward(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        advanced = s.advanced(date(2024, 1, 31))
        assert advanced.next_occurrence == date(2024, 2, 29)
        assert advanced.occurrence_count == 1
        assert advanced.last_occurrence == date(2024, 1, 31)
        assert advanced.updated_at >= s.updated_at
        # Original untouched
        assert s.occurrence_count == 0

    def test_advancing_past_end_completes(self):
        s = ScheduleRecord.new(
            HOUSEHOLD_ID, rent_template(), monthly_31(end_date=date(2024, 2, 15))
        )
        done = s.advanced(date(2024, 1, 31))
        assert done.next_occurrence is None
        assert done.status is ScheduleStatus.COMPLETED
        assert not done.is_due(date(2030, 1, 1))

    def test_pause_freezes_next_occurrence(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        paused = s.paused()
        assert paused.status is ScheduleStatus.PAUSED
        assert paused.next_occurrence == s.next_occurrence

        resumed = paused.resumed()
        assert resumed.status is ScheduleStatus.ACTIVE
        assert resumed.next_occurrence == s.next_occurrence

    def test_noop_transitions_return_same_record(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        assert s.resumed() is s
        paused = s.paused()
        assert paused.paused() is paused

    def test_toggle(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        assert s.toggled().status is ScheduleStatus.PAUSED
        assert s.toggled().toggled().status is ScheduleStatus.ACTIVE

    def test_completed_rejects_resume_and_pause(self):
        s = ScheduleRecord.new(
            HOUSEHOLD_ID, rent_template(), monthly_31(end_date=date(2024, 2, 15))
        ).advanced(date(2024, 1, 31))
        with pytest.raises(InvalidTransition):
            s.resumed()
        with pytest.raises(InvalidTransition):
            s.paused()

    def test_extending_end_date_reactivates_completed(self):
        s = ScheduleRecord.new(
            HOUSEHOLD_ID, rent_template(), monthly_31(end_date=date(2024, 2, 15))
        ).advanced(date(2024, 1, 31))
        extended = s.with_rule(s.rule.with_changes(end_date=date(2024, 12, 31)))
        assert extended.status is ScheduleStatus.ACTIVE
        assert extended.next_occurrence == date(2024, 2, 29)
        assert extended.occurrence_count == 1

    def test_rule_edit_never_repeats_posted_dates(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        s = s.advanced(date(2024, 1, 31)).advanced(date(2024, 2, 29))
        moved = s.with_rule(s.rule.with_changes(day_of_month=1))
        assert moved.next_occurrence == date(2024, 3, 1)
        assert moved.next_occurrence > s.last_occurrence

    def test_rolled_forward_skips_without_counting(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        rolled = s.rolled_forward(date(2024, 4, 10))
        assert rolled.next_occurrence == date(2024, 4, 30)
        assert rolled.occurrence_count == 0
        assert rolled.last_occurrence is None
        # Not yet passed: unchanged
        assert s.rolled_forward(date(2024, 1, 31)) is s

    def test_materialize_for_snapshots_template(self):
        s = ScheduleRecord.new(HOUSEHOLD_ID, rent_template(), monthly_31())
        txn = s.materialize_for(date(2024, 1, 31))
        assert txn.schedule_id == s.id
        assert txn.household_id == HOUSEHOLD_ID
        assert txn.amount == Decimal("1500")
        assert txn.idempotency_key == f"{s.id}:2024-01-31"

        payload = txn.to_payload()
        assert payload["accountId"] == str(CHECKING_ID)
        assert payload["date"] == "2024-01-31"
        assert payload["recurringScheduleId"] == str(s.id)
        assert payload["description"] == "Rent"
        assert "transferAccountId" not in payload

    def test_to_dict(self):
        s = ScheduleRecord.new(
            HOUSEHOLD_ID, rent_template(), monthly_31(), schedule_id=uuid4()
        )
        data = s.to_dict()
        assert data["status"] == "active"
        assert data["schedule_label"] == "Monthly on the 31st"
        assert data["next_occurrence"] == "2024-01-31"
        assert data["amount"] == "1500"
        assert data["frequency"] == "monthly"
