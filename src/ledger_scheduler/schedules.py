"""Schedule records and their lifecycle state machine.

A schedule is Active, Paused or Completed; deletion removes the record. The
state is derived from ``is_active`` and ``next_occurrence``:

- Active: ``is_active`` and ``next_occurrence`` set.
- Paused: not ``is_active``; ``next_occurrence`` stays frozen.
- Completed: ``next_occurrence`` is None (``end_date`` exhausted). Terminal
  unless an edit to the rule yields a new occurrence.

Every transition returns a new record; stored records are never mutated in
place.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from ledger_scheduler.errors import (
    FieldError,
    InvalidTransition,
    ValidationError,
)
from ledger_scheduler.occurrences import (
    first_occurrence,
    next_occurrence,
    occurrence_on_or_after,
    resume_after,
)
from ledger_scheduler.recurrence import RecurrenceRule


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionType(str, Enum):
    """Kinds of ledger transaction a schedule can post."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class ScheduleStatus(str, Enum):
    """Lifecycle state of a schedule."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


def _parse_uuid(errors: list[FieldError], field_name: str, value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        errors.append(FieldError(field_name, f"is not a valid id: {value!r}"))
        return None


@dataclass(frozen=True)
class TransactionTemplate:
    """The transaction fields copied onto every materialized occurrence."""

    account_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str = "USD"
    description: str | None = None
    merchant: str | None = None
    category_id: UUID | None = None
    transfer_account_id: UUID | None = None

    @classmethod
    def create(
        cls,
        account_id: UUID | str,
        type: TransactionType | str,
        amount: Decimal | int | float | str,
        currency: str = "USD",
        description: str | None = None,
        merchant: str | None = None,
        category_id: UUID | str | None = None,
        transfer_account_id: UUID | str | None = None,
    ) -> "TransactionTemplate":
        """Validate raw template fields.

        Raises:
            ValidationError: On missing account, unknown type, non-positive
                amount, malformed currency, or a transfer without a distinct
                destination account.
        """
        errors: list[FieldError] = []

        parsed_account = _parse_uuid(errors, "account_id", account_id)
        if parsed_account is None and not errors:
            errors.append(FieldError("account_id", "is required"))

        txn_type: TransactionType | None
        try:
            raw_type = type.strip().lower() if isinstance(type, str) else type
            txn_type = TransactionType(raw_type)
        except ValueError:
            allowed = ", ".join(t.value for t in TransactionType)
            errors.append(FieldError("type", f"must be one of: {allowed}"))
            txn_type = None

        parsed_amount: Decimal | None
        try:
            parsed_amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            parsed_amount = None
        if parsed_amount is None or not parsed_amount.is_finite() or parsed_amount <= 0:
            errors.append(FieldError("amount", "must be a positive number"))

        currency = currency.strip().upper() if isinstance(currency, str) else ""
        if len(currency) != 3 or not currency.isalpha():
            errors.append(FieldError("currency", "must be a 3-letter currency code"))

        parsed_category = _parse_uuid(errors, "category_id", category_id)
        parsed_transfer = _parse_uuid(errors, "transfer_account_id", transfer_account_id)

        if txn_type is TransactionType.TRANSFER:
            if parsed_transfer is None and not any(
                e.field == "transfer_account_id" for e in errors
            ):
                errors.append(
                    FieldError("transfer_account_id", "is required for transfers")
                )
            elif parsed_transfer is not None and parsed_transfer == parsed_account:
                errors.append(
                    FieldError("transfer_account_id", "must differ from account_id")
                )
        else:
            parsed_transfer = None

        if errors:
            raise ValidationError(errors)

        assert parsed_account is not None and txn_type is not None
        assert parsed_amount is not None
        return cls(
            account_id=parsed_account,
            type=txn_type,
            amount=parsed_amount,
            currency=currency,
            description=description or None,
            merchant=merchant or None,
            category_id=parsed_category,
            transfer_account_id=parsed_transfer,
        )


@dataclass(frozen=True)
class MaterializedTransaction:
    """A concrete transaction produced from a schedule for one occurrence date."""

    schedule_id: UUID
    household_id: UUID
    date: date
    account_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str
    description: str | None = None
    merchant: str | None = None
    category_id: UUID | None = None
    transfer_account_id: UUID | None = None
    transaction_id: str | None = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.schedule_id}:{self.date.isoformat()}"

    def to_payload(self) -> dict[str, Any]:
        """Request body for the ledger's create-transaction endpoint."""
        payload: dict[str, Any] = {
            "accountId": str(self.account_id),
            "type": self.type.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "date": self.date.isoformat(),
            "recurringScheduleId": str(self.schedule_id),
        }
        if self.description:
            payload["description"] = self.description
        if self.merchant:
            payload["merchant"] = self.merchant
        if self.category_id:
            payload["categoryId"] = str(self.category_id)
        if self.transfer_account_id:
            payload["transferAccountId"] = str(self.transfer_account_id)
        return payload


@dataclass(frozen=True)
class Posting:
    """Record that a schedule was materialized for one occurrence date.

    ``(schedule_id, occurrence_date)`` is unique in every store.
    """

    schedule_id: UUID
    occurrence_date: date
    transaction_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ScheduleRecord:
    """A persisted recurring schedule."""

    household_id: UUID
    template: TransactionTemplate
    rule: RecurrenceRule
    next_occurrence: date | None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    auto_create: bool = False
    occurrence_count: int = 0
    last_occurrence: date | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    # Bumped by the store on every write; guards read-modify-write cycles.
    version: int = 0

    @classmethod
    def new(
        cls,
        household_id: UUID,
        template: TransactionTemplate,
        rule: RecurrenceRule,
        auto_create: bool = False,
        is_active: bool = True,
        schedule_id: UUID | None = None,
    ) -> "ScheduleRecord":
        """Create a schedule whose next occurrence is the rule's first one.

        Raises:
            ValidationError: If no occurrence falls between start and end date.
        """
        first = first_occurrence(rule)
        if first is None:
            raise ValidationError.single(
                "end_date", "no occurrence falls between start_date and end_date"
            )
        return cls(
            household_id=household_id,
            template=template,
            rule=rule,
            next_occurrence=first,
            id=schedule_id or uuid4(),
            is_active=is_active,
            auto_create=auto_create,
        )

    @property
    def status(self) -> ScheduleStatus:
        if self.next_occurrence is None:
            return ScheduleStatus.COMPLETED
        if not self.is_active:
            return ScheduleStatus.PAUSED
        return ScheduleStatus.ACTIVE

    def is_due(self, today: date) -> bool:
        """Whether the automatic runner may materialize this schedule today."""
        return (
            self.is_active
            and self.next_occurrence is not None
            and self.next_occurrence <= today
        )

    def _touched(self, **changes: Any) -> "ScheduleRecord":
        return replace(self, updated_at=_utcnow(), **changes)

    # === Transitions ===

    def paused(self) -> "ScheduleRecord":
        """Active -> Paused. ``next_occurrence`` is left untouched."""
        if self.status is ScheduleStatus.COMPLETED:
            raise InvalidTransition(f"Schedule {self.id} is completed and cannot be paused")
        if not self.is_active:
            return self
        return self._touched(is_active=False)

    def resumed(self) -> "ScheduleRecord":
        """Paused -> Active, continuing from the frozen ``next_occurrence``."""
        if self.status is ScheduleStatus.COMPLETED:
            raise InvalidTransition(
                f"Schedule {self.id} is completed; extend its end date to reactivate it"
            )
        if self.is_active:
            return self
        return self._touched(is_active=True)

    def toggled(self) -> "ScheduleRecord":
        return self.resumed() if not self.is_active else self.paused()

    def advanced(self, occurrence_date: date) -> "ScheduleRecord":
        """Record a posting for ``occurrence_date`` and move to the next one.

        A None result from the calculator means ``end_date`` is exhausted and
        the schedule becomes Completed.
        """
        return self._touched(
            occurrence_count=self.occurrence_count + 1,
            last_occurrence=occurrence_date,
            next_occurrence=next_occurrence(self.rule, occurrence_date),
        )

    def rolled_forward(self, today: date) -> "ScheduleRecord":
        """Skip missed occurrences without posting them (manual schedules)."""
        if self.next_occurrence is None or self.next_occurrence >= today:
            return self
        return self._touched(next_occurrence=occurrence_on_or_after(self.rule, today))

    def with_rule(self, rule: RecurrenceRule) -> "ScheduleRecord":
        """Replace the recurrence rule and re-derive ``next_occurrence``.

        Dates already posted are never produced again. A Completed schedule
        whose new rule yields an occurrence returns to Active (or Paused if
        it was toggled off).
        """
        if rule == self.rule:
            return self
        return self._touched(
            rule=rule, next_occurrence=resume_after(rule, self.last_occurrence)
        )

    def with_template(self, template: TransactionTemplate) -> "ScheduleRecord":
        if template == self.template:
            return self
        return self._touched(template=template)

    def with_auto_create(self, auto_create: bool) -> "ScheduleRecord":
        if auto_create == self.auto_create:
            return self
        return self._touched(auto_create=auto_create)

    def materialize_for(self, occurrence_date: date) -> MaterializedTransaction:
        """Snapshot the template onto a concrete occurrence date."""
        t = self.template
        return MaterializedTransaction(
            schedule_id=self.id,
            household_id=self.household_id,
            date=occurrence_date,
            account_id=t.account_id,
            type=t.type,
            amount=t.amount,
            currency=t.currency,
            description=t.description,
            merchant=t.merchant,
            category_id=t.category_id,
            transfer_account_id=t.transfer_account_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Display shape read by the UI layer."""
        t = self.template
        return {
            "id": str(self.id),
            "household_id": str(self.household_id),
            "account_id": str(t.account_id),
            "type": t.type.value,
            "amount": str(t.amount),
            "currency": t.currency,
            "description": t.description,
            "merchant": t.merchant,
            "category_id": str(t.category_id) if t.category_id else None,
            "transfer_account_id": (
                str(t.transfer_account_id) if t.transfer_account_id else None
            ),
            **self.rule.to_dict(),
            "schedule_label": self.rule.describe(),
            "next_occurrence": (
                self.next_occurrence.isoformat() if self.next_occurrence else None
            ),
            "is_active": self.is_active,
            "auto_create": self.auto_create,
            "status": self.status.value,
            "occurrence_count": self.occurrence_count,
            "last_occurrence": (
                self.last_occurrence.isoformat() if self.last_occurrence else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
