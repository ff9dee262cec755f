"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable
from datetime import date
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_API_KEY", "test-api-key")
os.environ.setdefault("LEDGER_API_URL", "http://ledger.test")

from ledger_scheduler.events import EventPublisher  # noqa: E402
from ledger_scheduler.ledger.base import (  # noqa: E402
    Notifier,
    ReferenceDirectory,
    TransactionLedger,
)
from ledger_scheduler.materializer import Materializer  # noqa: E402
from ledger_scheduler.recurrence import RecurrenceRule  # noqa: E402
from ledger_scheduler.runner import SchedulerRunner  # noqa: E402
from ledger_scheduler.schedules import (  # noqa: E402
    MaterializedTransaction,
    ScheduleRecord,
    TransactionTemplate,
)
from ledger_scheduler.service import ScheduleService  # noqa: E402
from ledger_scheduler.store import InMemoryScheduleStore  # noqa: E402

HOUSEHOLD_ID = UUID("11111111-1111-1111-1111-111111111111")
CHECKING_ID = UUID("22222222-2222-2222-2222-222222222222")
SAVINGS_ID = UUID("33333333-3333-3333-3333-333333333333")
RENT_CATEGORY_ID = UUID("44444444-4444-4444-4444-444444444444")


class FakeLedger(TransactionLedger):
    """Ledger that honours idempotency keys the way the real backend does."""

    def __init__(self) -> None:
        self.calls: list[tuple[MaterializedTransaction, str]] = []
        self.transactions: dict[str, MaterializedTransaction] = {}
        self._ids: dict[str, str] = {}

    async def create_transaction(
        self, transaction: MaterializedTransaction, idempotency_key: str
    ) -> str:
        self.calls.append((transaction, idempotency_key))
        if idempotency_key not in self._ids:
            transaction_id = f"txn-{len(self._ids) + 1}"
            self._ids[idempotency_key] = transaction_id
            self.transactions[transaction_id] = transaction
        return self._ids[idempotency_key]

    @property
    def dates(self) -> list[date]:
        return sorted(t.date for t in self.transactions.values())


class FakeDirectory(ReferenceDirectory):
    """Every account and category exists unless marked missing."""

    def __init__(self) -> None:
        self.missing_accounts: set[UUID] = set()
        self.missing_categories: set[UUID] = set()

    async def account_exists(self, account_id: UUID) -> bool:
        return account_id not in self.missing_accounts

    async def category_exists(self, category_id: UUID) -> bool:
        return category_id not in self.missing_categories


class FakeNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def notify(
        self,
        household_id: UUID,
        title: str,
        message: str,
        resource_id: UUID | None = None,
    ) -> None:
        self.sent.append(
            {
                "household_id": household_id,
                "title": title,
                "message": message,
                "resource_id": resource_id,
            }
        )


@pytest.fixture
def store():
    return InMemoryScheduleStore()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def publisher():
    return EventPublisher(host="127.0.0.1", port=8799)


@pytest.fixture
def materializer(store, ledger, directory, publisher):
    return Materializer(store, ledger, directory, publisher)


@pytest.fixture
def runner(store, materializer, notifier, publisher):
    return SchedulerRunner(
        store,
        materializer,
        notifier=notifier,
        publisher=publisher,
        reminder_days_ahead=3,
        max_catch_up=366,
    )


@pytest.fixture
def service(store, materializer, publisher):
    return ScheduleService(store, materializer, publisher)


@pytest.fixture
def make_schedule(store) -> Callable[..., ScheduleRecord]:
    """Create and store a schedule; rule fields and flags go in kwargs."""

    def _make(
        frequency: str = "monthly",
        start_date: date = date(2024, 1, 15),
        auto_create: bool = True,
        is_active: bool = True,
        amount: str = "1500.00",
        description: str = "Rent",
        category_id: UUID | None = RENT_CATEGORY_ID,
        **rule_fields: Any,
    ) -> ScheduleRecord:
        template = TransactionTemplate.create(
            account_id=CHECKING_ID,
            type="expense",
            amount=amount,
            description=description,
            category_id=category_id,
        )
        rule = RecurrenceRule.create(frequency, start_date, **rule_fields)
        return store.create(
            ScheduleRecord.new(
                HOUSEHOLD_ID,
                template,
                rule,
                auto_create=auto_create,
                is_active=is_active,
                schedule_id=uuid4(),
            )
        )

    return _make


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client
