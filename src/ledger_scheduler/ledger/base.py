"""Interfaces of the external collaborators the scheduler writes through."""

from abc import ABC, abstractmethod
from uuid import UUID

from ledger_scheduler.schedules import MaterializedTransaction


class TransactionLedger(ABC):
    """The transaction ledger that owns materialized transactions."""

    @abstractmethod
    async def create_transaction(
        self, transaction: MaterializedTransaction, idempotency_key: str
    ) -> str:
        """Create a transaction and return its id.

        Repeating a call with the same ``idempotency_key`` must return the
        original transaction's id instead of creating a second one.
        """


class ReferenceDirectory(ABC):
    """Lookup of accounts and categories referenced by schedule templates."""

    @abstractmethod
    async def account_exists(self, account_id: UUID) -> bool: ...

    @abstractmethod
    async def category_exists(self, category_id: UUID) -> bool: ...


class Notifier(ABC):
    """Delivers user-facing notifications (delivery itself is external)."""

    @abstractmethod
    async def notify(
        self,
        household_id: UUID,
        title: str,
        message: str,
        resource_id: UUID | None = None,
    ) -> None: ...
