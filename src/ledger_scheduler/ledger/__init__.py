"""External ledger collaborators and their REST client."""

from ledger_scheduler.ledger.base import Notifier, ReferenceDirectory, TransactionLedger
from ledger_scheduler.ledger.client import LedgerAPIClient

__all__ = [
    "TransactionLedger",
    "ReferenceDirectory",
    "Notifier",
    "LedgerAPIClient",
]
