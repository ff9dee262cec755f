"""REST client for the finance app's ledger, reference and notification endpoints."""

import asyncio
from typing import Any, cast
from uuid import UUID

import httpx
import structlog

from ledger_scheduler.config import get_settings
from ledger_scheduler.errors import LedgerAPIError, RateLimitError
from ledger_scheduler.ledger.base import Notifier, ReferenceDirectory, TransactionLedger
from ledger_scheduler.schedules import MaterializedTransaction

logger = structlog.get_logger(__name__)


class LedgerAPIClient(TransactionLedger, ReferenceDirectory, Notifier):
    """Async client for the ledger API authenticated with a bearer API key."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        if not base_url or not api_key or timeout is None or max_retries is None:
            settings = get_settings()
            base_url = base_url or settings.ledger_api_url
            api_key = api_key or settings.ledger_api_key.get_secret_value()
            timeout = settings.ledger_timeout if timeout is None else timeout
            max_retries = settings.ledger_max_retries if max_retries is None else max_retries
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    # === Generic Request Methods ===

    async def _send(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        retry_count: int = 0,
    ) -> httpx.Response:
        """Send a request, retrying transport errors with exponential backoff."""
        client = await self._get_client()
        try:
            response = await client.request(
                method=method,
                url=path,
                json=json,
                headers=self._get_headers(idempotency_key),
            )
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                logger.warning(
                    "ledger_request_retry", path=path, attempt=retry_count + 1, error=str(e)
                )
                await asyncio.sleep(2**retry_count)
                return await self._send(method, path, json, idempotency_key, retry_count + 1)
            raise LedgerAPIError(f"Request failed: {e}") from e

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "60"))
            raise RateLimitError(
                f"Rate limited, retry after {retry_after}s",
                status_code=429,
                details={"retry_after": retry_after},
            )
        return response

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            error_detail = response.json() if response.content else {}
        except ValueError:
            error_detail = {"raw": response.text[:500] if response.text else "empty response"}
        raise LedgerAPIError(
            f"API error: {response.status_code}",
            status_code=response.status_code,
            details=error_detail,
        )

    async def _exists(self, path: str) -> bool:
        response = await self._send("GET", path)
        if response.status_code == 404:
            return False
        self._raise_for_error(response)
        return True

    # === Ledger ===

    async def create_transaction(
        self, transaction: MaterializedTransaction, idempotency_key: str
    ) -> str:
        """POST the transaction; a replayed key returns the original id."""
        response = await self._send(
            "POST",
            "/api/transactions",
            json=transaction.to_payload(),
            idempotency_key=idempotency_key,
        )
        self._raise_for_error(response)

        data_raw = response.json() if response.content else {}
        if not isinstance(data_raw, dict):
            raise LedgerAPIError("Invalid create-transaction response format")
        data = cast(dict[str, Any], data_raw)
        # The backend wraps single resources as {"data": {...}} on some routes.
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        transaction_id = body.get("id") if isinstance(body, dict) else None
        if not transaction_id:
            raise LedgerAPIError("Create-transaction response has no id", details=data)

        logger.info(
            "ledger_transaction_created",
            transaction_id=str(transaction_id),
            schedule_id=str(transaction.schedule_id),
            date=transaction.date.isoformat(),
            replayed=response.status_code == 200,
        )
        return str(transaction_id)

    # === References ===

    async def account_exists(self, account_id: UUID) -> bool:
        return await self._exists(f"/api/accounts/{account_id}")

    async def category_exists(self, category_id: UUID) -> bool:
        return await self._exists(f"/api/categories/{category_id}")

    # === Notifications ===

    async def notify(
        self,
        household_id: UUID,
        title: str,
        message: str,
        resource_id: UUID | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "householdId": str(household_id),
            "type": "transaction_alert",
            "title": title,
            "message": message,
        }
        if resource_id is not None:
            payload["resourceType"] = "recurring_schedule"
            payload["resourceId"] = str(resource_id)

        response = await self._send("POST", "/api/notifications", json=payload)
        self._raise_for_error(response)
        logger.debug("notification_sent", household_id=str(household_id), title=title)
