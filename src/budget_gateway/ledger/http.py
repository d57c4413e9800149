"""HTTP adapter for a remote ledger gateway.

The gateway fronts the ledger contract and exposes its seven operations as
JSON endpoints. Submit endpoints block until the contract transaction is
mined and answer with the receipt.

Once a submit may have been sent, a lost answer raises
``LedgerOutcomeUnknownError``; ``LedgerUnavailableError`` means nothing left.

    POST /institutions                      -> submitRegistration
    POST /institutions/{remote_id}/deposits -> submitDeposit
    POST /institutions/{remote_id}/transactions -> submitTransaction
    POST /transactions/{tx_id}/review       -> submitReview
    GET  /institutions/{remote_id}/balance  -> getBalance
    GET  /institutions/{remote_id}/transactions -> listTransactionIds
    GET  /transactions/{tx_id}              -> getTransaction
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import (
    LedgerNotFoundError,
    LedgerOutcomeUnknownError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerUnavailableError,
)
from .models import Receipt, RemoteTransaction, TransactionStatus

logger = logging.getLogger(__name__)


class HttpLedgerBackend:
    """Async httpx client for the ledger gateway.

    Example:
        >>> async with HttpLedgerBackend("http://localhost:8545") as ledger:
        ...     balance = await ledger.get_balance("1")
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        connection_pool_size: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._pool_size = connection_pool_size
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpLedgerBackend:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
                limits=httpx.Limits(
                    max_connections=self._pool_size,
                    max_keepalive_connections=5,
                ),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> Any:
        # Once a POST may have left, failures are outcome-unknown, not unavailable
        submit = method == "POST"
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, json=json)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise LedgerUnavailableError(operation, str(e)) from e
        except httpx.TimeoutException as e:
            raise LedgerTimeoutError(operation, self._timeout) from e
        except httpx.TransportError as e:
            if submit:
                raise LedgerOutcomeUnknownError(operation, repr(e)) from e
            raise LedgerUnavailableError(operation, repr(e)) from e

        if response.status_code == 404:
            raise LedgerNotFoundError(self._reason(response) or f"{path} not found")
        if response.status_code == 504:
            raise LedgerTimeoutError(operation, self._timeout)
        if 400 <= response.status_code < 500:
            raise LedgerRejectedError(operation, self._reason(response))
        if response.status_code >= 500:
            cause = f"HTTP {response.status_code}: {self._reason(response)}"
            if submit and response.status_code != 503:
                raise LedgerOutcomeUnknownError(operation, cause)
            raise LedgerUnavailableError(operation, cause)
        try:
            return response.json()
        except ValueError as e:
            if submit:
                raise LedgerOutcomeUnknownError(operation, "response is not JSON") from e
            raise LedgerUnavailableError(operation, "response is not JSON") from e

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("reason") or body.get("error") or body)
        return str(body)

    @staticmethod
    def _receipt(operation: str, data: dict[str, Any]) -> Receipt:
        return Receipt(
            operation=operation,
            receipt_id=data["receipt_id"],
            ledger_id=str(data["ledger_id"]) if data.get("ledger_id") is not None else None,
            block=data.get("block"),
        )

    async def _submit(self, operation: str, path: str, body: dict[str, Any]) -> Receipt:
        data = await self._request(operation, "POST", path, json=body)
        try:
            return self._receipt(operation, data)
        except (KeyError, TypeError) as e:
            raise LedgerOutcomeUnknownError(operation, f"unreadable receipt {data!r}") from e

    # -----------------------------------------------------------------------
    # Submits
    # -----------------------------------------------------------------------

    async def submit_registration(
        self, name: str, location: str, auditor_address: str
    ) -> Receipt:
        return await self._submit(
            "submit_registration",
            "/institutions",
            {"name": name, "location": location, "auditor": auditor_address},
        )

    async def submit_deposit(self, remote_id: str, amount: int) -> Receipt:
        return await self._submit(
            "submit_deposit",
            f"/institutions/{remote_id}/deposits",
            {"amount": str(amount)},
        )

    async def submit_transaction(
        self,
        remote_id: str,
        creator_address: str,
        receiver: str,
        amount: int,
        purpose: str,
        comment: str,
    ) -> Receipt:
        return await self._submit(
            "submit_transaction",
            f"/institutions/{remote_id}/transactions",
            {
                "creator": creator_address,
                "receiver": receiver,
                "amount": str(amount),
                "purpose": purpose,
                "comment": comment,
            },
        )

    async def submit_review(
        self, tx_id: str, status: TransactionStatus, comment: str
    ) -> Receipt:
        return await self._submit(
            "submit_review",
            f"/transactions/{tx_id}/review",
            {"status": int(status), "comment": comment},
        )

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get_balance(self, remote_id: str) -> int:
        data = await self._request(
            "get_balance", "GET", f"/institutions/{remote_id}/balance"
        )
        return int(data["balance"])

    async def list_transaction_ids(self, remote_id: str) -> list[str]:
        data = await self._request(
            "list_transaction_ids", "GET", f"/institutions/{remote_id}/transactions"
        )
        return [str(tx_id) for tx_id in data.get("ids", [])]

    async def get_transaction(self, tx_id: str) -> RemoteTransaction:
        data = await self._request("get_transaction", "GET", f"/transactions/{tx_id}")
        return RemoteTransaction.from_dict(data)


__all__ = ["HttpLedgerBackend"]
