"""Ledger Client - the workflow's only door to the remote ledger.

Owns the timeout and retry policy for remote calls:

- every call is bounded by ``timeout_seconds``; a submit that runs out of
  time raises ``LedgerTimeoutError`` and may still be finalized later
- read-only queries are retried with backoff on transient failures
- submits are attempted exactly once; a failure after the request may have
  been sent is reported as an unknown outcome, never as unavailable
- a circuit breaker short-circuits calls while the ledger keeps failing
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import (
    LedgerError,
    LedgerNotFoundError,
    LedgerOutcomeUnknownError,
    LedgerRejectedError,
    LedgerTimeoutError,
    LedgerUnavailableError,
)
from ..service.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
)
from ..service.retry import RetryConfig, call_with_retry
from .backend import LedgerBackend
from .models import Receipt, RemoteTransaction, TransactionStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerClient:
    """Timeout-, retry- and breaker-aware wrapper around a ``LedgerBackend``."""

    def __init__(
        self,
        backend: LedgerBackend,
        *,
        timeout_seconds: float = 30.0,
        query_attempts: int = 3,
        retry_base_delay: float = 0.5,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self._retry = RetryConfig(
            max_attempts=query_attempts,
            base_delay=retry_base_delay,
            retry_on=(LedgerTimeoutError, LedgerUnavailableError),
            no_retry_on=(LedgerRejectedError, LedgerNotFoundError),
        )
        self.breaker = breaker or CircuitBreaker(
            "ledger",
            CircuitBreakerConfig(
                trip_on=(LedgerTimeoutError, LedgerUnavailableError),
                ignore=(LedgerRejectedError, LedgerNotFoundError),
            ),
        )

    async def _call(
        self, operation: str, func: Callable[[], Awaitable[T]], *, submit: bool = False
    ) -> T:
        async def bounded() -> T:
            try:
                return await asyncio.wait_for(func(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                raise LedgerTimeoutError(operation, self.timeout_seconds) from e
            except LedgerError:
                raise
            except Exception as e:
                if submit:
                    raise LedgerOutcomeUnknownError(operation, repr(e)) from e
                raise LedgerUnavailableError(operation, repr(e)) from e

        try:
            return await self.breaker.call_async(bounded)
        except CircuitBreakerOpen as e:
            raise LedgerUnavailableError(operation, str(e)) from e

    async def _submit(self, operation: str, func: Callable[[], Awaitable[Receipt]]) -> Receipt:
        try:
            receipt = await self._call(operation, func, submit=True)
        except LedgerTimeoutError as e:
            logger.warning(f"Ledger {operation} outcome unknown: {e}")
            raise
        except LedgerRejectedError as e:
            logger.warning(f"Ledger rejected {operation}: {e.reason}")
            raise
        logger.info(f"Ledger {operation} finalized: receipt={receipt.receipt_id}")
        return receipt

    async def _query(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            lambda: self._call(operation, func),
            config=self._retry,
            name=operation,
        )

    # -----------------------------------------------------------------------
    # Submits (never retried)
    # -----------------------------------------------------------------------

    async def submit_registration(
        self, name: str, location: str, auditor_address: str
    ) -> Receipt:
        receipt = await self._submit(
            "submit_registration",
            lambda: self.backend.submit_registration(name, location, auditor_address),
        )
        if receipt.ledger_id is None:
            raise LedgerRejectedError("submit_registration", "receipt carries no remote id")
        return receipt

    async def submit_deposit(self, remote_id: str, amount: int) -> Receipt:
        return await self._submit(
            "submit_deposit",
            lambda: self.backend.submit_deposit(remote_id, amount),
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
        receipt = await self._submit(
            "submit_transaction",
            lambda: self.backend.submit_transaction(
                remote_id, creator_address, receiver, amount, purpose, comment
            ),
        )
        if receipt.ledger_id is None:
            raise LedgerRejectedError("submit_transaction", "receipt carries no transaction id")
        return receipt

    async def submit_review(
        self, tx_id: str, status: TransactionStatus, comment: str
    ) -> Receipt:
        return await self._submit(
            "submit_review",
            lambda: self.backend.submit_review(tx_id, status, comment),
        )

    # -----------------------------------------------------------------------
    # Queries (retried, no freshness guarantee)
    # -----------------------------------------------------------------------

    async def get_balance(self, remote_id: str) -> int:
        return await self._query("get_balance", lambda: self.backend.get_balance(remote_id))

    async def list_transaction_ids(self, remote_id: str) -> list[str]:
        return await self._query(
            "list_transaction_ids",
            lambda: self.backend.list_transaction_ids(remote_id),
        )

    async def get_transaction(self, tx_id: str) -> RemoteTransaction:
        return await self._query(
            "get_transaction", lambda: self.backend.get_transaction(tx_id)
        )

    async def close(self) -> None:
        await self.backend.close()


__all__ = ["LedgerClient"]
