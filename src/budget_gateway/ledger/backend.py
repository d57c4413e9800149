"""Remote ledger backends.

``LedgerBackend`` is the contract the ledger client adapts onto. Each submit
returns only after the ledger has finalized the operation. Backends raise
``LedgerRejectedError`` when the ledger refuses an operation,
``LedgerTimeoutError`` when finality is not observed, and
``LedgerUnavailableError`` for transport failures.

``InMemoryLedger`` is an in-process, append-only implementation of the same
contract, used when no remote ledger URL is configured and in tests.
"""

from __future__ import annotations

import asyncio
import itertools
import time
import uuid
from typing import Callable, Protocol

from ..errors import LedgerNotFoundError, LedgerRejectedError
from .models import LedgerCall, Receipt, RemoteTransaction, TransactionStatus


class LedgerBackend(Protocol):
    async def submit_registration(
        self, name: str, location: str, auditor_address: str
    ) -> Receipt: ...

    async def submit_deposit(self, remote_id: str, amount: int) -> Receipt: ...

    async def submit_transaction(
        self,
        remote_id: str,
        creator_address: str,
        receiver: str,
        amount: int,
        purpose: str,
        comment: str,
    ) -> Receipt: ...

    async def submit_review(
        self, tx_id: str, status: TransactionStatus, comment: str
    ) -> Receipt: ...

    async def get_balance(self, remote_id: str) -> int: ...

    async def list_transaction_ids(self, remote_id: str) -> list[str]: ...

    async def get_transaction(self, tx_id: str) -> RemoteTransaction: ...

    async def close(self) -> None: ...


FINAL_STATUSES = (TransactionStatus.APPROVED, TransactionStatus.DECLINED)


class InMemoryLedger:
    """Append-only ledger kept in process memory.

    Mirrors the contract's rules: institutions and transactions get
    monotonically increasing ids starting at 1, a transaction may not exceed
    the institution balance, approval debits the balance (and is refused if
    funds ran out meanwhile), and approved or declined transactions are final.

    Failure injection for tests:
        ledger.fail_next("submit_review", LedgerTimeoutError("submit_review", 1.0))
        ledger.latency = 0.5  # seconds every call waits before acting
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._institution_ids = itertools.count(1)
        self._tx_ids = itertools.count(1)
        self._blocks = itertools.count(1)
        self._institutions: dict[str, dict] = {}
        self._balances: dict[str, int] = {}
        self._tx_index: dict[str, list[str]] = {}
        self._transactions: dict[str, RemoteTransaction] = {}
        self._failures: dict[str, list[BaseException]] = {}
        self._lock = asyncio.Lock()

        self.calls: list[LedgerCall] = []
        self.latency: float = 0.0

    # -----------------------------------------------------------------------
    # Test hooks
    # -----------------------------------------------------------------------

    def fail_next(self, operation: str, error: BaseException) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self._failures.setdefault(operation, []).append(error)

    def calls_to(self, operation: str) -> list[LedgerCall]:
        return [call for call in self.calls if call.operation == operation]

    async def _enter(self, operation: str, **args) -> None:
        self.calls.append(LedgerCall(operation=operation, args=args))
        if self.latency:
            await asyncio.sleep(self.latency)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _receipt(self, operation: str, ledger_id: str | None = None) -> Receipt:
        return Receipt(
            operation=operation,
            receipt_id=f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}",
            ledger_id=ledger_id,
            block=next(self._blocks),
        )

    # -----------------------------------------------------------------------
    # Submits
    # -----------------------------------------------------------------------

    async def submit_registration(
        self, name: str, location: str, auditor_address: str
    ) -> Receipt:
        await self._enter(
            "submit_registration",
            name=name,
            location=location,
            auditor_address=auditor_address,
        )
        async with self._lock:
            remote_id = str(next(self._institution_ids))
            self._institutions[remote_id] = {
                "name": name,
                "location": location,
                "auditor": auditor_address,
            }
            self._balances[remote_id] = 0
            self._tx_index[remote_id] = []
            return self._receipt("submit_registration", remote_id)

    async def submit_deposit(self, remote_id: str, amount: int) -> Receipt:
        await self._enter("submit_deposit", remote_id=remote_id, amount=amount)
        async with self._lock:
            self._require_institution(remote_id)
            if amount <= 0:
                raise LedgerRejectedError("submit_deposit", "deposit must be positive")
            self._balances[remote_id] += amount
            return self._receipt("submit_deposit", remote_id)

    async def submit_transaction(
        self,
        remote_id: str,
        creator_address: str,
        receiver: str,
        amount: int,
        purpose: str,
        comment: str,
    ) -> Receipt:
        await self._enter(
            "submit_transaction",
            remote_id=remote_id,
            creator_address=creator_address,
            receiver=receiver,
            amount=amount,
            purpose=purpose,
            comment=comment,
        )
        async with self._lock:
            self._require_institution(remote_id)
            if amount <= 0:
                raise LedgerRejectedError("submit_transaction", "amount must be positive")
            if amount > self._balances[remote_id]:
                raise LedgerRejectedError("submit_transaction", "insufficient balance")
            tx_id = str(next(self._tx_ids))
            self._transactions[tx_id] = RemoteTransaction(
                id=tx_id,
                institution_remote_id=remote_id,
                creator_address=creator_address,
                receiver_address=receiver,
                amount=amount,
                purpose=purpose,
                comment=comment,
                status=TransactionStatus.PENDING,
                created_at=int(self._clock()),
            )
            self._tx_index[remote_id].append(tx_id)
            return self._receipt("submit_transaction", tx_id)

    async def submit_review(
        self, tx_id: str, status: TransactionStatus, comment: str
    ) -> Receipt:
        await self._enter("submit_review", tx_id=tx_id, status=int(status), comment=comment)
        async with self._lock:
            tx = self._transactions.get(tx_id)
            if tx is None:
                raise LedgerRejectedError("submit_review", f"unknown transaction {tx_id}")
            if tx.status in FINAL_STATUSES:
                raise LedgerRejectedError("submit_review", "transaction is final")
            if status == TransactionStatus.PENDING:
                raise LedgerRejectedError("submit_review", "cannot return to pending")
            if status == TransactionStatus.APPROVED:
                balance = self._balances[tx.institution_remote_id]
                if tx.amount > balance:
                    raise LedgerRejectedError("submit_review", "insufficient balance")
                self._balances[tx.institution_remote_id] = balance - tx.amount
            self._transactions[tx_id] = RemoteTransaction(
                id=tx.id,
                institution_remote_id=tx.institution_remote_id,
                creator_address=tx.creator_address,
                receiver_address=tx.receiver_address,
                amount=tx.amount,
                purpose=tx.purpose,
                comment=tx.comment,
                status=status,
                auditor_comment=comment,
                created_at=tx.created_at,
            )
            return self._receipt("submit_review", tx_id)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    async def get_balance(self, remote_id: str) -> int:
        await self._enter("get_balance", remote_id=remote_id)
        self._require_institution(remote_id)
        return self._balances[remote_id]

    async def list_transaction_ids(self, remote_id: str) -> list[str]:
        await self._enter("list_transaction_ids", remote_id=remote_id)
        self._require_institution(remote_id)
        return list(self._tx_index[remote_id])

    async def get_transaction(self, tx_id: str) -> RemoteTransaction:
        await self._enter("get_transaction", tx_id=tx_id)
        tx = self._transactions.get(tx_id)
        if tx is None:
            raise LedgerNotFoundError(f"Transaction {tx_id} not found on ledger")
        return tx

    async def close(self) -> None:
        return None

    def _require_institution(self, remote_id: str) -> None:
        if remote_id not in self._institutions:
            raise LedgerNotFoundError(f"Institution {remote_id} not registered on ledger")


__all__ = ["FINAL_STATUSES", "InMemoryLedger", "LedgerBackend"]
