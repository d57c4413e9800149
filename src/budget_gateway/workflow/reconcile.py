"""Reconciliation - merged views of ledger facts and local metadata.

For each transaction the ledger owns id, creator, receiver, amount, purpose,
comment, status, auditor comment and creation time; those always come from
the ledger even when the local cache disagrees. Deadline, priority and the
review receipt come from local metadata and may be absent. ``merge`` is a
pure function, so listing twice without intervening writes gives the same
result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import LedgerError
from ..ledger.client import LedgerClient
from ..ledger.models import RemoteTransaction, TransactionStatus, to_major_units
from ..persistence.state import Institution, LocalTransaction
from ..persistence.store import LocalStore
from .review import review_in_flight

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8


@dataclass(frozen=True, slots=True)
class TransactionView:
    id: str
    creator: str
    receiver: str
    amount: int
    purpose: str
    comment: str
    status: TransactionStatus
    auditor_comment: str
    created_at: int
    deadline: str | None = None
    priority: str | None = None
    review_receipt: str | None = None
    review_pending: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "creator": self.creator,
            "receiver": self.receiver,
            "amount": to_major_units(self.amount),
            "amountWei": str(self.amount),
            "purpose": self.purpose,
            "comment": self.comment,
            "status": int(self.status),
            "statusLabel": self.status.label,
            "auditorComment": self.auditor_comment,
            "timestamp": self.created_at,
            "deadline": self.deadline,
            "priority": self.priority,
            "reviewTxReceipt": self.review_receipt,
            "reviewPending": self.review_pending,
        }


def merge(remote: RemoteTransaction, local: LocalTransaction | None) -> TransactionView:
    """Combine one ledger record with its local metadata, if any."""
    return TransactionView(
        id=remote.id,
        creator=remote.creator_address,
        receiver=remote.receiver_address,
        amount=remote.amount,
        purpose=remote.purpose,
        comment=remote.comment,
        status=remote.status,
        auditor_comment=remote.auditor_comment,
        created_at=remote.created_at,
        deadline=local.deadline if local else None,
        priority=local.priority if local else None,
        review_receipt=local.review_receipt if local else None,
        review_pending=review_in_flight(remote, local),
    )


class Reconciler:
    """Lists an institution's transactions in ledger order."""

    def __init__(
        self,
        ledger: LedgerClient,
        store: LocalStore,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._concurrency = max(1, concurrency)

    async def list_for(self, institution: Institution) -> list[TransactionView]:
        """Merged views for every transaction the ledger lists.

        A failure to list ids propagates. A single record that cannot be
        fetched is logged and omitted rather than failing the whole list.
        """
        tx_ids = await self._ledger.list_transaction_ids(institution.remote_id)
        if not tx_ids:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def fetch(tx_id: str) -> RemoteTransaction:
            async with semaphore:
                return await self._ledger.get_transaction(tx_id)

        results = await asyncio.gather(
            *(fetch(tx_id) for tx_id in tx_ids), return_exceptions=True
        )

        local = self._store.state.transactions
        views: list[TransactionView] = []
        for tx_id, result in zip(tx_ids, results):
            if isinstance(result, LedgerError):
                logger.warning(f"Omitting transaction {tx_id} from listing: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            views.append(merge(result, local.get(tx_id)))
        return views


__all__ = ["Reconciler", "TransactionView", "merge"]
