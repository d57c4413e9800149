"""Review State Machine for spending requests.

    Pending --+--> Approved   (final)
              +--> Declined   (final)
              +--> Review --+--> Approved | Declined | Review

Only ``Pending`` and ``Review`` are editable. The precondition is evaluated
against the ledger's record, which is authoritative; the local status is a
cache written only after the ledger has finalized the review.

A review whose submission times out leaves the cached status untouched and
records a ``pending_review`` marker. The next review of that transaction
re-reads the ledger first: if the earlier decision has landed it is adopted
without resubmitting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import (
    ForbiddenError,
    InvalidArgumentError,
    LedgerNotFoundError,
    LedgerTimeoutError,
    NotFoundError,
    StorageError,
    UnprocessableError,
)
from ..ledger.backend import FINAL_STATUSES
from ..ledger.client import LedgerClient
from ..ledger.models import Receipt, RemoteTransaction, TransactionStatus
from ..persistence.state import Institution, LocalTransaction, utc_now_iso
from ..persistence.store import LocalStore

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset({TransactionStatus.PENDING, TransactionStatus.REVIEW})


class Decision(str, Enum):
    APPROVED = "Approved"
    DECLINED = "Declined"
    REVIEW = "Review"

    @property
    def status(self) -> TransactionStatus:
        return _DECISION_STATUS[self]

    @classmethod
    def parse(cls, value: object) -> Decision:
        """Accept exactly one of the three decision names."""
        if isinstance(value, Decision):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid decision {value!r}: must be Approved, Declined or Review"
            ) from None


_DECISION_STATUS = {
    Decision.APPROVED: TransactionStatus.APPROVED,
    Decision.DECLINED: TransactionStatus.DECLINED,
    Decision.REVIEW: TransactionStatus.REVIEW,
}


def next_status(current: TransactionStatus, decision: Decision) -> TransactionStatus:
    """Return the state ``decision`` leads to from ``current``.

    Raises:
        UnprocessableError: ``current`` is final
    """
    if current not in EDITABLE_STATUSES:
        raise UnprocessableError(
            f"Transaction is not editable (status {current.label})"
        )
    return decision.status


@dataclass(frozen=True, slots=True)
class ReviewResult:
    tx_id: str
    decision: Decision
    status: TransactionStatus
    receipt: Receipt | None
    resumed: bool = False


class ReviewStateMachine:
    """Applies auditor decisions with write-after-confirm ordering.

    The caller has already authorized an auditor of ``institution`` and holds
    that institution's lock.
    """

    def __init__(self, ledger: LedgerClient, store: LocalStore) -> None:
        self._ledger = ledger
        self._store = store

    async def review(
        self,
        institution: Institution,
        tx_id: str,
        decision: object,
        auditor_comment: str = "",
    ) -> ReviewResult:
        choice = Decision.parse(decision)
        remote = await self._fetch(institution, tx_id)
        local = self._store.state.transactions.get(tx_id)

        if local is not None and self._adopt_landed_review(local, remote):
            await self._store.commit()
            logger.info(f"Earlier review of transaction {tx_id} landed; cache refreshed")
            if remote.status == choice.status:
                return ReviewResult(tx_id, choice, remote.status, None, resumed=True)

        target = next_status(remote.status, choice)

        try:
            receipt = await self._ledger.submit_review(tx_id, target, auditor_comment)
        except LedgerTimeoutError:
            await self._mark_in_flight(institution, remote, local, target, auditor_comment)
            raise

        record = local or self._stub(institution, remote)
        record.status = int(target)
        record.auditor_comment = auditor_comment
        record.review_receipt = receipt.receipt_id
        record.reviewed_at = utc_now_iso()
        record.pending_review = None
        self._store.state.transactions[tx_id] = record
        await self._store.commit()

        logger.info(f"Transaction {tx_id} reviewed: {choice.value}")
        return ReviewResult(tx_id, choice, target, receipt)

    async def _fetch(self, institution: Institution, tx_id: str) -> RemoteTransaction:
        try:
            remote = await self._ledger.get_transaction(tx_id)
        except LedgerNotFoundError as e:
            raise NotFoundError(f"Transaction {tx_id} not found") from e
        if remote.institution_remote_id != institution.remote_id:
            raise ForbiddenError("Access denied to this transaction")
        return remote

    def _adopt_landed_review(
        self, local: LocalTransaction, remote: RemoteTransaction
    ) -> bool:
        """Refresh the cache if the in-flight review has since landed."""
        pending = local.pending_review
        if pending is None or int(remote.status) != pending.get("status"):
            return False
        local.status = int(remote.status)
        local.auditor_comment = remote.auditor_comment
        local.reviewed_at = utc_now_iso()
        local.pending_review = None
        return True

    async def _mark_in_flight(
        self,
        institution: Institution,
        remote: RemoteTransaction,
        local: LocalTransaction | None,
        target: TransactionStatus,
        auditor_comment: str,
    ) -> None:
        record = local or self._stub(institution, remote)
        record.pending_review = {
            "status": int(target),
            "auditor_comment": auditor_comment,
            "submitted_at": utc_now_iso(),
        }
        self._store.state.transactions[record.id] = record
        try:
            await self._store.commit()
        except StorageError:
            logger.error(f"Could not persist in-flight review marker for {record.id}")
        logger.warning(f"Review of transaction {record.id} in flight; reconcile later")

    @staticmethod
    def _stub(institution: Institution, remote: RemoteTransaction) -> LocalTransaction:
        """Local record for a transaction only the ledger knew about."""
        return LocalTransaction(
            id=remote.id,
            institution_id=institution.id,
            creator_id=remote.creator_address,
            priority=None,
            status=int(remote.status),
            auditor_comment=remote.auditor_comment,
        )


def review_in_flight(remote: RemoteTransaction, local: LocalTransaction | None) -> bool:
    """True while a timed-out review may still land on the ledger."""
    if local is None or local.pending_review is None:
        return False
    if remote.status in FINAL_STATUSES:
        return False
    return int(remote.status) != local.pending_review.get("status")


__all__ = [
    "Decision",
    "EDITABLE_STATUSES",
    "ReviewResult",
    "ReviewStateMachine",
    "next_status",
    "review_in_flight",
]
