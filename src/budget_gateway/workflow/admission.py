"""Admission Controller for new spending requests.

A request is admitted only if its amount does not exceed the institution's
balance as the ledger reports it at check time. The check is advisory: the
ledger re-validates on submit and its rejection is final. Admission,
submission and the local metadata write all happen under the institution's
lock so two requests from the same institution never interleave.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from ..errors import InsufficientFundsError, InvalidArgumentError
from ..ledger.client import LedgerClient
from ..ledger.models import Receipt, TransactionStatus, to_major_units
from ..persistence.state import Associate, Institution, LocalTransaction
from ..persistence.store import LocalStore

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
MIN_PURPOSE_LENGTH = 2


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(slots=True)
class SpendingRequest:
    """A validated request to spend ``amount`` wei from an institution."""

    receiver: str
    amount: int
    purpose: str
    comment: str = ""
    deadline: str | None = None
    priority: Priority = Priority.MEDIUM

    def __post_init__(self) -> None:
        if not ADDRESS_PATTERN.match(self.receiver or ""):
            raise InvalidArgumentError("Receiver must be a 0x-prefixed 40 hex digit address")
        if self.amount <= 0:
            raise InvalidArgumentError("Amount must be positive")
        if len((self.purpose or "").strip()) < MIN_PURPOSE_LENGTH:
            raise InvalidArgumentError(
                f"Purpose must be at least {MIN_PURPOSE_LENGTH} characters"
            )
        try:
            self.priority = Priority(self.priority)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid priority {self.priority!r}: must be one of "
                + ", ".join(p.value for p in Priority)
            ) from None


@dataclass(frozen=True, slots=True)
class AdmissionResult:
    tx_id: str
    receipt: Receipt
    balance_at_check: int


class AdmissionController:
    """Balance check, submit, then record local metadata.

    The caller holds the institution's lock and has authorized ``creator``.
    """

    def __init__(self, ledger: LedgerClient, store: LocalStore) -> None:
        self._ledger = ledger
        self._store = store

    async def check(self, institution: Institution, amount: int) -> int:
        """Return the balance if ``amount`` fits within it.

        Raises:
            InsufficientFundsError: ``amount`` exceeds the reported balance
        """
        balance = await self._ledger.get_balance(institution.remote_id)
        if amount > balance:
            logger.info(
                f"Rejected request of {to_major_units(amount)} for {institution.id}: "
                f"balance {to_major_units(balance)}"
            )
            raise InsufficientFundsError(amount, balance)
        return balance

    async def admit(
        self,
        institution: Institution,
        creator: Associate,
        request: SpendingRequest,
    ) -> AdmissionResult:
        balance = await self.check(institution, request.amount)

        # Ledger rejections (including a balance that moved since the check)
        # propagate unchanged and leave no local record.
        receipt = await self._ledger.submit_transaction(
            institution.remote_id,
            creator.wallet_address,
            request.receiver,
            request.amount,
            request.purpose,
            request.comment,
        )
        tx_id = receipt.ledger_id

        self._store.state.transactions[tx_id] = LocalTransaction(
            id=tx_id,
            institution_id=institution.id,
            creator_id=creator.id,
            priority=request.priority.value,
            deadline=request.deadline,
            status=int(TransactionStatus.PENDING),
            create_receipt=receipt.receipt_id,
        )
        await self._store.commit()

        logger.info(
            f"Transaction {tx_id} created by {creator.id} for {to_major_units(request.amount)}"
        )
        return AdmissionResult(tx_id=tx_id, receipt=receipt, balance_at_check=balance)


__all__ = [
    "ADDRESS_PATTERN",
    "AdmissionController",
    "AdmissionResult",
    "Priority",
    "SpendingRequest",
]
