"""Value types exchanged with the remote ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any

WEI_PER_ETHER = 10**18


class TransactionStatus(IntEnum):
    """Review status as encoded by the ledger."""

    PENDING = 0
    APPROVED = 1
    DECLINED = 2
    REVIEW = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True, slots=True)
class Receipt:
    """Proof that the ledger finalized a submitted operation.

    ``ledger_id`` carries the identifier the ledger assigned, if any (the
    institution's remote id on registration, the transaction id on creation).
    """

    operation: str
    receipt_id: str
    ledger_id: str | None = None
    block: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "receipt_id": self.receipt_id,
            "ledger_id": self.ledger_id,
            "block": self.block,
        }


@dataclass(frozen=True, slots=True)
class RemoteTransaction:
    """A transaction as the ledger reports it."""

    id: str
    institution_remote_id: str
    creator_address: str
    receiver_address: str
    amount: int
    purpose: str
    comment: str
    status: TransactionStatus
    auditor_comment: str = ""
    created_at: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteTransaction:
        return cls(
            id=str(data["id"]),
            institution_remote_id=str(data["institution_remote_id"]),
            creator_address=data.get("creator_address", ""),
            receiver_address=data.get("receiver_address", ""),
            amount=int(data["amount"]),
            purpose=data.get("purpose", ""),
            comment=data.get("comment", ""),
            status=TransactionStatus(int(data.get("status", 0))),
            auditor_comment=data.get("auditor_comment", ""),
            created_at=int(data.get("created_at", 0)),
        )


@dataclass(slots=True)
class LedgerCall:
    """One recorded remote invocation (used by the in-process ledger)."""

    operation: str
    args: dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount: str | int | float | Decimal) -> int:
    """Convert a major-unit amount (ether) to integer minor units (wei).

    Raises:
        ValueError: not a finite decimal, or more precision than one wei
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    minor = value * WEI_PER_ETHER
    if minor != minor.to_integral_value():
        raise ValueError(f"Amount {amount!r} has more precision than the ledger supports")
    return int(minor)


def to_major_units(amount: int) -> str:
    """Format integer minor units as a plain decimal string of ether."""
    value = Decimal(amount) / WEI_PER_ETHER
    text = format(value.normalize(), "f")
    if "." not in text:
        text += ".0"
    return text


__all__ = [
    "LedgerCall",
    "Receipt",
    "RemoteTransaction",
    "TransactionStatus",
    "WEI_PER_ETHER",
    "to_major_units",
    "to_minor_units",
]
