"""Entities owned by the local store and the snapshot that holds them.

The remote ledger owns balances and the immutable transaction facts; the
records here are the operational metadata this service owns outright.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _from_mapping(cls, data: dict[str, Any]):
    """Build a dataclass from a mapping, ignoring unknown keys."""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Institution:
    id: str
    name: str
    location: str
    auditor_id: str
    remote_id: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Institution:
        return _from_mapping(cls, data)


@dataclass
class Auditor:
    """The single auditor of an institution.

    ``credential_secret`` is the signing credential for the auditor wallet and
    is never returned to callers.
    """

    id: str
    institution_id: str
    wallet_address: str
    credential_secret: str
    password_hash: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Auditor:
        return _from_mapping(cls, data)


@dataclass
class Associate:
    id: str
    institution_id: str
    username: str
    wallet_address: str
    password_hash: str
    created_by: str | None = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Associate:
        return _from_mapping(cls, data)


@dataclass
class LocalTransaction:
    """Locally-owned metadata for a ledger transaction.

    Keyed by the id the remote ledger assigned. ``status`` and
    ``auditor_comment`` are a cache of the ledger's values and are only
    written after the ledger has finalized a review.
    """

    id: str
    institution_id: str
    creator_id: str
    priority: str | None = "medium"
    deadline: str | None = None
    status: int = 0
    auditor_comment: str = ""
    create_receipt: str | None = None
    review_receipt: str | None = None
    reviewed_at: str | None = None
    pending_review: dict[str, Any] | None = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalTransaction:
        return _from_mapping(cls, data)


@dataclass
class AppConfig:
    theme: str = "default"
    last_updated: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        return _from_mapping(cls, data)


@dataclass
class State:
    """One consistent snapshot of every locally-owned collection."""

    institutions: dict[str, Institution] = field(default_factory=dict)
    auditors: dict[str, Auditor] = field(default_factory=dict)
    associates: dict[str, Associate] = field(default_factory=dict)
    transactions: dict[str, LocalTransaction] = field(default_factory=dict)
    config: AppConfig = field(default_factory=AppConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "institutions": {k: v.to_dict() for k, v in self.institutions.items()},
            "auditors": {k: v.to_dict() for k, v in self.auditors.items()},
            "associates": {k: v.to_dict() for k, v in self.associates.items()},
            "transactions": {k: v.to_dict() for k, v in self.transactions.items()},
            "config": self.config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> State:
        return cls(
            institutions={
                k: Institution.from_dict(v)
                for k, v in (data.get("institutions") or {}).items()
            },
            auditors={
                k: Auditor.from_dict(v) for k, v in (data.get("auditors") or {}).items()
            },
            associates={
                k: Associate.from_dict(v)
                for k, v in (data.get("associates") or {}).items()
            },
            transactions={
                k: LocalTransaction.from_dict(v)
                for k, v in (data.get("transactions") or {}).items()
            },
            config=AppConfig.from_dict(data.get("config") or {}),
        )


def verify_constraints(state: State, max_associates: int = 2) -> list[str]:
    """Return every invariant violation found in ``state``."""
    errors: list[str] = []

    seen_names: dict[str, str] = {}
    for institution in state.institutions.values():
        key = institution.name.lower()
        if key in seen_names:
            errors.append(
                f"Duplicate institution name: {institution.name} "
                f"({seen_names[key]}, {institution.id})"
            )
        else:
            seen_names[key] = institution.id

    counts: dict[str, int] = {}
    for associate in state.associates.values():
        counts[associate.institution_id] = counts.get(associate.institution_id, 0) + 1
    for institution_id, count in sorted(counts.items()):
        if count > max_associates:
            errors.append(
                f"Institution {institution_id} has {count} associates (max {max_associates})"
            )

    for institution in state.institutions.values():
        auditor = state.auditors.get(institution.auditor_id)
        if auditor is None:
            errors.append(
                f"Institution {institution.id} references missing auditor {institution.auditor_id}"
            )
        elif auditor.institution_id != institution.id:
            errors.append(
                f"Auditor {auditor.id} is bound to {auditor.institution_id}, not {institution.id}"
            )

    return errors


__all__ = [
    "AppConfig",
    "Associate",
    "Auditor",
    "Institution",
    "LocalTransaction",
    "State",
    "utc_now_iso",
    "verify_constraints",
]
