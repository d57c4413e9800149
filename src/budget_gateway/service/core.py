"""Core budget service - one method per workflow operation.

Every operation runs the same pipeline: the access policy first, then input
validation, then (under the institution's lock for writes) the workflow
component that talks to the ledger, and finally the local store commit.
Nothing is written locally before the ledger has confirmed the remote part.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
from decimal import Decimal
from typing import Any

from ..errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UnauthenticatedError,
    UnprocessableError,
)
from ..executor import run_in_executor
from ..ledger.client import LedgerClient
from ..ledger.models import (
    WEI_PER_ETHER,
    Receipt,
    TransactionStatus,
    to_major_units,
    to_minor_units,
)
from ..persistence.state import Associate, Auditor, Institution, utc_now_iso
from ..persistence.store import LocalStore
from ..workflow.access import Principal, Role, authorize
from ..workflow.admission import AdmissionController, SpendingRequest
from ..workflow.locks import KeyedLock
from ..workflow.reconcile import Reconciler
from ..workflow.review import ReviewStateMachine
from .auth import Authenticator
from .config import GatewayConfig
from .models import (
    AssociateOut,
    BalanceResponse,
    DepositResponse,
    InstitutionOut,
    InstitutionSummary,
    LoginResponse,
    ReceiptOut,
    RegisterInstitutionResponse,
    ReviewResponse,
    SummaryMetrics,
    ThemeResponse,
    TransactionCreatedResponse,
    TransactionListResponse,
    TransactionOut,
    UserView,
)

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
THEMES = ("default", "dark", "light")
CONFIG_LOCK_KEY = "__config__"


def _require_text(value: str | None, label: str, min_length: int) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        raise InvalidArgumentError(f"{label} must be at least {min_length} characters")
    return text


def _require_password(value: str | None, label: str = "Password") -> str:
    if not value or len(value) < MIN_PASSWORD_LENGTH:
        raise InvalidArgumentError(
            f"{label} must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    return value


def _parse_amount(amount: Any) -> int:
    """Positive ether amount -> wei."""
    try:
        wei = to_minor_units(amount)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from e
    if wei <= 0:
        raise InvalidArgumentError("Amount must be a positive number")
    return wei


def _format_ether(wei: int, places: int = 4) -> str:
    value = Decimal(wei) / WEI_PER_ETHER
    return str(value.quantize(Decimal(1).scaleb(-places)))


def _new_wallet() -> tuple[str, str]:
    """Fresh signing credential and the address derived from it."""
    credential = secrets.token_hex(32)
    address = "0x" + hashlib.sha256(bytes.fromhex(credential)).hexdigest()[-40:]
    return address, credential


def _new_id(prefix: str, taken: dict[str, Any], digits: int) -> str:
    low = 10 ** (digits - 1)
    while True:
        candidate = f"{prefix}{low + secrets.randbelow(9 * low)}"
        if candidate not in taken:
            return candidate


def _receipt_out(receipt: Receipt) -> ReceiptOut:
    return ReceiptOut.model_validate(receipt.to_dict())


class BudgetService:
    """Institution spending workflow over a remote ledger and a local store.

    Example:
        service = BudgetService(config, store=store, ledger=client, authenticator=auth)
        created = await service.register_institution("Acme", "Springfield", "hunter22")
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        store: LocalStore,
        ledger: LedgerClient,
        authenticator: Authenticator,
    ) -> None:
        self.config = config
        self.store = store
        self.ledger = ledger
        self.auth = authenticator

        self._institution_locks = KeyedLock()
        self._name_locks = KeyedLock()

        self.admission = AdmissionController(ledger, store)
        self.reviews = ReviewStateMachine(ledger, store)
        self.reconciler = Reconciler(ledger, store)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _institution(self, institution_id: str) -> Institution:
        institution = self.store.state.institutions.get(institution_id)
        if institution is None:
            raise NotFoundError(f"Institution {institution_id} not found")
        return institution

    async def _hash(self, password: str) -> str:
        return await run_in_executor(self.auth.hash_password, password)

    async def _verify(self, password: str, secret: str) -> bool:
        return await run_in_executor(self.auth.verify_password, password, secret)

    @staticmethod
    def _associate_out(associate: Associate) -> AssociateOut:
        return AssociateOut(
            id=associate.id,
            username=associate.username,
            address=associate.wallet_address,
            created_at=associate.created_at,
        )

    # -----------------------------------------------------------------------
    # Registration and login
    # -----------------------------------------------------------------------

    async def register_institution(
        self, name: str, location: str, auditor_password: str
    ) -> RegisterInstitutionResponse:
        """Create an institution on the ledger and record it with its auditor.

        Raises:
            InvalidArgumentError: name/location under 2 chars, password under 6
            ConflictError: the name is taken (case-insensitive)
        """
        name = _require_text(name, "Institution name", MIN_NAME_LENGTH)
        location = _require_text(location, "Location", MIN_NAME_LENGTH)
        _require_password(auditor_password, "Auditor password")

        async with self._name_locks.hold(name.lower()):
            if self.store.find_institution_by_name(name) is not None:
                raise ConflictError("Institution name already exists")

            address, credential = _new_wallet()
            password_hash = await self._hash(auditor_password)
            receipt = await self.ledger.submit_registration(name, location, address)

            state = self.store.state
            institution_id = _new_id("", state.institutions, 8)
            auditor_id = _new_id("AUD", state.auditors, 4)
            state.institutions[institution_id] = Institution(
                id=institution_id,
                name=name,
                location=location,
                auditor_id=auditor_id,
                remote_id=receipt.ledger_id,
            )
            state.auditors[auditor_id] = Auditor(
                id=auditor_id,
                institution_id=institution_id,
                wallet_address=address,
                credential_secret=credential,
                password_hash=password_hash,
            )
            await self.store.commit()

        logger.info(f"Registered institution {institution_id} ({name}) as remote {receipt.ledger_id}")
        return RegisterInstitutionResponse(
            institution_id=institution_id,
            auditor_id=auditor_id,
            auditor_address=address,
            remote_id=receipt.ledger_id,
            receipt=_receipt_out(receipt),
        )

    async def login_auditor(self, institution_id: str, password: str) -> LoginResponse:
        state = self.store.state
        institution = state.institutions.get(institution_id)
        auditor = state.auditors.get(institution.auditor_id) if institution else None
        if auditor is None or not await self._verify(password or "", auditor.password_hash):
            raise UnauthenticatedError("Invalid credentials")

        token = self.auth.issue_token(auditor.id, Role.AUDITOR, institution_id)
        logger.info(f"Auditor {auditor.id} logged in")
        return LoginResponse(
            token=token,
            user=UserView(
                id=auditor.id,
                role=Role.AUDITOR.value,
                institution_id=institution_id,
                address=auditor.wallet_address,
            ),
        )

    async def login_associate(
        self, institution_id: str, username: str, password: str
    ) -> LoginResponse:
        """``username`` matches the associate's username or ``EMP####`` id."""
        key = (username or "").strip().lower()
        associate = None
        if institution_id in self.store.state.institutions:
            for candidate in self.store.associates_of(institution_id):
                if key in (candidate.username.lower(), candidate.id.lower()):
                    associate = candidate
                    break
        if associate is None or not await self._verify(password or "", associate.password_hash):
            raise UnauthenticatedError("Invalid credentials")

        token = self.auth.issue_token(associate.id, Role.ASSOCIATE, institution_id)
        logger.info(f"Associate {associate.id} logged in")
        return LoginResponse(
            token=token,
            user=UserView(
                id=associate.id,
                role=Role.ASSOCIATE.value,
                institution_id=institution_id,
                address=associate.wallet_address,
                username=associate.username,
            ),
        )

    # -----------------------------------------------------------------------
    # Associates
    # -----------------------------------------------------------------------

    async def create_associate(
        self,
        principal: Principal | None,
        institution_id: str,
        username: str,
        password: str,
        auditor_password: str,
    ) -> AssociateOut:
        """Add an associate after re-confirming the auditor's password.

        Raises:
            ForbiddenError: auditor password confirmation failed
            ConflictError: username already used in this institution
            UnprocessableError: institution already has the maximum associates
        """
        principal = authorize(principal, role=Role.AUDITOR, institution_id=institution_id)
        username = _require_text(username, "Username", MIN_USERNAME_LENGTH)
        _require_password(password)

        async with self._institution_locks.hold(institution_id):
            self._institution(institution_id)
            state = self.store.state

            auditor = state.auditors.get(principal.subject_id)
            if (
                auditor is None
                or auditor.institution_id != institution_id
                or not await self._verify(auditor_password or "", auditor.password_hash)
            ):
                raise ForbiddenError("Auditor password confirmation failed")

            existing = self.store.associates_of(institution_id)
            if any(a.username.lower() == username.lower() for a in existing):
                raise ConflictError(f"Username {username} already exists")
            if len(existing) >= self.config.max_associates:
                raise UnprocessableError(
                    f"Maximum {self.config.max_associates} associates allowed per institution"
                )

            address, _ = _new_wallet()
            associate = Associate(
                id=_new_id("EMP", state.associates, 4),
                institution_id=institution_id,
                username=username,
                wallet_address=address,
                password_hash=await self._hash(password),
                created_by=principal.subject_id,
            )
            state.associates[associate.id] = associate
            await self.store.commit()

        logger.info(f"Associate {associate.id} created for {institution_id}")
        return self._associate_out(associate)

    async def delete_associate(
        self, principal: Principal | None, institution_id: str, associate_id: str
    ) -> None:
        authorize(principal, role=Role.AUDITOR, institution_id=institution_id)
        async with self._institution_locks.hold(institution_id):
            self._institution(institution_id)
            associate = self.store.state.associates.get(associate_id)
            if associate is None or associate.institution_id != institution_id:
                raise NotFoundError(f"Associate {associate_id} not found")
            del self.store.state.associates[associate_id]
            await self.store.commit()
        logger.info(f"Associate {associate_id} removed from {institution_id}")

    # -----------------------------------------------------------------------
    # Funds
    # -----------------------------------------------------------------------

    async def deposit(
        self, principal: Principal | None, institution_id: str, amount: Any
    ) -> DepositResponse:
        authorize(principal, role=Role.AUDITOR, institution_id=institution_id)
        wei = _parse_amount(amount)
        async with self._institution_locks.hold(institution_id):
            institution = self._institution(institution_id)
            receipt = await self.ledger.submit_deposit(institution.remote_id, wei)
        logger.info(f"Deposited {to_major_units(wei)} to {institution_id}")
        return DepositResponse(
            institution_id=institution_id,
            amount=to_major_units(wei),
            receipt=_receipt_out(receipt),
        )

    async def get_balance(
        self, principal: Principal | None, institution_id: str
    ) -> BalanceResponse:
        authorize(principal, institution_id=institution_id)
        institution = self._institution(institution_id)
        balance = await self.ledger.get_balance(institution.remote_id)
        return BalanceResponse(
            institution_id=institution_id,
            balance=to_major_units(balance),
            balance_wei=str(balance),
        )

    # -----------------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------------

    async def create_transaction(
        self,
        principal: Principal | None,
        receiver: str,
        amount: Any,
        purpose: str,
        comment: str = "",
        deadline: str | None = None,
        priority: str = "medium",
    ) -> TransactionCreatedResponse:
        """Admit and submit a spending request for the caller's institution.

        Raises:
            InvalidArgumentError: malformed receiver, amount, purpose or priority
            InsufficientFundsError: amount exceeds the ledger balance
            LedgerRejectedError: the ledger refused the submission
        """
        principal = authorize(principal, role=Role.ASSOCIATE)
        request = SpendingRequest(
            receiver=(receiver or "").strip(),
            amount=_parse_amount(amount),
            purpose=(purpose or "").strip(),
            comment=comment or "",
            deadline=deadline,
            priority=priority or "medium",
        )

        institution_id = principal.institution_id
        async with self._institution_locks.hold(institution_id):
            institution = self._institution(institution_id)
            creator = self.store.state.associates.get(principal.subject_id)
            if creator is None or creator.institution_id != institution_id:
                raise ForbiddenError("Associate account no longer exists")
            result = await self.admission.admit(institution, creator, request)

        return TransactionCreatedResponse(tx_id=result.tx_id, receipt=_receipt_out(result.receipt))

    async def review_transaction(
        self,
        principal: Principal | None,
        tx_id: str,
        decision: str,
        auditor_comment: str = "",
    ) -> ReviewResponse:
        principal = authorize(principal, role=Role.AUDITOR)
        institution_id = principal.institution_id
        async with self._institution_locks.hold(institution_id):
            institution = self._institution(institution_id)
            result = await self.reviews.review(
                institution, tx_id, decision, auditor_comment or ""
            )
        return ReviewResponse(
            tx_id=result.tx_id,
            decision=result.decision.value,
            status=int(result.status),
            status_label=result.status.label,
            resumed=result.resumed,
            receipt=_receipt_out(result.receipt) if result.receipt else None,
        )

    async def list_transactions(
        self, principal: Principal | None, institution_id: str | None = None
    ) -> TransactionListResponse:
        """Reconciled transactions of the caller's institution, in ledger order."""
        principal = authorize(principal, institution_id=institution_id)
        institution = self._institution(principal.institution_id)
        views = await self.reconciler.list_for(institution)
        return TransactionListResponse(
            transactions=[TransactionOut.model_validate(v.to_dict()) for v in views]
        )

    async def institution_summary(
        self, principal: Principal | None, institution_id: str
    ) -> InstitutionSummary:
        authorize(principal, institution_id=institution_id)
        institution = self._institution(institution_id)

        balance, views = await asyncio.gather(
            self.ledger.get_balance(institution.remote_id),
            self.reconciler.list_for(institution),
        )

        approved = [v.amount for v in views if v.status == TransactionStatus.APPROVED]
        total_spent = sum(approved)
        pending = sum(1 for v in views if v.status == TransactionStatus.PENDING)
        average = total_spent // len(approved) if approved else 0

        return InstitutionSummary(
            institution=InstitutionOut(
                id=institution.id,
                name=institution.name,
                location=institution.location,
                auditor_id=institution.auditor_id,
                remote_id=institution.remote_id,
                created_at=institution.created_at,
            ),
            balance=to_major_units(balance),
            associates=[self._associate_out(a) for a in self.store.associates_of(institution_id)],
            metrics=SummaryMetrics(
                total_transactions=len(views),
                pending_transactions=pending,
                total_spent=_format_ether(total_spent),
                avg_transaction=_format_ether(average),
            ),
        )

    # -----------------------------------------------------------------------
    # Process configuration
    # -----------------------------------------------------------------------

    def get_theme(self) -> ThemeResponse:
        config = self.store.state.config
        return ThemeResponse(theme=config.theme, last_updated=config.last_updated)

    async def set_theme(self, principal: Principal | None, theme: str) -> ThemeResponse:
        authorize(principal, role=Role.AUDITOR)
        if theme not in THEMES:
            raise InvalidArgumentError("Invalid theme. Must be: default, dark, or light")
        async with self._institution_locks.hold(CONFIG_LOCK_KEY):
            config = self.store.state.config
            config.theme = theme
            config.last_updated = utc_now_iso()
            await self.store.commit()
        logger.info(f"Theme set to {theme}")
        return self.get_theme()

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        return {
            "store": {
                "path": str(self.store.path),
                "dirty": self.store.dirty,
                "violations": list(self.store.violations),
            },
            "ledger": self.ledger.breaker.get_stats(),
        }

    async def close(self) -> None:
        await self.ledger.close()
        self.store.close()


__all__ = ["BudgetService", "THEMES"]
