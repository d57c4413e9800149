"""Tests for the admission controller."""

from __future__ import annotations

import pytest

from budget_gateway.errors import (
    InsufficientFundsError,
    InvalidArgumentError,
    LedgerRejectedError,
)
from budget_gateway.ledger.models import TransactionStatus, to_minor_units
from budget_gateway.persistence.state import Associate, Institution
from budget_gateway.workflow.admission import (
    AdmissionController,
    Priority,
    SpendingRequest,
)

RECEIVER = "0x" + "ab" * 20
CREATOR = "0x" + "cd" * 20


async def _institution(ledger_backend, funds: str) -> Institution:
    registration = await ledger_backend.submit_registration("Acme", "Springfield", CREATOR)
    if funds != "0":
        await ledger_backend.submit_deposit(registration.ledger_id, to_minor_units(funds))
    return Institution(
        id="10000001",
        name="Acme",
        location="Springfield",
        auditor_id="AUD1001",
        remote_id=registration.ledger_id,
    )


def _creator() -> Associate:
    return Associate(
        id="EMP1001",
        institution_id="10000001",
        username="bob",
        wallet_address=CREATOR,
        password_hash="hash",
    )


@pytest.mark.unit
class TestSpendingRequest:
    """Tests for request validation."""

    def test_defaults_to_medium_priority(self):
        request = SpendingRequest(receiver=RECEIVER, amount=1, purpose="Supplies")
        assert request.priority is Priority.MEDIUM

    def test_priority_string_is_coerced(self):
        request = SpendingRequest(
            receiver=RECEIVER, amount=1, purpose="Supplies", priority="urgent"
        )
        assert request.priority is Priority.URGENT

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"receiver": "0x123"},
            {"receiver": "ab" * 21},
            {"amount": 0},
            {"amount": -5},
            {"purpose": "x"},
            {"purpose": "  "},
            {"priority": "critical"},
        ],
    )
    def test_invalid_fields_rejected(self, kwargs):
        fields = {"receiver": RECEIVER, "amount": 1, "purpose": "Supplies"}
        fields.update(kwargs)
        with pytest.raises(InvalidArgumentError):
            SpendingRequest(**fields)


@pytest.mark.unit
class TestAdmissionController:
    """Tests for balance admission and submission."""

    @pytest.mark.asyncio
    async def test_admits_within_balance(self, ledger_backend, ledger, store):
        institution = await _institution(ledger_backend, "5.0")
        controller = AdmissionController(ledger, store)
        request = SpendingRequest(
            receiver=RECEIVER,
            amount=to_minor_units("3.0"),
            purpose="Supplies",
            deadline="2026-12-31",
            priority="high",
        )

        result = await controller.admit(institution, _creator(), request)

        local = store.state.transactions[result.tx_id]
        assert local.institution_id == "10000001"
        assert local.creator_id == "EMP1001"
        assert local.priority == "high"
        assert local.deadline == "2026-12-31"
        assert local.status == TransactionStatus.PENDING
        assert local.create_receipt == result.receipt.receipt_id
        assert result.balance_at_check == to_minor_units("5.0")
        assert not store.dirty

    @pytest.mark.asyncio
    async def test_exact_balance_is_admitted(self, ledger_backend, ledger, store):
        institution = await _institution(ledger_backend, "5.0")
        controller = AdmissionController(ledger, store)
        request = SpendingRequest(
            receiver=RECEIVER, amount=to_minor_units("5.0"), purpose="Everything"
        )

        result = await controller.admit(institution, _creator(), request)
        assert result.tx_id == "1"

    @pytest.mark.asyncio
    async def test_over_balance_never_submits(self, ledger_backend, ledger, store):
        institution = await _institution(ledger_backend, "5.0")
        controller = AdmissionController(ledger, store)
        request = SpendingRequest(
            receiver=RECEIVER, amount=to_minor_units("10.0"), purpose="Too much"
        )

        with pytest.raises(InsufficientFundsError) as exc_info:
            await controller.admit(institution, _creator(), request)

        assert exc_info.value.available == to_minor_units("5.0")
        assert ledger_backend.calls_to("submit_transaction") == []
        assert store.state.transactions == {}

    @pytest.mark.asyncio
    async def test_ledger_rejection_is_authoritative(self, ledger_backend, ledger, store):
        institution = await _institution(ledger_backend, "5.0")
        ledger_backend.fail_next(
            "submit_transaction",
            LedgerRejectedError("submit_transaction", "insufficient balance"),
        )
        controller = AdmissionController(ledger, store)
        request = SpendingRequest(
            receiver=RECEIVER, amount=to_minor_units("1.0"), purpose="Supplies"
        )

        with pytest.raises(LedgerRejectedError):
            await controller.admit(institution, _creator(), request)
        assert store.state.transactions == {}
