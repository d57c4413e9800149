"""Tests for the review state machine."""

from __future__ import annotations

import pytest

from budget_gateway.errors import (
    ForbiddenError,
    InvalidArgumentError,
    LedgerRejectedError,
    LedgerTimeoutError,
    NotFoundError,
    UnprocessableError,
)
from budget_gateway.ledger.models import TransactionStatus
from budget_gateway.persistence.state import Institution, LocalTransaction
from budget_gateway.workflow.reconcile import merge
from budget_gateway.workflow.review import (
    Decision,
    ReviewStateMachine,
    next_status,
    review_in_flight,
)

RECEIVER = "0x" + "1" * 40
CREATOR = "0x" + "2" * 40


async def _setup(ledger_backend, store, funds: int = 10, amount: int = 3):
    """Register an institution with one pending transaction."""
    registration = await ledger_backend.submit_registration("Acme", "Springfield", CREATOR)
    remote_id = registration.ledger_id
    await ledger_backend.submit_deposit(remote_id, funds)
    created = await ledger_backend.submit_transaction(
        remote_id, CREATOR, RECEIVER, amount, "Supplies", ""
    )
    institution = Institution(
        id="10000001",
        name="Acme",
        location="Springfield",
        auditor_id="AUD1001",
        remote_id=remote_id,
    )
    store.state.transactions[created.ledger_id] = LocalTransaction(
        id=created.ledger_id,
        institution_id=institution.id,
        creator_id="EMP1001",
        priority="high",
        deadline="2026-12-31",
    )
    return institution, created.ledger_id


# ---------------------------------------------------------------------------
# Pure transition rules
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTransitions:
    """Tests for the transition table."""

    @pytest.mark.parametrize("current", [TransactionStatus.PENDING, TransactionStatus.REVIEW])
    @pytest.mark.parametrize("decision", list(Decision))
    def test_editable_states_accept_every_decision(self, current, decision):
        assert next_status(current, decision) == decision.status

    @pytest.mark.parametrize("current", [TransactionStatus.APPROVED, TransactionStatus.DECLINED])
    def test_final_states_are_unprocessable(self, current):
        with pytest.raises(UnprocessableError):
            next_status(current, Decision.REVIEW)

    def test_parse_accepts_exact_names(self):
        assert Decision.parse("Approved") is Decision.APPROVED
        assert Decision.parse("Review").status == TransactionStatus.REVIEW

    @pytest.mark.parametrize("value", ["approved", "Pending", "", None, 1])
    def test_parse_rejects_anything_else(self, value):
        with pytest.raises(InvalidArgumentError):
            Decision.parse(value)


# ---------------------------------------------------------------------------
# State machine against the in-process ledger
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestReviewStateMachine:
    """Tests for write-after-confirm reviews."""

    @pytest.mark.asyncio
    async def test_approve_updates_cache_after_ledger(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        machine = ReviewStateMachine(ledger, store)

        result = await machine.review(institution, tx_id, "Approved", "ok")

        assert result.status == TransactionStatus.APPROVED
        local = store.state.transactions[tx_id]
        assert local.status == TransactionStatus.APPROVED
        assert local.auditor_comment == "ok"
        assert local.review_receipt == result.receipt.receipt_id
        assert await ledger_backend.get_balance(institution.remote_id) == 7

    @pytest.mark.asyncio
    async def test_review_then_approve(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        machine = ReviewStateMachine(ledger, store)

        await machine.review(institution, tx_id, "Review", "need receipt")
        await machine.review(institution, tx_id, "Review", "still waiting")
        result = await machine.review(institution, tx_id, "Declined", "no")

        assert result.status == TransactionStatus.DECLINED
        assert len(ledger_backend.calls_to("submit_review")) == 3

    @pytest.mark.asyncio
    async def test_final_transaction_is_not_resubmitted(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        machine = ReviewStateMachine(ledger, store)
        await machine.review(institution, tx_id, "Approved")

        with pytest.raises(UnprocessableError):
            await machine.review(institution, tx_id, "Declined")

        assert len(ledger_backend.calls_to("submit_review")) == 1
        assert store.state.transactions[tx_id].status == TransactionStatus.APPROVED

    @pytest.mark.asyncio
    async def test_precondition_uses_ledger_status(self, ledger_backend, ledger, store):
        """A stale local cache does not allow reviewing a final transaction."""
        institution, tx_id = await _setup(ledger_backend, store)
        await ledger_backend.submit_review(tx_id, TransactionStatus.DECLINED, "elsewhere")
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(UnprocessableError):
            await machine.review(institution, tx_id, "Approved")
        assert store.state.transactions[tx_id].status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_invalid_decision_makes_no_remote_call(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        machine = ReviewStateMachine(ledger, store)
        before = len(ledger_backend.calls)

        with pytest.raises(InvalidArgumentError):
            await machine.review(institution, tx_id, "Maybe")
        assert len(ledger_backend.calls) == before

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_not_found(self, ledger_backend, ledger, store):
        institution, _ = await _setup(ledger_backend, store)
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(NotFoundError):
            await machine.review(institution, "999", "Approved")

    @pytest.mark.asyncio
    async def test_other_institutions_transaction_is_forbidden(
        self, ledger_backend, ledger, store
    ):
        _, tx_id = await _setup(ledger_backend, store)
        other = await ledger_backend.submit_registration("Globex", "Cypress Creek", CREATOR)
        intruder = Institution(
            id="20000002",
            name="Globex",
            location="Cypress Creek",
            auditor_id="AUD2002",
            remote_id=other.ledger_id,
        )
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(ForbiddenError):
            await machine.review(intruder, tx_id, "Approved")

    @pytest.mark.asyncio
    async def test_rejection_leaves_cache_untouched(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next(
            "submit_review", LedgerRejectedError("submit_review", "insufficient balance")
        )
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(LedgerRejectedError):
            await machine.review(institution, tx_id, "Approved")

        local = store.state.transactions[tx_id]
        assert local.status == TransactionStatus.PENDING
        assert local.pending_review is None


@pytest.mark.unit
class TestReviewTimeout:
    """A timed-out review is recorded as in flight, never as applied."""

    @pytest.mark.asyncio
    async def test_timeout_records_marker_not_status(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next("submit_review", LedgerTimeoutError("submit_review", 1.0))
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(LedgerTimeoutError):
            await machine.review(institution, tx_id, "Approved", "ok")

        local = store.state.transactions[tx_id]
        assert local.status == TransactionStatus.PENDING
        assert local.pending_review["status"] == int(TransactionStatus.APPROVED)
        assert local.pending_review["auditor_comment"] == "ok"

        remote = await ledger_backend.get_transaction(tx_id)
        assert review_in_flight(remote, local)
        assert merge(remote, local).review_pending is True

    @pytest.mark.asyncio
    async def test_dropped_connection_records_marker(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next("submit_review", ConnectionResetError("peer reset"))
        machine = ReviewStateMachine(ledger, store)

        with pytest.raises(LedgerTimeoutError):
            await machine.review(institution, tx_id, "Declined", "no budget")

        local = store.state.transactions[tx_id]
        assert local.status == TransactionStatus.PENDING
        assert local.pending_review["status"] == int(TransactionStatus.DECLINED)

    @pytest.mark.asyncio
    async def test_landed_review_is_adopted_without_resubmit(
        self, ledger_backend, ledger, store
    ):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next("submit_review", LedgerTimeoutError("submit_review", 1.0))
        machine = ReviewStateMachine(ledger, store)
        with pytest.raises(LedgerTimeoutError):
            await machine.review(institution, tx_id, "Approved", "ok")

        # The earlier submission finalizes on the ledger after the timeout
        await ledger_backend.submit_review(tx_id, TransactionStatus.APPROVED, "ok")
        submits = len(ledger_backend.calls_to("submit_review"))

        result = await machine.review(institution, tx_id, "Approved", "ok")

        assert result.resumed
        assert len(ledger_backend.calls_to("submit_review")) == submits
        local = store.state.transactions[tx_id]
        assert local.status == TransactionStatus.APPROVED
        assert local.pending_review is None

    @pytest.mark.asyncio
    async def test_unlanded_review_is_resubmitted(self, ledger_backend, ledger, store):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next("submit_review", LedgerTimeoutError("submit_review", 1.0))
        machine = ReviewStateMachine(ledger, store)
        with pytest.raises(LedgerTimeoutError):
            await machine.review(institution, tx_id, "Declined")

        result = await machine.review(institution, tx_id, "Declined")

        assert not result.resumed
        assert result.status == TransactionStatus.DECLINED
        assert store.state.transactions[tx_id].pending_review is None

    @pytest.mark.asyncio
    async def test_landed_final_review_blocks_different_decision(
        self, ledger_backend, ledger, store
    ):
        institution, tx_id = await _setup(ledger_backend, store)
        ledger_backend.fail_next("submit_review", LedgerTimeoutError("submit_review", 1.0))
        machine = ReviewStateMachine(ledger, store)
        with pytest.raises(LedgerTimeoutError):
            await machine.review(institution, tx_id, "Approved")
        await ledger_backend.submit_review(tx_id, TransactionStatus.APPROVED, "")

        with pytest.raises(UnprocessableError):
            await machine.review(institution, tx_id, "Declined")
        # The cache still learned about the landed approval
        assert store.state.transactions[tx_id].status == TransactionStatus.APPROVED
