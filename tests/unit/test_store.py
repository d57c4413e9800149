"""Tests for the local snapshot store."""

from __future__ import annotations

import json
import os

import pytest

from budget_gateway.errors import ConstraintViolationError, StorageError
from budget_gateway.persistence.state import (
    Associate,
    Auditor,
    Institution,
    LocalTransaction,
    State,
    verify_constraints,
)
from budget_gateway.persistence.store import LocalStore


def _institution(inst_id: str, name: str, auditor_id: str) -> Institution:
    return Institution(
        id=inst_id, name=name, location="Springfield", auditor_id=auditor_id, remote_id="1"
    )


def _auditor(auditor_id: str, inst_id: str) -> Auditor:
    return Auditor(
        id=auditor_id,
        institution_id=inst_id,
        wallet_address="0x" + "a" * 40,
        credential_secret="secret",
        password_hash="hash",
    )


def _associate(assoc_id: str, inst_id: str, username: str) -> Associate:
    return Associate(
        id=assoc_id,
        institution_id=inst_id,
        username=username,
        wallet_address="0x" + "b" * 40,
        password_hash="hash",
    )


def _consistent_state() -> State:
    state = State()
    state.institutions["10000001"] = _institution("10000001", "Acme", "AUD1001")
    state.auditors["AUD1001"] = _auditor("AUD1001", "10000001")
    state.associates["EMP1001"] = _associate("EMP1001", "10000001", "bob")
    return state


# ---------------------------------------------------------------------------
# Constraint check
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestVerifyConstraints:
    """Tests for the startup invariant check."""

    def test_consistent_state_has_no_violations(self):
        assert verify_constraints(_consistent_state()) == []

    def test_reports_every_violation(self):
        """All violations are listed, not just the first."""
        state = _consistent_state()
        state.institutions["10000002"] = _institution("10000002", "ACME", "AUD9999")
        for i, name in enumerate(["carol", "dave"]):
            state.associates[f"EMP200{i}"] = _associate(f"EMP200{i}", "10000001", name)

        violations = verify_constraints(state, max_associates=2)

        assert len(violations) == 3
        assert any("Duplicate institution name" in v for v in violations)
        assert any("3 associates" in v for v in violations)
        assert any("missing auditor AUD9999" in v for v in violations)

    def test_auditor_bound_to_other_institution(self):
        state = _consistent_state()
        state.auditors["AUD1001"].institution_id = "99999999"
        violations = verify_constraints(state)
        assert violations == ["Auditor AUD1001 is bound to 99999999, not 10000001"]


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestLocalStore:
    """Tests for LocalStore persistence."""

    def test_missing_file_creates_empty_snapshot(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        store = LocalStore(path)

        state = store.load()

        assert state.institutions == {}
        assert path.exists()
        assert json.loads(path.read_text())["config"]["theme"] == "default"

    def test_roundtrip_preserves_records(self, tmp_path):
        path = tmp_path / "state.json"
        store = LocalStore(path)
        store.save(_consistent_state())
        store.state.transactions["1"] = LocalTransaction(
            id="1", institution_id="10000001", creator_id="EMP1001", priority="high"
        )
        store.save()

        reloaded = LocalStore(path).load()

        assert reloaded.institutions["10000001"].name == "Acme"
        assert reloaded.associates["EMP1001"].username == "bob"
        assert reloaded.transactions["1"].priority == "high"

    def test_corrupt_snapshot_raises_storage_error(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            LocalStore(path).load()

    def test_constraint_violation_refuses_start(self, tmp_path):
        path = tmp_path / "state.json"
        state = _consistent_state()
        state.institutions["10000002"] = _institution("10000002", "acme", "AUD1001")
        path.write_text(json.dumps(state.to_dict()))

        with pytest.raises(ConstraintViolationError) as exc_info:
            LocalStore(path).load()
        assert exc_info.value.violations

    def test_override_flag_starts_with_warnings(self, tmp_path):
        path = tmp_path / "state.json"
        state = _consistent_state()
        state.institutions["10000002"] = _institution("10000002", "acme", "AUD1001")
        path.write_text(json.dumps(state.to_dict()))

        store = LocalStore(path, allow_violations=True)
        store.load()

        assert store.violations
        assert "10000002" in store.state.institutions

    def test_stale_temp_files_are_discarded(self, tmp_path):
        path = tmp_path / "state.json"
        LocalStore(path).load()
        leftover = tmp_path / "state.json.abc123.tmp"
        leftover.write_text("partial")

        LocalStore(path).load()

        assert not leftover.exists()


@pytest.mark.unit
class TestAtomicWrites:
    """A failed write never corrupts the committed snapshot."""

    def test_failed_replace_keeps_previous_snapshot(self, tmp_path, monkeypatch):
        path = tmp_path / "state.json"
        store = LocalStore(path)
        store.save(_consistent_state())
        before = path.read_text()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        store.state.config.theme = "dark"
        with pytest.raises(StorageError):
            store.save()

        assert path.read_text() == before
        assert list(tmp_path.glob("*.tmp")) == []
        # In-memory change is kept for the next successful write
        assert store.dirty
        assert store.state.config.theme == "dark"

        monkeypatch.undo()
        store.flush()
        assert not store.dirty
        assert LocalStore(path).load().config.theme == "dark"

    def test_older_generation_never_overwrites_newer(self, tmp_path):
        path = tmp_path / "state.json"
        store = LocalStore(path)
        store.load()

        store.state.config.theme = "light"
        old_generation, old_payload = store._encode(store.state)
        store.state.config.theme = "dark"
        new_generation, new_payload = store._encode(store.state)

        store._write(new_generation, new_payload)
        store._write(old_generation, old_payload)

        assert json.loads(path.read_text())["config"]["theme"] == "dark"

    @pytest.mark.asyncio
    async def test_commit_writes_off_loop(self, tmp_path):
        path = tmp_path / "state.json"
        store = LocalStore(path)
        store.load()
        store.state.config.theme = "light"

        await store.commit()

        assert not store.dirty
        assert json.loads(path.read_text())["config"]["theme"] == "light"


@pytest.mark.unit
class TestIndices:
    def test_lookup_by_name_is_case_insensitive(self, tmp_path):
        store = LocalStore(tmp_path / "state.json")
        store.save(_consistent_state())

        assert store.find_institution_by_name("ACME").id == "10000001"
        assert store.find_institution_by_name("Other") is None

    def test_associates_and_transactions_by_institution(self, tmp_path):
        store = LocalStore(tmp_path / "state.json")
        state = _consistent_state()
        state.transactions["4"] = LocalTransaction(
            id="4", institution_id="10000001", creator_id="EMP1001"
        )
        store.save(state)

        assert [a.id for a in store.associates_of("10000001")] == ["EMP1001"]
        assert store.transaction_ids_of("10000001") == ["4"]
        assert store.associates_of("missing") == []
