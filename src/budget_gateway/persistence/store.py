"""Local Store - atomic JSON snapshot of locally-owned state.

Holds institutions, auditors, associates, local transaction metadata and the
process configuration in one human-readable file. The whole snapshot is
rewritten on every mutation: serialized on the caller's thread, written to a
temporary sibling, fsynced, then renamed over the committed file.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from ..errors import ConstraintViolationError, StorageError
from ..executor import run_in_executor
from .state import Associate, Institution, State, verify_constraints

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


class LocalStore:
    """Process-wide owner of the local snapshot.

    Lifecycle: ``load()`` at startup (runs the constraint check), mutations
    through ``state`` followed by ``commit()``, ``close()`` at shutdown after a
    final flush.

    Example:
        with LocalStore("data/state.json") as store:
            state = store.load()
            state.config.theme = "dark"
            store.save()
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        max_associates: int = 2,
        allow_violations: bool = False,
    ) -> None:
        if path is None:
            path = Path.cwd() / "data" / "state.json"
        self.path = Path(path)
        self.max_associates = max_associates
        self.allow_violations = allow_violations

        self._state: State | None = None
        self._write_lock = threading.Lock()
        self._encoded_generation = 0
        self._written_generation = 0
        self.violations: list[str] = []

        self._institution_by_name: dict[str, str] = {}
        self._associates_by_institution: dict[str, list[str]] = {}
        self._transactions_by_institution: dict[str, list[str]] = {}

    # -----------------------------------------------------------------------
    # Load
    # -----------------------------------------------------------------------

    def load(self) -> State:
        """Read the committed snapshot, verify constraints, build indices.

        Raises:
            StorageError: the snapshot exists but cannot be parsed
            ConstraintViolationError: invariants are violated and the
                override flag is not set
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._discard_stale_temp_files()

        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise StorageError(f"Cannot read snapshot {self.path}: {exc}") from exc
            state = State.from_dict(raw)
        else:
            state = State()
            self._state = state
            self.save(state)

        violations = verify_constraints(state, self.max_associates)
        self.violations = violations
        if violations:
            if not self.allow_violations:
                for violation in violations:
                    logger.error(f"Store constraint violation: {violation}")
                raise ConstraintViolationError(violations)
            for violation in violations:
                logger.warning(f"Ignoring store constraint violation: {violation}")

        self._state = state
        self._rebuild_indices()
        logger.info(
            f"Local store loaded: {len(state.institutions)} institutions, "
            f"{len(state.transactions)} transactions from {self.path}"
        )
        return state

    def _discard_stale_temp_files(self) -> None:
        """Remove temp files left behind by an interrupted write."""
        pattern = f"{self.path.name}.*{TEMP_SUFFIX}"
        for stale in self.path.parent.glob(pattern):
            logger.warning(f"Removing incomplete snapshot write {stale}")
            with contextlib.suppress(OSError):
                stale.unlink()

    @property
    def state(self) -> State:
        if self._state is None:
            return self.load()
        return self._state

    @property
    def loaded(self) -> bool:
        return self._state is not None

    @property
    def dirty(self) -> bool:
        """True when the in-memory state has changes not yet on disk."""
        return self._encoded_generation > self._written_generation

    # -----------------------------------------------------------------------
    # Save
    # -----------------------------------------------------------------------

    def _encode(self, state: State) -> tuple[int, str]:
        self._encoded_generation += 1
        payload = json.dumps(state.to_dict(), indent=2, sort_keys=True)
        return self._encoded_generation, payload + "\n"

    def _write(self, generation: int, payload: str) -> None:
        """Write ``payload`` unless a newer generation is already on disk."""
        with self._write_lock:
            if generation <= self._written_generation:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self.path.name}.",
                suffix=TEMP_SUFFIX,
                dir=self.path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
            self._written_generation = generation

    def save(self, state: State | None = None) -> None:
        """Synchronously persist ``state`` (default: the cached snapshot)."""
        if state is not None:
            self._state = state
        generation, payload = self._encode(self.state)
        try:
            self._write(generation, payload)
        except OSError as exc:
            logger.error(f"Snapshot write failed: {exc}")
            raise StorageError(f"Failed to persist local state: {exc}") from exc
        self._rebuild_indices()

    async def commit(self) -> None:
        """Persist the cached snapshot without blocking the event loop.

        Serialization happens here, on the loop, so the payload is a
        consistent view even while other coroutines keep mutating state.
        """
        generation, payload = self._encode(self.state)
        try:
            await run_in_executor(self._write, generation, payload)
        except OSError as exc:
            logger.error(f"Snapshot write failed: {exc}")
            raise StorageError(f"Failed to persist local state: {exc}") from exc
        self._rebuild_indices()

    def flush(self) -> None:
        """Write pending changes, if any."""
        if self._state is not None and self.dirty:
            self.save()

    def close(self) -> None:
        self.flush()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # Indices
    # -----------------------------------------------------------------------

    def _rebuild_indices(self) -> None:
        state = self.state
        by_name: dict[str, str] = {}
        associates: dict[str, list[str]] = {}
        transactions: dict[str, list[str]] = {}

        for institution_id, institution in state.institutions.items():
            by_name[institution.name.lower()] = institution_id
        for associate_id, associate in state.associates.items():
            associates.setdefault(associate.institution_id, []).append(associate_id)
        for tx_id, tx in state.transactions.items():
            transactions.setdefault(tx.institution_id, []).append(tx_id)

        self._institution_by_name = by_name
        self._associates_by_institution = associates
        self._transactions_by_institution = transactions

    def find_institution_by_name(self, name: str) -> Institution | None:
        """Case-insensitive lookup; scans when unsaved changes exist."""
        key = name.strip().lower()
        if self.dirty:
            for institution in self.state.institutions.values():
                if institution.name.lower() == key:
                    return institution
            return None
        institution_id = self._institution_by_name.get(key)
        if institution_id is None:
            return None
        return self.state.institutions.get(institution_id)

    def associates_of(self, institution_id: str) -> list[Associate]:
        if self.dirty:
            return [
                a for a in self.state.associates.values()
                if a.institution_id == institution_id
            ]
        ids = self._associates_by_institution.get(institution_id, [])
        return [self.state.associates[i] for i in ids if i in self.state.associates]

    def transaction_ids_of(self, institution_id: str) -> list[str]:
        if self.dirty:
            return [
                tx_id for tx_id, tx in self.state.transactions.items()
                if tx.institution_id == institution_id
            ]
        return list(self._transactions_by_institution.get(institution_id, []))


__all__ = ["LocalStore"]
