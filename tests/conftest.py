"""Test configuration for pytest."""

from __future__ import annotations

import pytest

from budget_gateway.ledger.backend import InMemoryLedger
from budget_gateway.ledger.client import LedgerClient
from budget_gateway.persistence.store import LocalStore
from budget_gateway.service.auth import Authenticator
from budget_gateway.service.config import GatewayConfig
from budget_gateway.service.core import BudgetService

# Few PBKDF2 rounds keep the suite fast; production uses the config default.
TEST_ITERATIONS = 1_000


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "conformance: API contract conformance tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


@pytest.fixture
def config(tmp_path) -> GatewayConfig:
    return GatewayConfig(
        signing_key="test-signing-key-12345",
        data_path=str(tmp_path / "state.json"),
        ledger_timeout_seconds=1.0,
        ledger_retry_base_delay=0.0,
        password_iterations=TEST_ITERATIONS,
    )


@pytest.fixture
def ledger_backend() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def ledger(ledger_backend, config) -> LedgerClient:
    return LedgerClient(
        ledger_backend,
        timeout_seconds=config.ledger_timeout_seconds,
        query_attempts=config.ledger_query_retries,
        retry_base_delay=0.0,
    )


@pytest.fixture
def store(config) -> LocalStore:
    store = LocalStore(config.data_path, max_associates=config.max_associates)
    store.load()
    return store


@pytest.fixture
def authenticator(config) -> Authenticator:
    return Authenticator(config.signing_key, iterations=config.password_iterations)


@pytest.fixture
def service(config, store, ledger, authenticator) -> BudgetService:
    return BudgetService(config, store=store, ledger=ledger, authenticator=authenticator)
