"""Tests for keyed locks, rate limiting, configuration and the command line."""

from __future__ import annotations

import asyncio
import os

import pytest

from budget_gateway.main import _export, build_parser
from budget_gateway.service.config import GatewayConfig
from budget_gateway.service.rate_limit import RateLimiter, RateLimitPolicy
from budget_gateway.workflow.locks import KeyedLock


@pytest.mark.unit
class TestKeyedLock:
    """Per-key mutual exclusion."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str):
            async with locks.hold("10000001"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        inside = asyncio.Event()

        async def holder():
            async with locks.hold("one"):
                inside.set()
                await asyncio.sleep(0.05)

        task = asyncio.create_task(holder())
        await inside.wait()
        async with locks.hold("two"):
            assert locks.locked("one")
        await task

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        locks = KeyedLock()
        async with locks.hold("x"):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked("x")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestRateLimiter:
    """Token buckets per policy and client."""

    def test_default_policies_cover_password_endpoints(self):
        limiter = RateLimiter()
        assert limiter.policy_for("POST", "/auth/login-auditor").name == "auth"
        assert limiter.policy_for("POST", "/auth/login-associate").name == "auth"
        assert limiter.policy_for("POST", "/institutions/register").name == "registration"
        assert limiter.policy_for("POST", "/institutions/10000001/associates").name == "associates"
        assert limiter.policy_for("GET", "/transactions") is None
        assert limiter.policy_for("POST", "/transactions") is None
        assert limiter.policy_for("DELETE", "/institutions/10000001/associates/EMP1001") is None
        assert limiter.policy_for("POST", "/institutions/10000001/deposit") is None

    def test_auditor_password_guessing_is_throttled(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        policy = limiter.policy_for("POST", "/institutions/10000001/associates")

        results = [limiter.check(policy, "1.2.3.4")[0] for _ in range(6)]

        assert results == [True] * 5 + [False]
        clock.now += 15 * 60
        assert limiter.check(policy, "1.2.3.4")[0]

    def test_capacity_then_refill(self):
        clock = FakeClock()
        policy = RateLimitPolicy("auth", r"/auth/.*", capacity=5, window_seconds=900)
        limiter = RateLimiter((policy,), clock=clock)

        results = [limiter.check(policy, "1.2.3.4")[0] for _ in range(6)]
        assert results == [True] * 5 + [False]

        allowed, retry_after = limiter.check(policy, "1.2.3.4")
        assert not allowed
        assert retry_after == pytest.approx(180.0)

        clock.now += 180
        assert limiter.check(policy, "1.2.3.4")[0]

    def test_clients_are_independent(self):
        policy = RateLimitPolicy("registration", r"/institutions/register", 1, 3600)
        limiter = RateLimiter((policy,), clock=FakeClock())

        assert limiter.check(policy, "a")[0]
        assert not limiter.check(policy, "a")[0]
        assert limiter.check(policy, "b")[0]


@pytest.mark.unit
class TestGatewayConfig:
    """Environment-driven configuration."""

    def test_signing_key_required(self, monkeypatch):
        monkeypatch.delenv("BUDGET_SIGNING_KEY", raising=False)
        with pytest.raises(ValueError):
            GatewayConfig.from_env()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BUDGET_SIGNING_KEY", "k")
        monkeypatch.setenv("BUDGET_PORT", "4100")
        monkeypatch.setenv("BUDGET_LEDGER_URL", "http://ledger:8080")
        monkeypatch.setenv("BUDGET_OVERRIDE_CONSTRAINTS", "1")
        monkeypatch.setenv("BUDGET_CORS_ORIGINS", "http://a, http://b")

        config = GatewayConfig.from_env()

        assert config.port == 4100
        assert config.ledger_url == "http://ledger:8080"
        assert config.allow_constraint_violations is True
        assert config.cors_origins == ["http://a", "http://b"]
        assert config.max_associates == 2

    def test_defaults(self, monkeypatch):
        for name in ("BUDGET_LEDGER_URL", "BUDGET_OVERRIDE_CONSTRAINTS", "BUDGET_PORT"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("BUDGET_SIGNING_KEY", "k")

        config = GatewayConfig.from_env()

        assert config.ledger_url is None
        assert config.allow_constraint_violations is False
        assert config.port == 4000
        assert config.ledger_timeout_seconds == 30.0


@pytest.mark.unit
class TestCommandLine:
    """Options are exported for the env-driven app factory."""

    VARIABLES = (
        "BUDGET_PORT",
        "BUDGET_DATA_PATH",
        "BUDGET_LEDGER_URL",
        "BUDGET_OVERRIDE_CONSTRAINTS",
        "BUDGET_LOG_JSON",
        "BUDGET_SIGNING_KEY",
    )

    def _clean(self, monkeypatch):
        # setenv first so monkeypatch restores whatever _export writes
        for name in self.VARIABLES:
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)

    def test_options_become_config(self, monkeypatch):
        self._clean(monkeypatch)
        args = build_parser().parse_args(
            [
                "--port", "4200",
                "--data-path", "/tmp/state.json",
                "--ledger-url", "http://ledger:8080",
                "--override-constraints",
            ]
        )

        _export(args)
        config = GatewayConfig.from_env()

        assert config.port == 4200
        assert config.data_path == "/tmp/state.json"
        assert config.ledger_url == "http://ledger:8080"
        assert config.allow_constraint_violations is True

    def test_missing_signing_key_is_generated(self, monkeypatch):
        self._clean(monkeypatch)
        _export(build_parser().parse_args([]))

        assert len(os.environ["BUDGET_SIGNING_KEY"]) == 64
        assert "BUDGET_LEDGER_URL" not in os.environ
