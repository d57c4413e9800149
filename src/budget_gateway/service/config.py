"""Configuration primitives for the budget gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class GatewayConfig:
    """Runtime configuration for the budget gateway.

    Configuration Sources (priority order):
    1. Direct constructor arguments
    2. Environment variables (BUDGET_*)
    3. Default values

    Attributes:
        signing_key: HMAC key for bearer tokens (REQUIRED)
        port: Service port (default: 4000)
        data_path: Local snapshot file (default: data/state.json)
        ledger_url: Remote ledger gateway URL. None runs the in-process ledger
        ledger_token: Bearer token presented to the remote ledger gateway
        ledger_timeout_seconds: Finality timeout for every remote call
        ledger_query_retries: Attempts for read-only ledger queries
        ledger_retry_base_delay: Initial backoff between query attempts
        token_ttl_seconds: Lifetime of issued bearer tokens (default: 24h)
        password_iterations: PBKDF2 rounds for password hashing
        max_associates: Associate ceiling per institution (default: 2)
        allow_constraint_violations: Start even if the snapshot is inconsistent
    """

    signing_key: str
    port: int = 4000
    data_path: str = "data/state.json"
    ledger_url: str | None = None
    ledger_token: str | None = None
    ledger_timeout_seconds: float = 30.0
    ledger_query_retries: int = 3
    ledger_retry_base_delay: float = 0.5
    token_ttl_seconds: int = 24 * 60 * 60
    password_iterations: int = 210_000
    max_associates: int = 2
    allow_constraint_violations: bool = False
    cors_origins: list[str] = field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Create configuration from environment variables.

        Required:
            BUDGET_SIGNING_KEY: Signing key for bearer tokens

        Optional:
            BUDGET_PORT: Service port (default: 4000)
            BUDGET_DATA_PATH: Snapshot file path
            BUDGET_LEDGER_URL: Remote ledger gateway base URL
            BUDGET_LEDGER_TOKEN: Token for the remote ledger gateway
            BUDGET_LEDGER_TIMEOUT: Finality timeout in seconds
            BUDGET_LEDGER_RETRIES: Attempts for ledger queries
            BUDGET_TOKEN_TTL: Bearer token lifetime in seconds
            BUDGET_PASSWORD_ITERATIONS: PBKDF2 rounds
            BUDGET_OVERRIDE_CONSTRAINTS: Set to 1 to start despite violations
            BUDGET_CORS_ORIGINS: Comma-separated list of allowed origins
        """
        signing_key = os.environ.get("BUDGET_SIGNING_KEY")
        if not signing_key:
            raise ValueError("BUDGET_SIGNING_KEY environment variable is required")

        config = cls(
            signing_key=signing_key,
            port=int(os.environ.get("BUDGET_PORT", "4000")),
            data_path=os.environ.get("BUDGET_DATA_PATH", "data/state.json"),
            ledger_url=os.environ.get("BUDGET_LEDGER_URL") or None,
            ledger_token=os.environ.get("BUDGET_LEDGER_TOKEN") or None,
            ledger_timeout_seconds=float(os.environ.get("BUDGET_LEDGER_TIMEOUT", "30")),
            ledger_query_retries=int(os.environ.get("BUDGET_LEDGER_RETRIES", "3")),
            token_ttl_seconds=int(os.environ.get("BUDGET_TOKEN_TTL", str(24 * 60 * 60))),
            password_iterations=int(
                os.environ.get("BUDGET_PASSWORD_ITERATIONS", "210000")
            ),
            allow_constraint_violations=_env_flag("BUDGET_OVERRIDE_CONSTRAINTS"),
        )

        origins = os.environ.get("BUDGET_CORS_ORIGINS", "")
        if origins:
            config.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]

        return config


__all__ = ["GatewayConfig"]
