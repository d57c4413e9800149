"""FastAPI application factory for the budget gateway."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..errors import ErrorKind, GatewayError, InvalidArgumentError
from ..executor import get_executor, shutdown_executor
from ..ledger.backend import InMemoryLedger, LedgerBackend
from ..ledger.client import LedgerClient
from ..ledger.http import HttpLedgerBackend
from ..persistence.store import LocalStore
from .auth import Authenticator, set_authenticator
from .config import GatewayConfig
from .core import BudgetService
from .middleware import CorrelationIdMiddleware, get_correlation_id
from .rate_limit import RateLimiter, RateLimitMiddleware
from .router import build_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "budget-gateway"
VERSION = "0.1.0"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the snapshot on startup; flush it and release resources on shutdown."""
    logger.info("Starting budget gateway...")
    get_executor()

    service: BudgetService = app.state.budget_service
    if not service.store.loaded:
        service.store.load()
    app.state.ready = True

    yield

    logger.info("Shutting down budget gateway...")
    app.state.ready = False
    await service.close()
    shutdown_executor(wait=True)
    logger.info("Budget gateway shutdown complete")


def _error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.kind == ErrorKind.INTERNAL:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return _error_response(InvalidArgumentError(problems or "Invalid request"))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        error_id = uuid.uuid4().hex[:12]
        logger.exception(
            f"Unhandled error {error_id} on {request.method} {request.url.path} "
            f"(correlation {get_correlation_id(request)})"
        )
        return _error_response(GatewayError(f"Internal error (id {error_id})"))


def _default_backend(config: GatewayConfig) -> LedgerBackend:
    if config.ledger_url:
        return HttpLedgerBackend(
            config.ledger_url,
            token=config.ledger_token,
            timeout=config.ledger_timeout_seconds,
        )
    logger.warning("No ledger URL configured; using the in-process ledger")
    return InMemoryLedger()


def create_gateway_app(
    config: GatewayConfig,
    *,
    ledger_backend: LedgerBackend | None = None,
    store: LocalStore | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the budget gateway FastAPI application.

    Args:
        config: GatewayConfig instance
        ledger_backend: Remote ledger adapter (default from ``config.ledger_url``)
        store: Local store (default: ``config.data_path``)
        rate_limiter: Limiter for the password-bearing paths

    Returns:
        Configured application; the snapshot is loaded at startup
    """
    app = FastAPI(
        title="Budget Gateway",
        description="Institution spending workflow over a remote ledger",
        version=VERSION,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter or RateLimiter())
    app.add_middleware(CorrelationIdMiddleware)
    _install_exception_handlers(app)

    authenticator = Authenticator(
        config.signing_key,
        token_ttl_seconds=config.token_ttl_seconds,
        iterations=config.password_iterations,
    )
    set_authenticator(authenticator)

    ledger = LedgerClient(
        ledger_backend or _default_backend(config),
        timeout_seconds=config.ledger_timeout_seconds,
        query_attempts=config.ledger_query_retries,
        retry_base_delay=config.ledger_retry_base_delay,
    )
    store = store or LocalStore(
        config.data_path,
        max_associates=config.max_associates,
        allow_violations=config.allow_constraint_violations,
    )
    service = BudgetService(config, store=store, ledger=ledger, authenticator=authenticator)
    app.include_router(build_router(service))

    app.state.budget_service = service
    app.state.authenticator = authenticator
    app.state.config = config
    app.state.ready = False

    @app.get("/healthz")
    def healthz() -> dict:
        """Liveness plus store and ledger breaker state."""
        checks = service.status()
        degraded = checks["store"]["dirty"] or checks["ledger"]["state"] != "closed"
        return {
            "status": "degraded" if degraded else "ok",
            "service": SERVICE_NAME,
            "version": VERSION,
            "checks": checks,
        }

    @app.get("/ready")
    def ready() -> dict:
        """Readiness check - true once the snapshot is loaded."""
        return {"ready": bool(app.state.ready), "service": SERVICE_NAME}

    return app


def create_app_from_env() -> FastAPI:
    """Create app using environment variable configuration."""
    config = GatewayConfig.from_env()
    return create_gateway_app(config)


__all__ = ["create_app_from_env", "create_gateway_app"]
