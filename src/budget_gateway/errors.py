"""Error taxonomy for the budget gateway.

Every error raised by the workflow carries a stable ``ErrorKind`` tag so the
transport layer can map it without inspecting messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error tags surfaced to callers."""

    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    UNAUTHENTICATED = "Unauthenticated"
    INVALID_ARGUMENT = "InvalidArgument"
    UNPROCESSABLE = "Unprocessable"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    CONFLICT = "Conflict"
    TIMEOUT = "Timeout"
    INTERNAL = "Internal"
    RATE_LIMITED = "RateLimited"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.UNPROCESSABLE: 422,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INTERNAL: 500,
    ErrorKind.RATE_LIMITED: 429,
}


class GatewayError(Exception):
    """Base exception for all workflow errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    retryable: bool = False

    def __init__(self, message: str | None = None):
        self.message = message or self.kind.value
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict[str, str | bool]:
        return {"error": self.kind.value, "detail": self.message, "retryable": self.retryable}


# ---------------------------------------------------------------------------
# Validation / authorization / state conflicts (no side effects)
# ---------------------------------------------------------------------------


class NotFoundError(GatewayError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(GatewayError):
    kind = ErrorKind.FORBIDDEN


class UnauthenticatedError(GatewayError):
    kind = ErrorKind.UNAUTHENTICATED


class InvalidArgumentError(GatewayError):
    kind = ErrorKind.INVALID_ARGUMENT


class UnprocessableError(GatewayError):
    """Illegal state transition or roster ceiling reached."""

    kind = ErrorKind.UNPROCESSABLE


class InsufficientFundsError(GatewayError):
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient institution balance: requested {requested}, available {available}"
        )


class ConflictError(GatewayError):
    """Duplicate institution name or associate username."""

    kind = ErrorKind.CONFLICT


class RateLimitedError(GatewayError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True


# ---------------------------------------------------------------------------
# Remote ledger errors
# ---------------------------------------------------------------------------


class LedgerError(GatewayError):
    """Base class for remote ledger failures."""


class LedgerRejectedError(LedgerError):
    """The ledger refused the operation. Authoritative; do not retry as-is."""

    kind = ErrorKind.UNPROCESSABLE

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger rejected {operation}: {reason}")


class LedgerTimeoutError(LedgerError):
    """Finality was not observed in time. The operation may still land."""

    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Ledger {operation} did not reach finality within {timeout_seconds:.1f}s"
        )


class LedgerOutcomeUnknownError(LedgerTimeoutError):
    """A submit was sent but its answer was lost. It may still land."""

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.timeout_seconds = None
        LedgerError.__init__(self, f"Ledger {operation} outcome unknown: {cause}")


class LedgerUnavailableError(LedgerError):
    """The request never reached the ledger, or the circuit is open."""

    kind = ErrorKind.INTERNAL
    retryable = True

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        super().__init__(f"Ledger unavailable during {operation}: {cause}")


class LedgerNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(GatewayError):
    """Local snapshot could not be persisted.

    The in-memory state keeps the update and is marked dirty, so a later
    flush retries the write.
    """

    kind = ErrorKind.INTERNAL
    retryable = True


class ConstraintViolationError(GatewayError):
    """Persisted state violates store invariants."""

    kind = ErrorKind.INTERNAL

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(
            "Local store constraint violations: " + "; ".join(self.violations)
        )


__all__ = [
    "ConflictError",
    "ConstraintViolationError",
    "ErrorKind",
    "ForbiddenError",
    "GatewayError",
    "HTTP_STATUS",
    "InsufficientFundsError",
    "InvalidArgumentError",
    "LedgerError",
    "LedgerNotFoundError",
    "LedgerOutcomeUnknownError",
    "LedgerRejectedError",
    "LedgerTimeoutError",
    "LedgerUnavailableError",
    "NotFoundError",
    "RateLimitedError",
    "StorageError",
    "UnauthenticatedError",
    "UnprocessableError",
]
