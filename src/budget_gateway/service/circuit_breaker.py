"""Circuit breaker guarding the remote ledger.

While the ledger keeps timing out or refusing connections, calls fail fast
with ``CircuitBreakerOpen`` instead of each waiting out a full finality
timeout. After the cooldown one trial call is let through; its outcome
decides whether the breaker closes again or re-opens.

Rejections and not-found answers come from a healthy ledger and never count
as failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds and the exception classes that count as failures."""

    failure_threshold: int = 5
    success_threshold: int = 1  # Trial successes needed to close
    timeout_seconds: float = 30.0  # Cooldown before the first trial call

    trip_on: tuple[type[BaseException], ...] = (Exception,)
    ignore: tuple[type[BaseException], ...] = ()


class CircuitBreakerOpen(Exception):
    """The breaker refused the call without contacting the ledger."""

    def __init__(self, name: str, time_remaining: float):
        self.name = name
        self.time_remaining = time_remaining
        super().__init__(
            f"Circuit breaker '{name}' is open; retry in {time_remaining:.1f}s"
        )


@dataclass
class CircuitBreaker:
    """Consecutive-failure breaker with a single half-open trial call.

    Example:
        breaker = CircuitBreaker("ledger")
        balance = await breaker.call_async(lambda: backend.get_balance("7"))
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _trial_successes: int = field(default=0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _last_failure: str | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.config.timeout_seconds
        ):
            logger.info(f"Circuit breaker '{self.name}' cooled down; allowing a trial call")
            self._state = CircuitState.HALF_OPEN
            self._trial_successes = 0
        return self._state

    @property
    def time_until_retry(self) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (self.clock() - self._opened_at))

    async def call_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()`` unless the breaker is open.

        Raises:
            CircuitBreakerOpen: open, or half-open with a trial call already running
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.name, self.time_until_retry)
        trial = state == CircuitState.HALF_OPEN
        if trial:
            if self._trial_in_flight:
                raise CircuitBreakerOpen(self.name, 0.0)
            self._trial_in_flight = True

        try:
            result = await func()
        except self.config.ignore:
            self._record_success()
            raise
        except self.config.trip_on as e:
            self._record_failure(e)
            raise
        finally:
            if trial:
                self._trial_in_flight = False
        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.config.success_threshold:
                logger.info(f"Circuit breaker '{self.name}' closed; ledger recovered")
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        else:
            self._failure_count = 0

    def _record_failure(self, exc: BaseException) -> None:
        self._failure_count += 1
        self._last_failure = f"{type(exc).__name__}: {exc}"

        if self._state == CircuitState.HALF_OPEN:
            self._open("trial call failed")
        elif self._failure_count >= self.config.failure_threshold:
            self._open(f"{self._failure_count} consecutive failures")
        else:
            logger.warning(
                f"Circuit breaker '{self.name}' failure "
                f"{self._failure_count}/{self.config.failure_threshold}: {exc}"
            )

    def _open(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        logger.warning(f"Circuit breaker '{self.name}' opened ({reason}): {self._last_failure}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "time_until_retry": self.time_until_retry,
            "last_failure": self._last_failure,
        }


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitState",
]
