"""Retry utilities with exponential backoff.

Used for read-only ledger queries only. Submits are never retried here: a
submit that timed out may still land, so the caller decides what to do.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd

    # Exceptions to retry on
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    # Exceptions to NOT retry on (checked first)
    no_retry_on: tuple[type[BaseException], ...] = (ValueError, TypeError, KeyError)


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate backoff delay for a given attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential growth
        jitter: Whether to add up to 25% random jitter

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base**attempt)
    delay = min(delay, max_delay)

    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    config: RetryConfig,
    name: str,
) -> T:
    """Await ``func()`` until it succeeds or attempts run out.

    Example:
        balance = await call_with_retry(
            lambda: backend.get_balance("7"),
            config=RetryConfig(max_attempts=3),
            name="get_balance",
        )
    """
    attempts = max(1, config.max_attempts)
    last_exception: BaseException | None = None

    for attempt in range(attempts):
        try:
            return await func()
        except config.no_retry_on:
            raise
        except config.retry_on as e:
            last_exception = e

            if attempt < attempts - 1:
                delay = calculate_backoff(
                    attempt,
                    config.base_delay,
                    config.max_delay,
                    config.exponential_base,
                    config.jitter,
                )
                logger.warning(
                    f"Retry {attempt + 1}/{attempts} for {name} "
                    f"after {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

    logger.error(f"All {attempts} attempts failed for {name}")
    raise last_exception  # type: ignore[misc]


__all__ = [
    "RetryConfig",
    "calculate_backoff",
    "call_with_retry",
]
