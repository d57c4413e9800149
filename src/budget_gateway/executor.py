"""Shared thread pool for blocking work.

Snapshot writes and password hashing are the two blocking operations of the
gateway; both are pushed here so request handling stays on the event loop.

Usage:
    from budget_gateway.executor import run_in_executor

    digest = await run_in_executor(hash_password, "secret")
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Module-level executor storage
_EXECUTOR_SLOT: dict[str, ThreadPoolExecutor | None] = {"executor": None}

DEFAULT_MAX_WORKERS = 4
DEFAULT_THREAD_PREFIX = "budget-blocking-"


def get_executor(
    max_workers: int = DEFAULT_MAX_WORKERS,
    thread_name_prefix: str = DEFAULT_THREAD_PREFIX,
) -> ThreadPoolExecutor:
    """Get or create the shared thread pool executor."""
    if _EXECUTOR_SLOT["executor"] is None:
        logger.info(f"Creating thread pool executor with {max_workers} workers")
        _EXECUTOR_SLOT["executor"] = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
    return _EXECUTOR_SLOT["executor"]


def shutdown_executor(wait: bool = True) -> None:
    """Shutdown the executor, optionally waiting for pending writes."""
    executor = _EXECUTOR_SLOT.get("executor")
    if executor:
        logger.info("Shutting down thread pool executor...")
        executor.shutdown(wait=wait)
        _EXECUTOR_SLOT["executor"] = None


async def run_in_executor(
    func: Callable[..., R],
    *args: Any,
    **kwargs: Any,
) -> R:
    """Run a blocking function in the shared pool and await its result."""
    loop = asyncio.get_running_loop()
    if kwargs or args:
        func = partial(func, *args, **kwargs)
    return await loop.run_in_executor(get_executor(), func)


__all__ = [
    "get_executor",
    "shutdown_executor",
    "run_in_executor",
]
