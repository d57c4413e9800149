"""Structured logging configuration for the budget gateway.

structlog renders both structlog and stdlib records: JSON when not attached
to a terminal (or when ``BUDGET_LOG_JSON=1``), coloured console output
otherwise. Request-scoped fields bound with ``bind_context`` (correlation id,
caller, institution) are merged into every entry.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

# Context keys that must never reach a log sink in clear text
SENSITIVE_KEYS = frozenset(
    {"password", "auditor_password", "password_hash", "credential_secret", "token"}
)

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _mask_secrets(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _shared_processors(service_name: str) -> list[Any]:
    def add_service(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service,
        _mask_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    level: str = "INFO",
    json_output: bool | None = None,
    service_name: str = "budget-gateway",
) -> None:
    """Install the structlog pipeline on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_output: Force JSON output; None picks it from the environment
        service_name: Value of the ``service`` field on every entry
    """
    if json_output is None:
        json_output = os.getenv("BUDGET_LOG_JSON") == "1" or not sys.stderr.isatty()

    processors = _shared_processors(service_name)
    if json_output:
        processors.append(structlog.processors.format_exc_info)
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Module loggers and uvicorn go through the same renderer
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind fields to every later log entry of the current request.

    Example:
        bind_context(subject_id="AUD1001", institution_id="10293847")
        logger.info("Reviewing transaction")  # carries both fields
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = [
    "SENSITIVE_KEYS",
    "bind_context",
    "clear_context",
    "configure_logging",
]
