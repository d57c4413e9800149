"""Request middleware for the budget gateway.

Provides:
- Correlation ID propagation for distributed tracing
- Request logging with context
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import bind_context, clear_context

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Propagate or generate correlation IDs and bind them to the log context.

    - If the incoming request has X-Correlation-ID, use it
    - Otherwise, generate a new UUID
    - Echo both ids on the response
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        request_id = str(uuid.uuid4())[:8]

        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        bind_context(
            correlation_id=correlation_id,
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            response.headers[REQUEST_ID_HEADER] = request_id
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({elapsed_ms:.1f}ms)"
            )
            return response
        finally:
            clear_context()


def get_correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


__all__ = [
    "CORRELATION_ID_HEADER",
    "CorrelationIdMiddleware",
    "REQUEST_ID_HEADER",
    "get_correlation_id",
]
