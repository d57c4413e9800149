"""Rate limiting for the budget gateway.

Token buckets keyed by client IP, one set per policy. Each policy covers the
paths it names; requests to other paths are not limited. The defaults guard
the credential-bearing endpoints:

- login: 5 attempts per 15 minutes
- associate creation (re-confirms the auditor password): 5 per 15 minutes
- registration: 3 per hour
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..errors import RateLimitedError


@dataclass(frozen=True)
class RateLimitPolicy:
    """``capacity`` requests per ``window_seconds`` on matching paths."""

    name: str
    path_pattern: str
    capacity: int
    window_seconds: float
    methods: tuple[str, ...] = ("POST",)

    def matches(self, method: str, path: str) -> bool:
        return method in self.methods and re.fullmatch(self.path_pattern, path) is not None

    @property
    def refill_rate(self) -> float:
        return self.capacity / self.window_seconds


DEFAULT_POLICIES: tuple[RateLimitPolicy, ...] = (
    RateLimitPolicy("auth", r"/auth/login-(auditor|associate)", 5, 15 * 60),
    RateLimitPolicy("associates", r"/institutions/[^/]+/associates", 5, 15 * 60),
    RateLimitPolicy("registration", r"/institutions/register", 3, 60 * 60),
)


@dataclass
class TokenBucket:
    """Token bucket for rate limiting."""

    capacity: float
    refill_rate: float  # tokens per second
    clock: Callable[[], float] = time.monotonic
    tokens: float = field(init=False)
    last_refill: float = field(init=False)

    def __post_init__(self):
        self.tokens = self.capacity
        self.last_refill = self.clock()

    def consume(self, tokens: float = 1.0) -> bool:
        """Try to consume tokens. Returns True if allowed."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    @property
    def time_until_available(self) -> float:
        """Seconds until at least 1 token is available."""
        if self.tokens >= 1:
            return 0.0
        return (1 - self.tokens) / self.refill_rate


class RateLimiter:
    """Per-policy, per-client token buckets."""

    def __init__(
        self,
        policies: tuple[RateLimitPolicy, ...] = DEFAULT_POLICIES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = policies
        self._clock = clock
        self._buckets: dict[tuple[str, str], TokenBucket] = {}

    def policy_for(self, method: str, path: str) -> RateLimitPolicy | None:
        for policy in self.policies:
            if policy.matches(method, path):
                return policy
        return None

    def _get_bucket(self, policy: RateLimitPolicy, client: str) -> TokenBucket:
        key = (policy.name, client)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                capacity=float(policy.capacity),
                refill_rate=policy.refill_rate,
                clock=self._clock,
            )
            self._buckets[key] = bucket
        return bucket

    def check(self, policy: RateLimitPolicy, client: str) -> tuple[bool, float]:
        """Returns (allowed, retry_after_seconds)."""
        bucket = self._get_bucket(policy, client)
        if bucket.consume():
            return True, 0.0
        return False, bucket.time_until_available

    def remaining(self, policy: RateLimitPolicy, client: str) -> int:
        return int(self._get_bucket(policy, client).tokens)


def _get_client_key(request: Request) -> str:
    """Client IP, honoring X-Forwarded-For from a fronting proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "anonymous"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits."""

    def __init__(self, app, limiter: RateLimiter | None = None):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        policy = self.limiter.policy_for(request.method, request.url.path)
        if policy is None:
            return await call_next(request)

        client_key = _get_client_key(request)
        allowed, retry_after = self.limiter.check(policy, client_key)
        headers = {
            "X-RateLimit-Limit": str(policy.capacity),
            "X-RateLimit-Remaining": str(self.limiter.remaining(policy, client_key)),
        }

        if not allowed:
            error = RateLimitedError(
                f"Too many {policy.name} attempts, please try again later"
            )
            return Response(
                content=json.dumps(error.to_dict()),
                status_code=error.status_code,
                media_type="application/json",
                headers={"Retry-After": str(int(retry_after) + 1), **headers},
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response


__all__ = [
    "DEFAULT_POLICIES",
    "RateLimitMiddleware",
    "RateLimitPolicy",
    "RateLimiter",
    "TokenBucket",
]
