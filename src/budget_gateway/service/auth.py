"""Authentication collaborator: password hashing and signed bearer tokens.

Produces the verified ``Principal`` (subject, role, institution) that the
access policy works from. Tokens are HMAC-SHA256 signed, base64url encoded
JSON claims with an expiry; they carry no secrets.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..errors import UnauthenticatedError
from ..workflow.access import Principal, Role, authorize
from .logging import bind_context

HASH_SCHEME = "pbkdf2_sha256"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class Authenticator:
    """Hashes passwords, issues tokens and verifies them.

    Example:
        auth = Authenticator("signing-key")
        secret = auth.hash_password("hunter22")
        assert auth.verify_password("hunter22", secret)

        token = auth.issue_token("AUD1234", Role.AUDITOR, "10293847")
        principal = auth.verify_token(token)
    """

    def __init__(
        self,
        signing_key: str,
        *,
        token_ttl_seconds: int = 24 * 60 * 60,
        iterations: int = 210_000,
        clock: Callable[[], float] | None = None,
    ):
        if not signing_key:
            raise ValueError("signing_key is required")
        self._key = signing_key.encode("utf-8")
        self._ttl = token_ttl_seconds
        self._iterations = iterations
        self._clock = clock or time.time

    # -----------------------------------------------------------------------
    # Passwords
    # -----------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("ascii"), self._iterations
        )
        return f"{HASH_SCHEME}${self._iterations}${salt}${digest.hex()}"

    def verify_password(self, password: str, secret: str) -> bool:
        try:
            scheme, iterations, salt, expected = secret.split("$")
            rounds = int(iterations)
        except ValueError:
            return False
        if scheme != HASH_SCHEME:
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("ascii"), rounds
        )
        return hmac.compare_digest(digest.hex(), expected)

    # -----------------------------------------------------------------------
    # Tokens
    # -----------------------------------------------------------------------

    def _sign(self, body: str) -> str:
        mac = hmac.new(self._key, body.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(mac)

    def issue_token(self, subject_id: str, role: Role, institution_id: str) -> str:
        now = int(self._clock())
        claims = {
            "sub": subject_id,
            "role": role.value,
            "inst": institution_id,
            "iat": now,
            "exp": now + self._ttl,
        }
        body = _b64encode(
            json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8")
        )
        return f"{body}.{self._sign(body)}"

    def verify_token(self, token: str) -> Principal:
        """Validate signature and expiry.

        Raises:
            UnauthenticatedError: malformed, tampered or expired token
        """
        try:
            body, signature = token.split(".")
        except ValueError as e:
            raise UnauthenticatedError("Malformed token") from e

        if not hmac.compare_digest(signature, self._sign(body)):
            raise UnauthenticatedError("Invalid token")

        try:
            claims = json.loads(_b64decode(body))
            principal = Principal(
                subject_id=str(claims["sub"]),
                role=Role(claims["role"]),
                institution_id=str(claims["inst"]),
            )
            expires_at = int(claims["exp"])
        except (ValueError, KeyError, TypeError) as e:
            raise UnauthenticatedError("Malformed token") from e

        if self._clock() >= expires_at:
            raise UnauthenticatedError("Token expired")

        return principal


# Module-level authenticator storage (avoid global keyword for ruff)
_AUTHENTICATOR_SLOT: dict[str, Authenticator | None] = {"auth": None}

bearer_scheme = HTTPBearer(auto_error=False)


def set_authenticator(authenticator: Authenticator) -> None:
    """Set the authenticator used by request dependencies."""
    _AUTHENTICATOR_SLOT["auth"] = authenticator


def get_authenticator_dependency() -> Authenticator:
    """FastAPI dependency to get the authenticator."""
    auth = _AUTHENTICATOR_SLOT.get("auth")
    if auth is None:
        raise RuntimeError("Authenticator dependency not configured")
    return auth


async def current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    authenticator: Authenticator = Depends(get_authenticator_dependency),
) -> Principal | None:
    """Resolve the bearer token, if any, into a verified principal.

    A missing header yields None; the access policy turns that into
    ``Unauthenticated`` for operations that need a caller. A present but
    invalid token fails immediately.
    """
    if credentials is None or not credentials.credentials:
        return None
    principal = authenticator.verify_token(credentials.credentials)
    bind_context(
        subject_id=principal.subject_id,
        role=principal.role.value,
        institution_id=principal.institution_id,
    )
    return principal


def require_caller(role: Role | None = None):
    """Build a route dependency that applies the access policy up front.

    Route dependencies resolve before body validation errors are raised, so
    an anonymous caller gets ``Unauthenticated`` and a caller in the wrong
    role or institution gets ``Forbidden`` whatever the body holds. The
    institution comes from the ``institution_id`` path parameter, if any.
    """

    async def dependency(
        request: Request,
        principal: Principal | None = Depends(current_principal),
    ) -> Principal:
        return authorize(
            principal,
            role=role,
            institution_id=request.path_params.get("institution_id"),
        )

    return dependency


__all__ = [
    "Authenticator",
    "bearer_scheme",
    "current_principal",
    "get_authenticator_dependency",
    "require_caller",
    "set_authenticator",
]
