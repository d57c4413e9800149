"""Tests for the access policy and the authenticator."""

from __future__ import annotations

import pytest

from budget_gateway.errors import ForbiddenError, UnauthenticatedError
from budget_gateway.service.auth import Authenticator
from budget_gateway.workflow.access import Principal, Role, authorize

AUDITOR = Principal("AUD1001", Role.AUDITOR, "10000001")
ASSOCIATE = Principal("EMP1001", Role.ASSOCIATE, "10000001")


@pytest.mark.unit
class TestAuthorize:
    """Checks run in order: caller, role, institution."""

    def test_missing_caller_is_unauthenticated(self):
        with pytest.raises(UnauthenticatedError):
            authorize(None, role=Role.AUDITOR, institution_id="10000001")

    def test_wrong_role_is_forbidden(self):
        with pytest.raises(ForbiddenError):
            authorize(ASSOCIATE, role=Role.AUDITOR)

    def test_role_checked_before_institution(self):
        with pytest.raises(ForbiddenError, match="role"):
            authorize(ASSOCIATE, role=Role.AUDITOR, institution_id="99999999")

    def test_other_institution_is_forbidden(self):
        with pytest.raises(ForbiddenError, match="institution"):
            authorize(AUDITOR, role=Role.AUDITOR, institution_id="99999999")

    def test_any_role_of_the_institution(self):
        assert authorize(ASSOCIATE, institution_id="10000001") is ASSOCIATE
        assert authorize(AUDITOR, institution_id="10000001") is AUDITOR


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestAuthenticator:
    """Tests for password hashing and bearer tokens."""

    def test_password_roundtrip(self):
        auth = Authenticator("key", iterations=1_000)
        secret = auth.hash_password("hunter22")

        assert secret.startswith("pbkdf2_sha256$1000$")
        assert auth.verify_password("hunter22", secret)
        assert not auth.verify_password("hunter23", secret)

    def test_hashes_are_salted(self):
        auth = Authenticator("key", iterations=1_000)
        assert auth.hash_password("same") != auth.hash_password("same")

    def test_malformed_secret_never_verifies(self):
        auth = Authenticator("key", iterations=1_000)
        assert not auth.verify_password("x", "not-a-hash")
        assert not auth.verify_password("x", "bcrypt$1$salt$digest")

    def test_token_roundtrip(self):
        auth = Authenticator("key")
        token = auth.issue_token("AUD1001", Role.AUDITOR, "10000001")
        assert auth.verify_token(token) == AUDITOR

    def test_tampered_token_rejected(self):
        auth = Authenticator("key")
        token = auth.issue_token("EMP1001", Role.ASSOCIATE, "10000001")
        forged = Authenticator("other-key").issue_token("EMP1001", Role.AUDITOR, "10000001")
        body, _ = forged.split(".")
        _, signature = token.split(".")

        with pytest.raises(UnauthenticatedError):
            auth.verify_token(f"{body}.{signature}")

    @pytest.mark.parametrize("token", ["", "abc", "a.b.c"])
    def test_malformed_token_rejected(self, token):
        with pytest.raises(UnauthenticatedError):
            Authenticator("key").verify_token(token)

    def test_expired_token_rejected(self):
        clock = FakeClock()
        auth = Authenticator("key", token_ttl_seconds=60, clock=clock)
        token = auth.issue_token("AUD1001", Role.AUDITOR, "10000001")

        clock.now += 61
        with pytest.raises(UnauthenticatedError, match="expired"):
            auth.verify_token(token)

    def test_signing_key_required(self):
        with pytest.raises(ValueError):
            Authenticator("")
