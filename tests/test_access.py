from __future__ import annotations

import pytest

from peptide_directory.access import (
    LOCKOUT_SECONDS,
    MAX_FAILED_ATTEMPTS,
    AccessDenied,
    AdminAuthorizer,
    SiteAccessVerifier,
    client_ip,
    issue_access_token,
    verify_token,
)
from peptide_directory.catalog import DirectoryDatabase
from peptide_directory.domain.constants import ROLE_USER


class Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_client_ip_prefers_forwarded_for() -> None:
    assert client_ip({"x-forwarded-for": "203.0.113.7, 10.0.0.1"}) == "203.0.113.7"
    assert client_ip({"cf-connecting-ip": "198.51.100.2"}) == "198.51.100.2"
    assert client_ip({}) == "unknown"


def test_token_signature_and_age() -> None:
    token = issue_access_token("s3cret", now=1_700_000_000.0)
    timestamp, signature = token.split(":")
    assert timestamp == "1700000000000"
    assert len(signature) == 32
    assert verify_token(token, "s3cret")
    assert not verify_token(token, "other")
    assert not verify_token("garbage", "s3cret")
    assert verify_token(token, "s3cret", max_age=60, now=1_700_000_030.0)
    assert not verify_token(token, "s3cret", max_age=60, now=1_700_000_100.0)


def test_correct_password_returns_token() -> None:
    clock = Clock()
    verifier = SiteAccessVerifier("open sesame", "s3cret", clock=clock)
    token = verifier.verify("open sesame", "1.2.3.4")
    assert verify_token(token, "s3cret")


def test_password_validation() -> None:
    verifier = SiteAccessVerifier("open sesame", clock=Clock())
    with pytest.raises(AccessDenied) as missing:
        verifier.verify("", "1.2.3.4")
    assert (missing.value.status_code, str(missing.value)) == (400, "Password is required")
    with pytest.raises(AccessDenied) as too_long:
        verifier.verify("x" * 101, "1.2.3.4")
    assert (too_long.value.status_code, str(too_long.value)) == (400, "Invalid password")
    with pytest.raises(AccessDenied) as wrong:
        verifier.verify("nope", "1.2.3.4")
    assert (wrong.value.status_code, str(wrong.value)) == (401, "Invalid credentials")


def test_unconfigured_password_never_matches() -> None:
    verifier = SiteAccessVerifier(None, clock=Clock())
    with pytest.raises(AccessDenied) as excinfo:
        verifier.verify("anything", "1.2.3.4")
    assert excinfo.value.status_code == 401


def test_lockout_after_repeated_failures() -> None:
    clock = Clock()
    verifier = SiteAccessVerifier("open sesame", clock=clock)
    for _ in range(MAX_FAILED_ATTEMPTS):
        with pytest.raises(AccessDenied):
            verifier.verify("wrong", "9.9.9.9")
    assert verifier.is_locked_out("9.9.9.9")
    with pytest.raises(AccessDenied) as locked:
        verifier.verify("open sesame", "9.9.9.9")
    assert locked.value.status_code == 429
    # other clients are unaffected
    assert verifier.verify("open sesame", "8.8.8.8")

    clock.now += LOCKOUT_SECONDS + 1
    assert not verifier.is_locked_out("9.9.9.9")
    assert verifier.verify("open sesame", "9.9.9.9")


def test_success_clears_failures() -> None:
    verifier = SiteAccessVerifier("open sesame", clock=Clock())
    for _ in range(MAX_FAILED_ATTEMPTS - 1):
        with pytest.raises(AccessDenied):
            verifier.verify("wrong", "7.7.7.7")
    verifier.verify("open sesame", "7.7.7.7")
    with pytest.raises(AccessDenied) as wrong:
        verifier.verify("wrong", "7.7.7.7")
    assert wrong.value.status_code == 401
    assert not verifier.is_locked_out("7.7.7.7")


def test_admin_authorizer(db: DirectoryDatabase) -> None:
    db.grant_role("alice", "admin")
    db.grant_role("bob", ROLE_USER)
    admin_token = db.issue_token("alice")
    user_token = db.issue_token("bob")
    authorizer = AdminAuthorizer(db)

    assert authorizer.require_admin(f"Bearer {admin_token}") == "alice"
    with pytest.raises(AccessDenied) as forbidden:
        authorizer.require_admin(f"Bearer {user_token}")
    assert forbidden.value.status_code == 403
    for header in (None, "Basic abc", "Bearer not-a-token"):
        with pytest.raises(AccessDenied) as unauthorized:
            authorizer.require_admin(header)
        assert unauthorized.value.status_code == 401
