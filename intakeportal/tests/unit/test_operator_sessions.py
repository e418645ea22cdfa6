from __future__ import annotations

import time

import jwt
import pytest

from intakeportal.core.errors import InvalidCredentials
from intakeportal.services.auth.operator_sessions import OperatorAccess, OperatorRole, SignInThrottle
from intakeportal.tests.utils.factories import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    EDITOR_EMAIL,
    EDITOR_PASSWORD,
    SYSTEM_KEY,
    make_settings,
)


def test_roles_resolve_from_allowlists_case_insensitively() -> None:
    access = OperatorAccess(make_settings())
    assert access.resolve_role(ADMIN_EMAIL.upper()) == OperatorRole.ADMIN
    assert access.resolve_role(f" {EDITOR_EMAIL} ") == OperatorRole.EDITOR
    assert access.resolve_role("stranger@example.com") is None


def test_sign_in_issues_a_parseable_token() -> None:
    access = OperatorAccess(make_settings())
    issued = access.sign_in(EDITOR_EMAIL, EDITOR_PASSWORD)
    parsed = access.parse(issued.token)
    assert parsed is not None
    assert parsed.email == EDITOR_EMAIL
    assert parsed.role == OperatorRole.EDITOR


@pytest.mark.parametrize(
    ("email", "password"),
    [
        (ADMIN_EMAIL, EDITOR_PASSWORD),
        ("stranger@example.com", ADMIN_PASSWORD),
        (EDITOR_EMAIL, ""),
    ],
)
def test_sign_in_rejects_bad_credentials(email: str, password: str) -> None:
    with pytest.raises(InvalidCredentials):
        OperatorAccess(make_settings()).sign_in(email, password)


def test_sign_in_requires_a_configured_role_password() -> None:
    access = OperatorAccess(make_settings(operator_admin_password=None))
    with pytest.raises(InvalidCredentials):
        access.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)


def test_expired_and_tampered_tokens_are_rejected() -> None:
    access = OperatorAccess(make_settings())
    issued = access.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert access.parse(issued.token, now=issued.session.exp + 1) is None
    header, claims, signature = issued.token.split(".")
    assert access.parse(f"{header}.{claims}x.{signature}") is None
    assert access.parse("not-a-token") is None
    assert access.parse(None) is None


def test_tokens_past_their_expiry_claim_are_rejected() -> None:
    settings = make_settings()
    expired = jwt.encode(
        {"email": ADMIN_EMAIL, "role": "ADMIN", "exp": int(time.time()) - 60},
        settings.resolved_operator_secret(),
        algorithm="HS256",
    )
    assert OperatorAccess(settings).parse(expired) is None


def test_tokens_missing_claims_or_using_other_algorithms_are_rejected() -> None:
    settings = make_settings()
    access = OperatorAccess(settings)
    secret = settings.resolved_operator_secret()
    exp = int(time.time()) + 60
    no_role = jwt.encode({"email": ADMIN_EMAIL, "exp": exp}, secret, algorithm="HS256")
    wrong_alg = jwt.encode({"email": ADMIN_EMAIL, "role": "ADMIN", "exp": exp}, secret, algorithm="HS512")
    assert access.parse(no_role) is None
    assert access.parse(wrong_alg) is None


def test_tokens_from_another_secret_are_rejected() -> None:
    issued = OperatorAccess(make_settings()).sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    other = OperatorAccess(make_settings(operator_session_secret="rotated-operator-secret-0123456789abcdef"))
    assert other.parse(issued.token) is None


def test_system_role_tokens_never_parse() -> None:
    access = OperatorAccess(make_settings())
    issued = access.issue("pipeline@example.com", OperatorRole.SYSTEM)
    assert access.parse(issued.token) is None


def test_system_keys() -> None:
    access = OperatorAccess(make_settings())
    assert access.verify_system_key(SYSTEM_KEY)
    assert not access.verify_system_key("nope")
    assert not access.verify_system_key(None)


def test_throttle_blocks_after_max_attempts_and_resets() -> None:
    throttle = SignInThrottle(max_attempts=3, window_seconds=60)
    assert [throttle.consume("ip:a", now=0) for _ in range(3)] == [None, None, None]
    assert throttle.consume("ip:a", now=10) == 50
    assert throttle.consume("ip:b", now=10) is None
    assert throttle.consume("ip:a", now=61) is None


def test_throttle_clear_forgets_attempts() -> None:
    throttle = SignInThrottle(max_attempts=1, window_seconds=60)
    throttle.consume("ip:a", now=0)
    assert throttle.consume("ip:a", now=1) is not None
    throttle.clear("ip:a")
    assert throttle.consume("ip:a", now=2) is None


def test_throttle_evicts_expired_windows_when_full() -> None:
    throttle = SignInThrottle(max_attempts=2, window_seconds=60, max_tracked_keys=3)
    for index in range(3):
        throttle.consume(f"ip:{index}", now=0)
    assert len(throttle) == 3
    assert throttle.consume("ip:new", now=61) is None
    assert len(throttle) == 1


def test_throttle_drops_oldest_active_windows_beyond_the_cap() -> None:
    throttle = SignInThrottle(max_attempts=1, window_seconds=60, max_tracked_keys=2)
    throttle.consume("ip:old", now=0)
    throttle.consume("ip:mid", now=1)
    throttle.consume("ip:new", now=2)
    assert len(throttle) == 2
    assert throttle.consume("ip:mid", now=3) is not None
    # The oldest window was dropped, so that key starts a fresh window.
    assert throttle.consume("ip:old", now=3) is None


def test_throttle_memory_stays_bounded_under_key_rotation() -> None:
    throttle = SignInThrottle(max_tracked_keys=50)
    for index in range(1_000):
        throttle.consume(f"203.0.113.{index % 250}:user{index}@example.com", now=float(index))
    assert len(throttle) <= 50
