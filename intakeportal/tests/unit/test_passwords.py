from __future__ import annotations

from intakeportal.services.auth.passwords import (
    create_password_salt,
    hash_password,
    validate_password_strength,
    verify_password,
)


def test_hash_and_verify() -> None:
    salt = create_password_salt()
    stored = hash_password("correct horse battery", salt)
    assert verify_password("correct horse battery", salt, stored)
    assert not verify_password("wrong horse battery", salt, stored)


def test_salts_differ_between_calls() -> None:
    first, second = create_password_salt(), create_password_salt()
    assert first != second
    assert hash_password("same", first) != hash_password("same", second)


def test_missing_credential_never_verifies() -> None:
    assert not verify_password("anything", None, None)
    assert not verify_password("anything", "salt", None)


def test_strength_check_uses_minimum_length() -> None:
    assert validate_password_strength("short", min_length=10) == "Password must be at least 10 characters"
    assert validate_password_strength("long-enough-pw", min_length=10) is None
