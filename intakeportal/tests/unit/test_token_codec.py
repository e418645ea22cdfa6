from __future__ import annotations

import pytest

from intakeportal.services.auth.tokens import TokenCodec


def _codec(session_secret: str = "session-secret") -> TokenCodec:
    return TokenCodec(magic_link_secret="magic-secret", session_secret=session_secret)


def test_signed_session_id_round_trips() -> None:
    codec = _codec()
    signed = codec.sign_session_id("pas_123")
    assert signed.startswith("pas_123.")
    assert codec.verify(signed) == "pas_123"


@pytest.mark.parametrize("value", [None, "", "pas_123", ".sig", "pas_123.", "pas_123.not-the-signature"])
def test_verify_rejects_malformed_or_forged_values(value: str | None) -> None:
    assert _codec().verify(value) is None


def test_signature_is_bound_to_the_session_secret() -> None:
    signed = _codec("one").sign_session_id("pas_123")
    assert _codec("two").verify(signed) is None


def test_tampered_session_id_fails_verification() -> None:
    codec = _codec()
    signature = codec.sign_session_id("pas_123").split(".", 1)[1]
    assert codec.verify(f"pas_999.{signature}") is None


def test_session_ids_with_dots_are_refused() -> None:
    with pytest.raises(ValueError):
        _codec().sign_session_id("pas.123")


def test_storage_hash_is_keyed_and_deterministic() -> None:
    codec = _codec()
    other = TokenCodec(magic_link_secret="different", session_secret="session-secret")
    assert codec.hash_for_storage("raw") == codec.hash_for_storage("raw")
    assert codec.hash_for_storage("raw") != other.hash_for_storage("raw")
    assert len(codec.hash_for_storage("raw")) == 64


def test_opaque_tokens_are_url_safe_and_unique() -> None:
    tokens = {TokenCodec.issue_opaque_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(token) >= 43 for token in tokens)
    assert all(set(token) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_") for token in tokens)
