from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


OPAQUE_TOKEN_BYTES = 32


def _b64url(raw: bytes) -> str:
    # Unpadded base64url keeps signed values cookie and URL safe.
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class TokenCodec:
    """HMAC signing for portal cookies and keyed hashing for magic-link tokens.

    Two independent secrets: the magic secret only ever hashes raw tokens for
    storage lookups, the session secret only ever signs auth-session ids.
    """

    def __init__(self, *, magic_link_secret: str, session_secret: str) -> None:
        self._magic_key = magic_link_secret.encode("utf-8")
        self._session_key = session_secret.encode("utf-8")

    @staticmethod
    def issue_opaque_token(num_bytes: int = OPAQUE_TOKEN_BYTES) -> str:
        return secrets.token_urlsafe(num_bytes)

    def hash_for_storage(self, raw_token: str) -> str:
        # Keyed so a leaked table cannot be brute-forced without the server secret.
        return hmac.new(self._magic_key, raw_token.encode("utf-8"), hashlib.sha256).hexdigest()

    def _signature(self, value: str) -> str:
        return _b64url(hmac.new(self._session_key, value.encode("utf-8"), hashlib.sha256).digest())

    def sign_session_id(self, session_id: str) -> str:
        if not session_id or "." in session_id:
            raise ValueError("session ids must be non-empty and dot-free")
        return f"{session_id}.{self._signature(session_id)}"

    def verify(self, signed_value: str | None) -> str | None:
        # Malformed input and bad signatures both yield None; callers never see why.
        if not signed_value or not isinstance(signed_value, str):
            return None
        session_id, separator, signature = signed_value.rpartition(".")
        if not separator or not session_id or not signature:
            return None
        expected = self._signature(session_id)
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            return None
        return session_id
