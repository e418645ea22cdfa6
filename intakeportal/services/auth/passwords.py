from __future__ import annotations

import hashlib
import hmac
import secrets


# scrypt cost parameters; changing them invalidates every stored hash.
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_DKLEN = 64
_SCRYPT_MAXMEM = 64 * 1024 * 1024

# Verified against when the email is unknown so both paths cost one scrypt run.
_DUMMY_SALT = "0" * 32
_DUMMY_HASH = "0" * (SCRYPT_DKLEN * 2)


def create_password_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_DKLEN,
        maxmem=_SCRYPT_MAXMEM,
    )
    return digest.hex()


def verify_password(password: str, salt: str | None, stored_hash: str | None) -> bool:
    # Always derive a key so unknown accounts and wrong passwords take the same time.
    has_credential = bool(salt and stored_hash)
    computed = hash_password(password, salt if has_credential else _DUMMY_SALT)
    expected = stored_hash if has_credential else _DUMMY_HASH
    matches = hmac.compare_digest(computed.encode("ascii"), str(expected).encode("ascii"))
    return has_credential and matches


def validate_password_strength(password: str, *, min_length: int) -> str | None:
    if len(password) < min_length:
        return f"Password must be at least {min_length} characters"
    return None
