from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import hmac
import logging
import time

import jwt

from intakeportal.core.config import Settings
from intakeportal.core.errors import InvalidCredentials


logger = logging.getLogger(__name__)

_TOKEN_ALGORITHM = "HS256"


class OperatorRole(str, Enum):
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    SYSTEM = "SYSTEM"


# Roles that can hold a browser session; SYSTEM callers use API keys only.
_SESSION_ROLES = {OperatorRole.ADMIN.value, OperatorRole.EDITOR.value}


@dataclass(frozen=True)
class OperatorSession:
    email: str
    role: OperatorRole
    exp: int


@dataclass(frozen=True)
class IssuedOperatorSession:
    token: str
    session: OperatorSession
    expires_at: datetime


def safe_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


class OperatorAccess:
    """Email allowlists, role passwords and signed expiring operator tokens."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._key = settings.resolved_operator_secret()

    def resolve_role(self, email: str) -> OperatorRole | None:
        normalized = email.strip().lower()
        if normalized in self._settings.admin_emails():
            return OperatorRole.ADMIN
        if normalized in self._settings.editor_emails():
            return OperatorRole.EDITOR
        return None

    def _role_password(self, role: OperatorRole) -> str | None:
        if role == OperatorRole.ADMIN:
            return self._settings.operator_admin_password
        if role == OperatorRole.EDITOR:
            return self._settings.operator_editor_password
        return None

    def sign_in(self, email: str, password: str) -> IssuedOperatorSession:
        role = self.resolve_role(email)
        expected = self._role_password(role) if role is not None else None
        # Compare against a throwaway value when unknown so timing does not reveal the allowlist.
        matches = safe_equals(password, expected or "\x00unconfigured")
        if role is None or expected is None or not matches:
            logger.warning("operator_sign_in_denied email_known=%s", role is not None)
            raise InvalidCredentials("operator credentials rejected")
        return self.issue(email, role)

    def issue(self, email: str, role: OperatorRole) -> IssuedOperatorSession:
        ttl_seconds = int(self._settings.operator_session_ttl_hours * 3600)
        exp = int(time.time()) + ttl_seconds
        session = OperatorSession(email=email.strip().lower(), role=role, exp=exp)
        token = jwt.encode(
            {"email": session.email, "role": role.value, "exp": exp},
            self._key,
            algorithm=_TOKEN_ALGORITHM,
        )
        return IssuedOperatorSession(
            token=token,
            session=session,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def parse(self, token: str | None, *, now: float | None = None) -> OperatorSession | None:
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[_TOKEN_ALGORITHM],
                options={"require": ["exp", "email", "role"]},
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("operator_token_rejected reason=%s", type(exc).__name__)
            return None
        email = claims["email"]
        role = claims["role"]
        exp = claims["exp"]
        if not isinstance(email, str) or not isinstance(role, str) or not isinstance(exp, int):
            return None
        if role not in _SESSION_ROLES:
            return None
        if now is not None and exp <= now:
            return None
        return OperatorSession(email=email, role=OperatorRole(role), exp=exp)

    def verify_system_key(self, presented: str | None) -> bool:
        if not presented:
            return False
        # Check every configured key so the position of a match is not observable.
        results = [safe_equals(presented, key) for key in self._settings.system_keys()]
        return any(results)

    def session_expiry(self) -> timedelta:
        return timedelta(hours=self._settings.operator_session_ttl_hours)


@dataclass
class _AttemptWindow:
    count: int
    reset_at: float


class SignInThrottle:
    """Per (client address, email) attempt counter over a fixed window.

    At most max_tracked_keys windows are held; expired windows are evicted
    first, then the oldest ones.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 8,
        window_seconds: float = 600.0,
        max_tracked_keys: int = 10_000,
    ) -> None:
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._max_tracked_keys = max_tracked_keys
        self._attempts: dict[str, _AttemptWindow] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    def _evict(self, current_time: float) -> None:
        expired = [key for key, window in self._attempts.items() if window.reset_at <= current_time]
        for key in expired:
            del self._attempts[key]
        overflow = len(self._attempts) - self._max_tracked_keys + 1
        if overflow > 0:
            # Dicts keep insertion order, so the first keys hold the oldest windows.
            for key in list(self._attempts)[:overflow]:
                del self._attempts[key]
            logger.warning("sign_in_throttle_evicted_active_windows count=%s", overflow)

    def consume(self, key: str, *, now: float | None = None) -> int | None:
        # Return None when allowed, otherwise the seconds until the window resets.
        current_time = time.monotonic() if now is None else now
        window = self._attempts.get(key)
        if window is None or window.reset_at <= current_time:
            self._attempts.pop(key, None)
            if len(self._attempts) >= self._max_tracked_keys:
                self._evict(current_time)
            self._attempts[key] = _AttemptWindow(count=1, reset_at=current_time + self._window_seconds)
            return None
        if window.count >= self._max_attempts:
            return max(1, int(window.reset_at - current_time + 0.999))
        window.count += 1
        return None

    def clear(self, key: str) -> None:
        self._attempts.pop(key, None)
