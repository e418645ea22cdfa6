from __future__ import annotations

from typing import Any


class IntakeError(Exception):
    """Base error for the intake portal core."""


class ConfigurationError(IntakeError):
    """Missing or insecure configuration."""


class PersistenceError(IntakeError):
    """Backing store failure."""


class ConflictError(IntakeError):
    """Uniqueness violation (duplicate slug, duplicate client email within a tenant)."""


class NotFound(IntakeError):
    """Entity lookup failed."""

    def __init__(self, entity: str, identifier: Any | None = None) -> None:
        self.entity = entity
        self.identifier = identifier
        suffix = f" {identifier}" if identifier is not None else ""
        super().__init__(f"{entity} not found{suffix}")


class AuthError(IntakeError):
    """Authentication or scope failure; surfaced uniformly as unauthorized."""


class AuthRequired(AuthError):
    """No portal cookie was presented."""


class InvalidSignature(AuthError):
    """Signed cookie failed HMAC verification."""


class SessionExpired(AuthError):
    """Portal auth session is unknown, revoked or past its TTL."""


class CrossTenantDenied(AuthError):
    """Auth session belongs to a different tenant than the request."""


class ScopeInvalid(AuthError):
    """Intake session does not match the auth session's tenant/client."""


class InvalidCredentials(AuthError):
    """Email/password pair rejected; never says which half was wrong."""


class InvalidToken(AuthError):
    """Magic link token is unknown."""


class TokenAlreadyUsed(AuthError):
    """Magic link token was already redeemed."""


class TokenExpired(AuthError):
    """Magic link token is past its TTL."""


class ValidationFailed(IntakeError):
    """Answers or inputs rejected; carries a field-keyed error map."""

    def __init__(self, field_errors: dict[str, str], message: str = "Validation failed") -> None:
        self.field_errors = dict(field_errors)
        super().__init__(message)


class SubmissionNotReady(ValidationFailed):
    """Final submission blocked by readiness rules."""

    def __init__(self, reasons: list[Any]) -> None:
        self.reasons = list(reasons)
        super().__init__(
            {reason.code: reason.message for reason in self.reasons},
            message="Intake is not ready for final submission",
        )


class InvalidTransition(IntakeError):
    """Lifecycle transition not permitted by the transition table."""

    def __init__(self, current: Any, target: Any) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition from {_state_name(current)} to {_state_name(target)}")


class IntakeLocked(IntakeError):
    """Intake answers can no longer be edited in the current lifecycle state."""


def _state_name(value: Any) -> str:
    return str(getattr(value, "value", value))
