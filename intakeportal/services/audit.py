from __future__ import annotations

import logging
from typing import Any

from intakeportal.core.errors import PersistenceError
from intakeportal.domain.models import Actor, AuditLog, new_id
from intakeportal.persistence.base import IntakeStore


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "cookie", "magic_link_url"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub credentials while preserving the shape operators read in the timeline.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


class AuditTrail:
    """Append-only audit writer and the reader behind the operator timeline."""

    def __init__(self, store: IntakeStore) -> None:
        self._store = store

    async def record(
        self,
        *,
        session_id: str,
        brokerage_id: str,
        client_id: str,
        actor: Actor,
        action: str,
        details: dict[str, Any] | None = None,
        best_effort: bool = True,
    ) -> AuditLog | None:
        entry = AuditLog(
            id=new_id("audit"),
            session_id=session_id,
            brokerage_id=brokerage_id,
            client_id=client_id,
            actor=actor,
            action=action,
            details=sanitize_metadata(details or {}),
        )
        try:
            return await self._store.audit_logs.create(entry)
        except PersistenceError as exc:
            level = logger.warning if best_effort else logger.error
            level(
                "audit_event_write_failed action=%s session_id=%s",
                action,
                session_id,
                exc_info=exc,
            )
            return None

    async def timeline(self, session_id: str) -> list[AuditLog]:
        # Oldest first; the timeline reads like a story of the intake.
        return await self._store.audit_logs.find(session_id=session_id, order_by="created_at")
