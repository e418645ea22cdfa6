from __future__ import annotations

import logging
from typing import Any

from intakeportal.core.errors import InvalidTransition, NotFound
from intakeportal.domain.lifecycle import can_transition
from intakeportal.domain.models import (
    Actor,
    IntakeSession,
    IntakeStatusRecord,
    LifecycleState,
    new_id,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail


logger = logging.getLogger(__name__)


class LifecycleService:
    """Applies lifecycle changes to persisted sessions.

    transition() honours the transition table; force_set_status() bypasses it
    for same-state refreshes and operator overrides. Both write a status
    history row and an audit entry, under different audit actions.
    """

    def __init__(self, store: IntakeStore, audit: AuditTrail) -> None:
        self._store = store
        self._audit = audit

    async def _load(self, session_id: str) -> IntakeSession:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        return session

    async def _record_status(self, session_id: str, status: LifecycleState, note: str) -> None:
        await self._store.status_history.create(
            IntakeStatusRecord(id=new_id("status"), session_id=session_id, status=status, note=note)
        )

    async def transition(
        self,
        session_id: str,
        target: LifecycleState,
        note: str,
        actor: Actor,
    ) -> IntakeSession:
        session = await self._load(session_id)
        current = session.status
        if not can_transition(current, target):
            logger.error(
                "intake_invalid_transition session_id=%s from=%s to=%s actor=%s",
                session_id,
                current.value,
                LifecycleState(target).value,
                actor.value,
            )
            raise InvalidTransition(current, target)

        changes: dict[str, Any] = {"status": target}
        now = utc_now()
        if target == LifecycleState.PARTIAL_SUBMITTED:
            changes["partial_submitted_at"] = now
        if target == LifecycleState.FINAL_SUBMITTED:
            changes["final_submitted_at"] = now

        # Guard on the status we validated against so concurrent transitions cannot interleave.
        updated = await self._store.sessions.update(session_id, changes, expect={"status": current})
        if updated is None:
            latest = await self._load(session_id)
            logger.error(
                "intake_transition_race session_id=%s expected=%s actual=%s to=%s",
                session_id,
                current.value,
                latest.status.value,
                LifecycleState(target).value,
            )
            raise InvalidTransition(latest.status, target)

        await self._record_status(session_id, target, note)
        await self._audit.record(
            session_id=session_id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=actor,
            action="STATE_TRANSITION",
            details={"from": current.value, "to": LifecycleState(target).value, "note": note},
            best_effort=False,
        )
        logger.info(
            "intake_transition session_id=%s from=%s to=%s actor=%s",
            session_id,
            current.value,
            LifecycleState(target).value,
            actor.value,
        )
        return updated

    async def force_set_status(
        self,
        session_id: str,
        target: LifecycleState,
        note: str,
        actor: Actor,
    ) -> IntakeSession:
        session = await self._load(session_id)
        previous = session.status
        changes: dict[str, Any] = {"status": target}
        # Forced refreshes keep the first submission timestamps.
        if target == LifecycleState.PARTIAL_SUBMITTED and session.partial_submitted_at is None:
            changes["partial_submitted_at"] = utc_now()
        if target == LifecycleState.FINAL_SUBMITTED and session.final_submitted_at is None:
            changes["final_submitted_at"] = utc_now()

        updated = await self._store.sessions.update(session_id, changes)
        if updated is None:
            raise NotFound("intake_session", session_id)

        await self._record_status(session_id, target, note)
        await self._audit.record(
            session_id=session_id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=actor,
            action="STATE_FORCE_SET",
            details={"from": previous.value, "to": LifecycleState(target).value, "note": note},
            best_effort=False,
        )
        logger.info(
            "intake_force_set session_id=%s from=%s to=%s actor=%s",
            session_id,
            previous.value,
            LifecycleState(target).value,
            actor.value,
        )
        return updated
