from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging

from intakeportal.core.errors import InvalidTransition, NotFound
from intakeportal.domain.models import (
    Actor,
    AuditLog,
    Brokerage,
    ClientIdentity,
    IntakeSession,
    Job,
    LifecycleState,
    Report,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail
from intakeportal.services.intake import IntakeSessionService
from intakeportal.services.lifecycle import LifecycleService
from intakeportal.services.onboarding import InviteResult, OnboardingService


logger = logging.getLogger(__name__)


class Decision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


@dataclass(frozen=True)
class MissionControlRow:
    session: IntakeSession
    brokerage: Brokerage
    client: ClientIdentity
    steps_completed: int
    report: Report | None
    jobs: list[Job]


class OperatorService:
    """Mission control reads and operator-driven lifecycle actions."""

    def __init__(
        self,
        *,
        store: IntakeStore,
        audit: AuditTrail,
        lifecycle: LifecycleService,
        intake: IntakeSessionService,
        onboarding: OnboardingService,
    ) -> None:
        self._store = store
        self._audit = audit
        self._lifecycle = lifecycle
        self._intake = intake
        self._onboarding = onboarding

    async def _load(self, session_id: str) -> IntakeSession:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        return session

    async def list_intakes(self, *, include_archived: bool = False) -> list[MissionControlRow]:
        rows: list[MissionControlRow] = []
        brokerages: dict[str, Brokerage | None] = {}
        for session in await self._store.sessions.find(order_by="created_at", descending=True):
            client = await self._store.clients.get(session.client_id)
            if client is None:
                logger.warning("mission_control_orphan_session session_id=%s", session.id)
                continue
            if client.is_archived and not include_archived:
                continue
            if session.brokerage_id not in brokerages:
                brokerages[session.brokerage_id] = await self._store.brokerages.get(session.brokerage_id)
            brokerage = brokerages[session.brokerage_id]
            if brokerage is None:
                continue
            steps_completed = await self._store.steps.count(session_id=session.id, is_complete=True)
            rows.append(
                MissionControlRow(
                    session=session,
                    brokerage=brokerage,
                    client=client,
                    steps_completed=steps_completed,
                    report=await self._store.reports.find_one(session_id=session.id),
                    jobs=await self._store.jobs.find(session_id=session.id, order_by="created_at"),
                )
            )
        return rows

    async def get_timeline(self, session_id: str) -> list[AuditLog]:
        await self._load(session_id)
        return await self._audit.timeline(session_id)

    async def get_report(self, session_id: str) -> Report | None:
        await self._load(session_id)
        return await self._store.reports.find_one(session_id=session_id)

    async def resend_invite(self, session_id: str) -> InviteResult:
        return await self._onboarding.send_invite_for_session(session_id)

    async def request_missing_items(
        self,
        *,
        session_id: str,
        missing_items: list[str],
        requested_by: str,
    ) -> IntakeSession:
        return await self._intake.request_missing_items(
            session_id=session_id,
            missing_items=missing_items,
            requested_by=requested_by,
        )

    async def process_approval(
        self,
        *,
        session_id: str,
        decision: Decision,
        operator_name: str,
        note: str | None = None,
    ) -> IntakeSession:
        session = await self._load(session_id)
        if session.status != LifecycleState.REPORT_READY:
            target = LifecycleState.APPROVED if decision == Decision.APPROVE else LifecycleState.IN_PROGRESS
            logger.error(
                "report_decision_rejected session_id=%s status=%s decision=%s",
                session_id,
                session.status.value,
                decision.value,
            )
            raise InvalidTransition(session.status, target)

        if decision == Decision.APPROVE:
            updated = await self._lifecycle.transition(
                session_id, LifecycleState.APPROVED, f"Approved by operator {operator_name}", Actor.OPERATOR
            )
            report = await self._store.reports.find_one(session_id=session_id)
            if report is not None:
                await self._store.reports.update(report.id, {"approved_at": utc_now()})
        else:
            updated = await self._lifecycle.transition(
                session_id,
                LifecycleState.IN_PROGRESS,
                f"Rejected by operator {operator_name}: {note or 'Needs revisions'}",
                Actor.OPERATOR,
            )

        await self._audit.record(
            session_id=session_id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=Actor.OPERATOR,
            action="REPORT_DECISION",
            details={"decision": decision.value, "operator_name": operator_name, "note": note},
        )
        return updated

    async def set_client_archived(self, session_id: str, archived: bool, *, operator_email: str) -> ClientIdentity:
        # Archiving hides the client from mission control; its portal session keeps working.
        session = await self._load(session_id)
        updated = await self._store.clients.update(
            session.client_id,
            {"is_archived": archived, "archived_at": utc_now() if archived else None},
        )
        if updated is None:
            raise NotFound("client_identity", session.client_id)
        await self._audit.record(
            session_id=session.id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=Actor.OPERATOR,
            action="CLIENT_ARCHIVED" if archived else "CLIENT_UNARCHIVED",
            details={"operator_email": operator_email},
        )
        return updated
