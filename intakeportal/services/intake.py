from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Mapping

from intakeportal.core.errors import IntakeLocked, NotFound, SubmissionNotReady, ValidationFailed
from intakeportal.domain.lifecycle import is_locked
from intakeportal.domain.models import (
    Actor,
    AssetCategory,
    Brokerage,
    ClientIdentity,
    IntakeAsset,
    IntakeSession,
    IntakeStatusRecord,
    IntakeStep,
    LifecycleState,
    new_id,
    utc_now,
)
from intakeportal.domain.readiness import BlockingReason, ReadinessPolicy, final_submit_readiness
from intakeportal.domain.schema import FieldError, SchemaEngine, StepDefinition, parse_answers
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail
from intakeportal.services.auth.portal_auth import PortalAuthService, PortalScope
from intakeportal.services.file_routing import SessionFileRouting
from intakeportal.services.lifecycle import LifecycleService


logger = logging.getLogger(__name__)


def clamp_step(value: int, total_steps: int) -> int:
    # Keep 1 <= current_step <= total_steps whatever the client sends.
    return max(1, min(int(value), max(total_steps, 1)))


def completion_percentage(steps: list[IntakeStep]) -> int:
    if not steps:
        return 0
    completed = sum(1 for step in steps if step.is_complete)
    return round(completed * 100 / len(steps))


def merge_answers(steps: list[IntakeStep]) -> dict[str, Any]:
    # Flatten every step's answers in step order; later steps win on name clashes.
    merged: dict[str, Any] = {}
    for step in sorted(steps, key=lambda item: item.step_order):
        merged.update(step.data)
    return merged


@dataclass(frozen=True)
class SaveStepResult:
    ok: bool
    errors: list[FieldError] = field(default_factory=list)
    step: IntakeStep | None = None
    session: IntakeSession | None = None


@dataclass(frozen=True)
class IntakeSessionView:
    session: IntakeSession
    steps: list[IntakeStep]
    assets: list[IntakeAsset]
    definitions: list[StepDefinition]
    brokerage: Brokerage
    client: ClientIdentity


class IntakeSessionService:
    """Client-facing intake operations.

    Every portal call resolves the authenticated scope first, then validates
    against the schema, then mutates step or asset rows, then drives the
    lifecycle, and finally audits.
    """

    def __init__(
        self,
        *,
        store: IntakeStore,
        schema: SchemaEngine,
        auth: PortalAuthService,
        lifecycle: LifecycleService,
        audit: AuditTrail,
        routing: SessionFileRouting,
        readiness_policy: ReadinessPolicy | None = None,
        enforce_readiness: bool = True,
    ) -> None:
        self._store = store
        self._schema = schema
        self._auth = auth
        self._lifecycle = lifecycle
        self._audit = audit
        self._routing = routing
        self._readiness_policy = readiness_policy or ReadinessPolicy()
        self._enforce_readiness = enforce_readiness

    @property
    def schema(self) -> SchemaEngine:
        return self._schema

    async def create_session_rows(self, *, client_id: str, brokerage_id: str) -> IntakeSession:
        # A new session gets one step row per definition and an initial INVITED history row.
        session = await self._store.sessions.create(
            IntakeSession(
                id=new_id("session"),
                client_id=client_id,
                brokerage_id=brokerage_id,
                total_steps=self._schema.total_steps,
            )
        )
        for order, definition in enumerate(self._schema.steps, start=1):
            await self._store.steps.create(
                IntakeStep(
                    id=new_id("step"),
                    session_id=session.id,
                    step_key=definition.key,
                    title=definition.title,
                    step_order=order,
                )
            )
        await self._store.status_history.create(
            IntakeStatusRecord(
                id=new_id("status"),
                session_id=session.id,
                status=LifecycleState.INVITED,
                note="Session created",
            )
        )
        return session

    async def _load_session(self, session_id: str) -> IntakeSession:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        return session

    async def _steps(self, session_id: str) -> list[IntakeStep]:
        return await self._store.steps.find(session_id=session_id, order_by="step_order")

    async def _touch_client(self, client_id: str) -> None:
        await self._store.clients.update(client_id, {"last_activity_at": utc_now()})

    async def _begin_if_invited(self, session: IntakeSession) -> IntakeSession:
        if session.status == LifecycleState.INVITED:
            return await self._lifecycle.transition(
                session.id, LifecycleState.IN_PROGRESS, "Client began intake", Actor.CLIENT
            )
        return session

    def _ensure_editable(self, session: IntakeSession) -> None:
        if is_locked(session.status):
            logger.warning(
                "intake_edit_rejected session_id=%s status=%s",
                session.id,
                session.status.value,
            )
            raise IntakeLocked(f"Intake is locked in state {session.status.value}")

    def validate_step(self, step_key: str, answers: Mapping[str, Any]) -> list[FieldError]:
        return self._schema.validate_step(step_key, answers)

    async def set_current_step(self, session_id: str, current_step: int) -> IntakeSession:
        session = await self._load_session(session_id)
        updated = await self._store.sessions.update(
            session.id, {"current_step": clamp_step(current_step, session.total_steps)}
        )
        if updated is None:
            raise NotFound("intake_session", session_id)
        return updated

    async def get_session_view(self, brokerage_slug: str, signed_cookie_value: str | None) -> IntakeSessionView:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        session = await self._load_session(scope.session_id)
        client = await self._store.clients.get(scope.client_id)
        if client is None:
            raise NotFound("client_identity", scope.client_id)
        brokerage = await self._store.brokerages.get(scope.brokerage_id)
        if brokerage is None:
            raise NotFound("brokerage", scope.brokerage_id)
        return IntakeSessionView(
            session=session,
            steps=await self._steps(session.id),
            assets=await self._store.assets.find(session_id=session.id, order_by="uploaded_at"),
            definitions=self._schema.steps,
            brokerage=brokerage,
            client=client,
        )

    async def save_intake_step(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
        step_key: str,
        data: Mapping[str, Any] | None,
        current_step: int,
        mark_complete: bool,
    ) -> SaveStepResult:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        answers = parse_answers(data)
        self._schema.get_step(step_key)
        session = await self._load_session(scope.session_id)
        self._ensure_editable(session)

        step = await self._store.steps.find_one(session_id=session.id, step_key=step_key)
        if step is None:
            raise NotFound("intake_step", step_key)

        if mark_complete:
            # Validate what the step will hold after the merge; a failed completion persists nothing.
            errors = self._schema.validate_step(step_key, {**step.data, **answers})
            if errors:
                logger.info(
                    "intake_step_rejected session_id=%s step_key=%s errors=%s",
                    session.id,
                    step_key,
                    len(errors),
                )
                return SaveStepResult(ok=False, errors=errors, step=step, session=session)

        merged_step = await self._store.merge_step_data(step.id, answers, mark_complete)
        steps = await self._steps(session.id)
        updated = await self._store.sessions.update(
            session.id,
            {
                "current_step": clamp_step(current_step, session.total_steps),
                "completion_pct": completion_percentage(steps),
            },
        )
        if updated is None:
            raise NotFound("intake_session", session.id)

        if updated.status == LifecycleState.INVITED:
            updated = await self._begin_if_invited(updated)
        elif updated.status == LifecycleState.MISSING_ITEMS_REQUESTED:
            updated = await self._lifecycle.transition(
                session.id,
                LifecycleState.IN_PROGRESS,
                "Client resumed after missing item request",
                Actor.CLIENT,
            )

        await self._touch_client(scope.client_id)
        await self._audit.record(
            session_id=session.id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="INTAKE_STEP_SAVED",
            details={"step_key": step_key, "mark_complete": mark_complete, "current_step": updated.current_step},
        )
        return SaveStepResult(ok=True, step=merged_step, session=updated)

    async def save_and_exit(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
        current_step: int,
    ) -> IntakeSession:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        session = await self.set_current_step(scope.session_id, current_step)
        await self._audit.record(
            session_id=scope.session_id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="SAVE_AND_EXIT",
            details={"current_step": session.current_step},
        )
        await self._touch_client(scope.client_id)
        return session

    async def add_asset(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
        category: AssetCategory | str,
        file_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> IntakeAsset:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        field_errors: dict[str, str] = {}
        try:
            resolved_category = AssetCategory(category)
        except ValueError:
            field_errors["category"] = "Unknown asset category"
        cleaned_name = (file_name or "").strip()
        if not cleaned_name:
            field_errors["file_name"] = "File name is required"
        if size_bytes < 0:
            field_errors["size_bytes"] = "File size cannot be negative"
        if field_errors:
            raise ValidationFailed(field_errors)

        session = await self._load_session(scope.session_id)
        self._ensure_editable(session)
        client = await self._store.clients.get(scope.client_id)
        brokerage = await self._store.brokerages.get(scope.brokerage_id)
        if client is None or brokerage is None:
            raise NotFound("intake_scope", scope.session_id)

        prior = await self._store.assets.count(
            session_id=session.id,
            category=resolved_category,
            file_name=cleaned_name,
        )
        asset = await self._store.assets.create(
            IntakeAsset(
                id=new_id("asset"),
                session_id=session.id,
                brokerage_id=scope.brokerage_id,
                client_id=scope.client_id,
                category=resolved_category,
                file_name=cleaned_name,
                mime_type=mime_type or "application/octet-stream",
                size_bytes=size_bytes,
                revision=prior + 1,
            )
        )

        # The asset row exists regardless of whether routing succeeds.
        routed = await self._routing.upload_asset(
            brokerage=brokerage,
            client=client,
            session=session,
            file_name=asset.file_name,
            mime_type=asset.mime_type,
            revision=asset.revision,
        )
        if routed is not None:
            asset = (
                await self._store.assets.update(
                    asset.id,
                    {"drive_file_id": routed.file_id, "drive_file_url": routed.file_url},
                )
                or asset
            )

        await self._audit.record(
            session_id=session.id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="ASSET_UPLOADED",
            details={
                "category": asset.category.value,
                "file_name": asset.file_name,
                "revision": asset.revision,
                "drive_file_url": asset.drive_file_url,
            },
        )
        await self._touch_client(scope.client_id)
        return asset

    async def submit_partial(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
        note: str | None = None,
    ) -> IntakeSession:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        session = await self._load_session(scope.session_id)
        self._ensure_editable(session)
        session = await self._begin_if_invited(session)

        if session.status == LifecycleState.PARTIAL_SUBMITTED:
            updated = await self._lifecycle.force_set_status(
                session.id, LifecycleState.PARTIAL_SUBMITTED, "Partial submission updated", Actor.CLIENT
            )
        else:
            updated = await self._lifecycle.transition(
                session.id, LifecycleState.PARTIAL_SUBMITTED, "Client submitted partial intake", Actor.CLIENT
            )

        await self._audit.record(
            session_id=session.id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="INTAKE_PARTIAL_SUBMIT",
            details={"note": note or ""},
        )
        await self._touch_client(scope.client_id)
        return updated

    async def final_readiness(self, session_id: str) -> list[BlockingReason]:
        steps = await self._steps(session_id)
        assets = await self._store.assets.find(session_id=session_id)
        return final_submit_readiness(merge_answers(steps), assets, self._readiness_policy)

    async def submit_final(
        self,
        *,
        brokerage_slug: str,
        signed_cookie_value: str | None,
    ) -> IntakeSession:
        scope = await self._auth.resolve_portal_auth(brokerage_slug, signed_cookie_value)
        session = await self._load_session(scope.session_id)

        if session.status == LifecycleState.FINAL_SUBMITTED:
            updated = await self._lifecycle.force_set_status(
                session.id, LifecycleState.FINAL_SUBMITTED, "Final submission refreshed", Actor.CLIENT
            )
        else:
            self._ensure_editable(session)
            if self._enforce_readiness:
                reasons = await self.final_readiness(session.id)
                if reasons:
                    logger.info(
                        "intake_final_blocked session_id=%s reasons=%s",
                        session.id,
                        ",".join(reason.code for reason in reasons),
                    )
                    raise SubmissionNotReady(reasons)
            session = await self._begin_if_invited(session)
            updated = await self._lifecycle.transition(
                session.id, LifecycleState.FINAL_SUBMITTED, "Client submitted final intake", Actor.CLIENT
            )

        updated = await self._store.sessions.update(session.id, {"missing_items": []}) or updated
        await self._audit.record(
            session_id=session.id,
            brokerage_id=scope.brokerage_id,
            client_id=scope.client_id,
            actor=Actor.CLIENT,
            action="INTAKE_FINAL_SUBMIT",
        )
        await self._touch_client(scope.client_id)
        return updated

    async def request_missing_items(
        self,
        *,
        session_id: str,
        missing_items: list[str],
        requested_by: str,
    ) -> IntakeSession:
        items = [item.strip() for item in missing_items if item and item.strip()]
        if not items:
            raise ValidationFailed({"missing_items": "List at least one missing item"})
        session = await self._load_session(session_id)

        if session.status == LifecycleState.MISSING_ITEMS_REQUESTED:
            await self._lifecycle.force_set_status(
                session.id,
                LifecycleState.MISSING_ITEMS_REQUESTED,
                "Missing items request updated",
                Actor.OPERATOR,
            )
        else:
            await self._lifecycle.transition(
                session.id,
                LifecycleState.MISSING_ITEMS_REQUESTED,
                "Operator requested missing items",
                Actor.OPERATOR,
            )

        updated = await self._store.sessions.update(session.id, {"missing_items": items})
        if updated is None:
            raise NotFound("intake_session", session.id)
        await self._audit.record(
            session_id=session.id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=Actor.OPERATOR,
            action="MISSING_ITEMS_REQUESTED",
            details={"requested_by": requested_by, "missing_items": items},
        )
        await self._touch_client(session.client_id)
        return updated


__all__ = [
    "IntakeSessionService",
    "IntakeSessionView",
    "PortalScope",
    "SaveStepResult",
    "clamp_step",
    "completion_percentage",
    "merge_answers",
]
