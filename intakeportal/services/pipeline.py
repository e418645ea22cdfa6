from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from intakeportal.core.errors import InvalidTransition, NotFound
from intakeportal.domain.models import (
    Actor,
    IntakeAsset,
    IntakeSession,
    IntakeStep,
    Job,
    JobKind,
    JobStatus,
    LifecycleState,
    Report,
    new_id,
    utc_now,
)
from intakeportal.persistence.base import IntakeStore
from intakeportal.services.audit import AuditTrail
from intakeportal.services.lifecycle import LifecycleService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportDraft:
    title: str
    summary: str
    findings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


class ReportGenerator(Protocol):
    async def generate(self, session: IntakeSession, steps: list[IntakeStep]) -> ReportDraft: ...


class TemplateReportGenerator:
    """Deterministic report built from step completeness; no model calls."""

    async def generate(self, session: IntakeSession, steps: list[IntakeStep]) -> ReportDraft:
        completed = [step for step in steps if step.is_complete]
        outstanding = [step.title for step in steps if not step.is_complete]
        findings = [f"{len(completed)} of {len(steps)} intake steps were completed by the client."]
        if outstanding:
            findings.append("Incomplete sections: " + ", ".join(outstanding) + ".")
        else:
            findings.append("Every intake section was completed.")
        return ReportDraft(
            title="Strategic Intake Report",
            summary="Synthesis completed. The listing is ready for operator review and explicit approval.",
            findings=findings,
            recommendations=[
                "Validate legal and financial attachments before publishing any output.",
                "Confirm pricing expectations with the owner before listing.",
            ],
        )


@dataclass(frozen=True)
class SessionData:
    session: IntakeSession
    steps: list[IntakeStep]
    answers: dict[str, Any]
    assets: list[IntakeAsset]
    report: Report | None


@dataclass(frozen=True)
class PipelineRun:
    job: Job
    session: IntakeSession
    report: Report | None = None


class PipelineService:
    """Post-submission processing: synthesis, then council and report generation."""

    def __init__(
        self,
        *,
        store: IntakeStore,
        lifecycle: LifecycleService,
        audit: AuditTrail,
        generator: ReportGenerator,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._audit = audit
        self._generator = generator

    async def _load(self, session_id: str) -> IntakeSession:
        session = await self._store.sessions.get(session_id)
        if session is None:
            raise NotFound("intake_session", session_id)
        return session

    async def _start_job(self, session_id: str, kind: JobKind) -> Job:
        job = await self._store.jobs.create(Job(id=new_id("job"), session_id=session_id, kind=kind))
        running = await self._store.jobs.update(job.id, {"status": JobStatus.RUNNING, "started_at": utc_now()})
        return running or job

    async def _finish_job(self, job: Job, status: JobStatus, error: str | None = None) -> Job:
        finished = await self._store.jobs.update(
            job.id,
            {"status": status, "completed_at": utc_now(), "error": error},
        )
        return finished or job

    async def _audit_system(self, session: IntakeSession, action: str, details: dict[str, Any]) -> None:
        await self._audit.record(
            session_id=session.id,
            brokerage_id=session.brokerage_id,
            client_id=session.client_id,
            actor=Actor.SYSTEM,
            action=action,
            details=details,
        )

    async def run_synthesis(self, session_id: str) -> PipelineRun:
        session = await self._load(session_id)
        if session.status != LifecycleState.FINAL_SUBMITTED:
            raise InvalidTransition(session.status, LifecycleState.KLOR_SYNTHESIS)
        session = await self._lifecycle.transition(
            session_id, LifecycleState.KLOR_SYNTHESIS, "Synthesis job started", Actor.SYSTEM
        )
        job = await self._start_job(session_id, JobKind.KLOR_RUN)

        steps = await self._store.steps.find(session_id=session_id, order_by="step_order")
        completeness = sum(1 for step in steps if step.is_complete) / max(len(steps), 1)
        job = await self._finish_job(job, JobStatus.COMPLETED)
        await self._audit_system(
            session,
            "KLOR_SYNTHESIS_COMPLETED",
            {"job_id": job.id, "completeness": round(completeness, 4)},
        )
        logger.info("pipeline_synthesis_completed session_id=%s job_id=%s", session_id, job.id)
        return PipelineRun(job=job, session=session)

    async def run_council(self, session_id: str) -> PipelineRun:
        session = await self._load(session_id)
        if session.status != LifecycleState.KLOR_SYNTHESIS:
            raise InvalidTransition(session.status, LifecycleState.COUNCIL_RUNNING)
        session = await self._lifecycle.transition(
            session_id, LifecycleState.COUNCIL_RUNNING, "Council analysis started", Actor.SYSTEM
        )
        job = await self._start_job(session_id, JobKind.COUNCIL_RUN)

        steps = await self._store.steps.find(session_id=session_id, order_by="step_order")
        try:
            draft = await self._generator.generate(session, steps)
        except Exception as exc:  # noqa: BLE001 - generator failures mark the job, not the request
            logger.error("pipeline_council_failed session_id=%s job_id=%s", session_id, job.id, exc_info=exc)
            job = await self._finish_job(job, JobStatus.FAILED, error=str(exc) or type(exc).__name__)
            await self._audit_system(session, "COUNCIL_FAILED", {"job_id": job.id})
            return PipelineRun(job=job, session=session)

        report = await self._upsert_report(session_id, draft)
        job = await self._finish_job(job, JobStatus.COMPLETED)
        session = await self._lifecycle.transition(
            session_id,
            LifecycleState.REPORT_READY,
            "Report generated and awaiting operator decision",
            Actor.SYSTEM,
        )
        await self._audit_system(session, "COUNCIL_COMPLETED", {"job_id": job.id, "report_id": report.id})
        logger.info("pipeline_council_completed session_id=%s report_id=%s", session_id, report.id)
        return PipelineRun(job=job, session=session, report=report)

    async def _upsert_report(self, session_id: str, draft: ReportDraft) -> Report:
        values = {
            "title": draft.title,
            "summary": draft.summary,
            "findings": list(draft.findings),
            "recommendations": list(draft.recommendations),
        }
        existing = await self._store.reports.find_one(session_id=session_id)
        if existing is not None:
            updated = await self._store.reports.update(existing.id, {**values, "approved_at": None})
            if updated is not None:
                return updated
        return await self._store.reports.create(Report(id=new_id("report"), session_id=session_id, **values))

    async def collect_session_data(self, session_id: str) -> SessionData:
        # Everything the downstream pipeline reads for one session, answers flattened.
        session = await self._load(session_id)
        steps = await self._store.steps.find(session_id=session_id, order_by="step_order")
        answers: dict[str, Any] = {}
        for step in steps:
            answers.update(step.data)
        return SessionData(
            session=session,
            steps=steps,
            answers=answers,
            assets=await self._store.assets.find(session_id=session_id, order_by="uploaded_at"),
            report=await self._store.reports.find_one(session_id=session_id),
        )
