from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from intakeportal.domain.models import (
    AssetCategory,
    AuditLog,
    Brokerage,
    BrokerageBranding,
    ClientIdentity,
    IntakeAsset,
    IntakeSession,
    IntakeStep,
    Job,
    JobKind,
    JobStatus,
    LifecycleState,
    Report,
)


class SessionView(BaseModel):
    id: str
    status: LifecycleState
    current_step: int
    total_steps: int
    completion_pct: int
    missing_items: list[str]
    partial_submitted_at: datetime | None
    final_submitted_at: datetime | None
    invite_sent_at: datetime | None
    last_portal_access_at: datetime | None
    drive_folder_url: str | None


class StepView(BaseModel):
    step_key: str
    title: str
    step_order: int
    data: dict[str, Any]
    is_complete: bool
    updated_at: datetime


class AssetView(BaseModel):
    id: str
    category: AssetCategory
    file_name: str
    mime_type: str
    size_bytes: int
    revision: int
    drive_file_url: str | None
    uploaded_at: datetime


class BrokerageThemeView(BaseModel):
    id: str
    slug: str
    name: str
    short_name: str | None
    sender_name: str
    sender_email: str
    portal_base_url: str
    branding: BrokerageBranding


class BrokerageAdminView(BrokerageThemeView):
    drive_parent_folder_id: str | None
    is_archived: bool
    archived_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ClientView(BaseModel):
    id: str
    business_name: str
    contact_name: str
    email: str
    phone: str | None
    assigned_owner: str | None
    is_archived: bool
    last_activity_at: datetime
    has_password: bool


class AuditEntryView(BaseModel):
    id: str
    actor: str
    action: str
    details: dict[str, Any]
    created_at: datetime


class JobView(BaseModel):
    id: str
    kind: JobKind
    status: JobStatus
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    error: str | None


class ReportView(BaseModel):
    id: str
    title: str
    summary: str
    findings: list[str]
    recommendations: list[str]
    approved_at: datetime | None


def session_view(session: IntakeSession) -> SessionView:
    return SessionView.model_validate(session.model_dump())


def step_view(step: IntakeStep) -> StepView:
    return StepView.model_validate(step.model_dump())


def asset_view(asset: IntakeAsset) -> AssetView:
    return AssetView.model_validate(asset.model_dump())


def brokerage_theme_view(brokerage: Brokerage) -> BrokerageThemeView:
    return BrokerageThemeView.model_validate(brokerage.model_dump())


def brokerage_admin_view(brokerage: Brokerage) -> BrokerageAdminView:
    return BrokerageAdminView.model_validate(brokerage.model_dump())


def client_view(client: ClientIdentity) -> ClientView:
    # Credentials never leave the service layer; only the has_password flag does.
    return ClientView.model_validate({**client.model_dump(), "has_password": client.has_password})


def audit_entry_view(entry: AuditLog) -> AuditEntryView:
    return AuditEntryView(
        id=entry.id,
        actor=entry.actor.value,
        action=entry.action,
        details=entry.details,
        created_at=entry.created_at,
    )


def job_view(job: Job) -> JobView:
    return JobView.model_validate(job.model_dump())


def report_view(report: Report) -> ReportView:
    return ReportView.model_validate(report.model_dump())
