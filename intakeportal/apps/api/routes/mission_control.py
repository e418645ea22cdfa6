from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import OperatorPrincipal, get_container, require_operator
from intakeportal.apps.api.openapi import OPERATOR_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.apps.api.views import (
    AuditEntryView,
    BrokerageAdminView,
    ClientView,
    JobView,
    ReportView,
    SessionView,
    audit_entry_view,
    brokerage_admin_view,
    client_view,
    job_view,
    report_view,
    session_view,
)
from intakeportal.services.auth.operator_sessions import OperatorRole
from intakeportal.services.brokerages import BrokerageCreate, BrokeragePatch
from intakeportal.services.container import ServiceContainer
from intakeportal.services.operator import Decision

router = APIRouter(prefix="/mission-control", tags=["mission-control"], responses=OPERATOR_ERROR_RESPONSES)

_staff = require_operator(OperatorRole.ADMIN, OperatorRole.EDITOR)
_admin = require_operator(OperatorRole.ADMIN)


class IntakeBrokerageSummary(BaseModel):
    id: str
    slug: str
    name: str


class IntakeRow(BaseModel):
    session: SessionView
    brokerage: IntakeBrokerageSummary
    client: ClientView
    steps_completed: int
    report: ReportView | None
    jobs: list[JobView]


class IntakeListResponse(BaseModel):
    items: list[IntakeRow]


class TimelineResponse(BaseModel):
    session_id: str
    items: list[AuditEntryView]


class MissingItemsRequest(BaseModel):
    missing_items: list[str] = Field(min_length=1)


class InviteResponse(BaseModel):
    delivery_status: str
    invited_at: datetime | None = None


class ArchiveRequest(BaseModel):
    archived: bool = True


class DecisionRequest(BaseModel):
    decision: Decision
    note: str | None = Field(default=None, max_length=2000)


class BrokerageListResponse(BaseModel):
    items: list[BrokerageAdminView]


class ReportResponse(BaseModel):
    report: ReportView | None


@router.get("/intakes", response_model=SuccessEnvelope[IntakeListResponse])
async def list_intakes(
    request: Request,
    include_archived: bool = Query(default=False),
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    rows = await container.operator.list_intakes(include_archived=include_archived)
    items = [
        IntakeRow(
            session=session_view(row.session),
            brokerage=IntakeBrokerageSummary(id=row.brokerage.id, slug=row.brokerage.slug, name=row.brokerage.name),
            client=client_view(row.client),
            steps_completed=row.steps_completed,
            report=report_view(row.report) if row.report else None,
            jobs=[job_view(job) for job in row.jobs],
        )
        for row in rows
    ]
    return success_response(request=request, data=IntakeListResponse(items=items))


@router.get("/intakes/{session_id}/timeline", response_model=SuccessEnvelope[TimelineResponse])
async def get_timeline(
    session_id: str,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    entries = await container.operator.get_timeline(session_id)
    data = TimelineResponse(session_id=session_id, items=[audit_entry_view(entry) for entry in entries])
    return success_response(request=request, data=data)


@router.get("/intakes/{session_id}/report", response_model=SuccessEnvelope[ReportResponse])
async def get_report(
    session_id: str,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    report = await container.operator.get_report(session_id)
    data = ReportResponse(report=report_view(report) if report else None)
    return success_response(request=request, data=data)


@router.post("/intakes/{session_id}/missing-items", response_model=SuccessEnvelope[SessionView])
async def request_missing_items(
    session_id: str,
    payload: MissingItemsRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    session = await container.operator.request_missing_items(
        session_id=session_id,
        missing_items=payload.missing_items,
        requested_by=principal.email,
    )
    return success_response(request=request, data=session_view(session))


@router.post("/intakes/{session_id}/resend-invite", response_model=SuccessEnvelope[InviteResponse])
async def resend_invite(
    session_id: str,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    invite = await container.operator.resend_invite(session_id)
    session = await container.store.sessions.get(session_id)
    data = InviteResponse(
        delivery_status=invite.delivery_status.value,
        invited_at=session.invite_sent_at if session else None,
    )
    return success_response(request=request, data=data)


@router.post("/intakes/{session_id}/archive", response_model=SuccessEnvelope[ClientView])
async def archive_client(
    session_id: str,
    payload: ArchiveRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    client = await container.operator.set_client_archived(
        session_id, payload.archived, operator_email=principal.email
    )
    return success_response(request=request, data=client_view(client))


@router.post("/intakes/{session_id}/decision", response_model=SuccessEnvelope[SessionView])
async def decide(
    session_id: str,
    payload: DecisionRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    session = await container.operator.process_approval(
        session_id=session_id,
        decision=payload.decision,
        operator_name=principal.email,
        note=payload.note,
    )
    return success_response(request=request, data=session_view(session))


@router.get("/brokerages", response_model=SuccessEnvelope[BrokerageListResponse])
async def list_brokerages(
    request: Request,
    include_archived: bool = Query(default=False),
    principal: OperatorPrincipal = Depends(_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    brokerages = await container.brokerages.list(include_archived=include_archived)
    data = BrokerageListResponse(items=[brokerage_admin_view(item) for item in brokerages])
    return success_response(request=request, data=data)


@router.post("/brokerages", response_model=SuccessEnvelope[BrokerageAdminView], status_code=201)
async def create_brokerage(
    payload: BrokerageCreate,
    request: Request,
    principal: OperatorPrincipal = Depends(_admin),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    brokerage = await container.brokerages.create(payload)
    return success_response(request=request, data=brokerage_admin_view(brokerage))


@router.patch("/brokerages/{brokerage_id}", response_model=SuccessEnvelope[BrokerageAdminView])
async def update_brokerage(
    brokerage_id: str,
    payload: BrokeragePatch,
    request: Request,
    principal: OperatorPrincipal = Depends(_admin),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    brokerage = await container.brokerages.update_settings(brokerage_id, payload)
    return success_response(request=request, data=brokerage_admin_view(brokerage))


@router.post("/brokerages/{brokerage_id}/archive", response_model=SuccessEnvelope[BrokerageAdminView])
async def archive_brokerage(
    brokerage_id: str,
    payload: ArchiveRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_admin),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    brokerage = await container.brokerages.set_archived(brokerage_id, payload.archived)
    return success_response(request=request, data=brokerage_admin_view(brokerage))
