from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import OperatorPrincipal, get_container, require_operator
from intakeportal.apps.api.openapi import OPERATOR_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.apps.api.views import (
    AssetView,
    JobView,
    ReportView,
    SessionView,
    StepView,
    asset_view,
    job_view,
    report_view,
    session_view,
    step_view,
)
from intakeportal.services.auth.operator_sessions import OperatorRole
from intakeportal.services.container import ServiceContainer
from intakeportal.services.pipeline import PipelineRun

router = APIRouter(prefix="/pipeline", tags=["pipeline"], responses=OPERATOR_ERROR_RESPONSES)

_pipeline_caller = require_operator(OperatorRole.ADMIN, OperatorRole.SYSTEM, allow_system_key=True)


class PipelineRequest(BaseModel):
    session_id: str = Field(min_length=1)


class PipelineRunResponse(BaseModel):
    job: JobView
    session: SessionView
    report: ReportView | None = None


class SessionDataResponse(BaseModel):
    session: SessionView
    steps: list[StepView]
    answers: dict[str, Any]
    assets: list[AssetView]
    report: ReportView | None = None


def _run_response(run: PipelineRun) -> PipelineRunResponse:
    return PipelineRunResponse(
        job=job_view(run.job),
        session=session_view(run.session),
        report=report_view(run.report) if run.report else None,
    )


@router.post("/synthesis", response_model=SuccessEnvelope[PipelineRunResponse])
async def run_synthesis(
    payload: PipelineRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_pipeline_caller),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    run = await container.pipeline.run_synthesis(payload.session_id)
    return success_response(request=request, data=_run_response(run))


@router.post("/council", response_model=SuccessEnvelope[PipelineRunResponse])
async def run_council(
    payload: PipelineRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(_pipeline_caller),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    run = await container.pipeline.run_council(payload.session_id)
    return success_response(request=request, data=_run_response(run))


@router.get("/session-data/{session_id}", response_model=SuccessEnvelope[SessionDataResponse])
async def session_data(
    session_id: str,
    request: Request,
    principal: OperatorPrincipal = Depends(_pipeline_caller),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    collected = await container.pipeline.collect_session_data(session_id)
    data = SessionDataResponse(
        session=session_view(collected.session),
        steps=[step_view(step) for step in collected.steps],
        answers=collected.answers,
        assets=[asset_view(asset) for asset in collected.assets],
        report=report_view(collected.report) if collected.report else None,
    )
    return success_response(request=request, data=data)
