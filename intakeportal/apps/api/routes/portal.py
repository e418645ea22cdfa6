from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import get_container, portal_cookie
from intakeportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.apps.api.views import (
    AssetView,
    BrokerageThemeView,
    SessionView,
    StepView,
    asset_view,
    brokerage_theme_view,
    session_view,
    step_view,
)
from intakeportal.core.errors import ValidationFailed
from intakeportal.domain.models import AssetCategory
from intakeportal.domain.schema import errors_to_map
from intakeportal.services.container import ServiceContainer

router = APIRouter(prefix="/portal/{brokerage_slug}", tags=["portal"], responses=DEFAULT_ERROR_RESPONSES)


class PortalClientView(BaseModel):
    business_name: str
    contact_name: str
    email: str
    has_password: bool


class PortalSessionPayload(BaseModel):
    session: SessionView
    steps: list[StepView]
    assets: list[AssetView]
    definitions: list[dict[str, Any]]
    brokerage: BrokerageThemeView
    client: PortalClientView


class SaveStepRequest(BaseModel):
    step_key: str = Field(min_length=1)
    # Kept loose here; answers are checked against the strict answer union in the service.
    data: dict[str, Any] = Field(default_factory=dict)
    current_step: int = 1
    mark_complete: bool = False


class SaveStepResponse(BaseModel):
    ok: bool
    step: StepView
    session: SessionView


class SaveExitRequest(BaseModel):
    current_step: int


class AssetCreateRequest(BaseModel):
    category: AssetCategory
    file_name: str = Field(min_length=1, max_length=255)
    mime_type: str = "application/octet-stream"
    size_bytes: int = Field(default=0, ge=0)


class SubmitPartialRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


@router.get("/theme", response_model=SuccessEnvelope[BrokerageThemeView])
async def get_theme(
    brokerage_slug: str,
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    brokerage = await container.brokerages.theme(brokerage_slug)
    return success_response(request=request, data=brokerage_theme_view(brokerage))


@router.get("/session", response_model=SuccessEnvelope[PortalSessionPayload])
async def get_session(
    brokerage_slug: str,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    view = await container.intake.get_session_view(brokerage_slug, cookie_value)
    payload = PortalSessionPayload(
        session=session_view(view.session),
        steps=[step_view(step) for step in view.steps],
        assets=[asset_view(asset) for asset in view.assets],
        definitions=[definition.model_dump(mode="json") for definition in view.definitions],
        brokerage=brokerage_theme_view(view.brokerage),
        client=PortalClientView(
            business_name=view.client.business_name,
            contact_name=view.client.contact_name,
            email=view.client.email,
            has_password=view.client.has_password,
        ),
    )
    return success_response(request=request, data=payload)


@router.post("/save-step", response_model=SuccessEnvelope[SaveStepResponse])
async def save_step(
    brokerage_slug: str,
    payload: SaveStepRequest,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    result = await container.intake.save_intake_step(
        brokerage_slug=brokerage_slug,
        signed_cookie_value=cookie_value,
        step_key=payload.step_key,
        data=payload.data,
        current_step=payload.current_step,
        mark_complete=payload.mark_complete,
    )
    if not result.ok:
        raise ValidationFailed(errors_to_map(result.errors))
    data = SaveStepResponse(ok=True, step=step_view(result.step), session=session_view(result.session))
    return success_response(request=request, data=data)


@router.post("/save-exit", response_model=SuccessEnvelope[SessionView])
async def save_exit(
    brokerage_slug: str,
    payload: SaveExitRequest,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    session = await container.intake.save_and_exit(
        brokerage_slug=brokerage_slug,
        signed_cookie_value=cookie_value,
        current_step=payload.current_step,
    )
    return success_response(request=request, data=session_view(session))


@router.post("/assets", response_model=SuccessEnvelope[AssetView])
async def add_asset(
    brokerage_slug: str,
    payload: AssetCreateRequest,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    asset = await container.intake.add_asset(
        brokerage_slug=brokerage_slug,
        signed_cookie_value=cookie_value,
        category=payload.category,
        file_name=payload.file_name,
        mime_type=payload.mime_type,
        size_bytes=payload.size_bytes,
    )
    return success_response(request=request, data=asset_view(asset))


@router.post("/submit-partial", response_model=SuccessEnvelope[SessionView])
async def submit_partial(
    brokerage_slug: str,
    request: Request,
    payload: SubmitPartialRequest | None = None,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    session = await container.intake.submit_partial(
        brokerage_slug=brokerage_slug,
        signed_cookie_value=cookie_value,
        note=payload.note if payload else None,
    )
    return success_response(request=request, data=session_view(session))


@router.post("/submit-final", response_model=SuccessEnvelope[SessionView])
async def submit_final(
    brokerage_slug: str,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    session = await container.intake.submit_final(
        brokerage_slug=brokerage_slug,
        signed_cookie_value=cookie_value,
    )
    return success_response(request=request, data=session_view(session))
