from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import (
    clear_portal_cookie,
    get_container,
    portal_cookie,
    set_portal_cookie,
)
from intakeportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.core.errors import InvalidToken
from intakeportal.services.auth.portal_auth import EstablishedSession
from intakeportal.services.container import ServiceContainer

router = APIRouter(prefix="/portal/auth", tags=["portal-auth"], responses=DEFAULT_ERROR_RESPONSES)


class MagicLinkRequest(BaseModel):
    brokerage_slug: str = Field(min_length=1)
    email: str = Field(min_length=1)


class AcceptedResponse(BaseModel):
    accepted: bool


class PasswordSignInRequest(BaseModel):
    brokerage_slug: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class SetPasswordRequest(BaseModel):
    brokerage_slug: str = Field(min_length=1)
    password: str


class PortalSessionResponse(BaseModel):
    session_id: str
    brokerage_slug: str
    requires_password_setup: bool
    redirect_to: str


class SignOutResponse(BaseModel):
    signed_out: bool


def _landing_path(established: EstablishedSession) -> str:
    if established.requires_password_setup:
        return f"/portal/{established.brokerage_slug}/set-password"
    return f"/portal/{established.brokerage_slug}/intake"


@router.post("/request-magic-link", response_model=SuccessEnvelope[AcceptedResponse])
async def request_magic_link(
    payload: MagicLinkRequest,
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    # Same answer whether or not the email exists in this brokerage.
    await container.onboarding.request_magic_link(brokerage_slug=payload.brokerage_slug, email=payload.email)
    return success_response(request=request, data=AcceptedResponse(accepted=True))


@router.get("/magic", status_code=status.HTTP_303_SEE_OTHER, response_class=RedirectResponse)
async def consume_magic_link(
    token: str | None = Query(default=None),
    container: ServiceContainer = Depends(get_container),
) -> RedirectResponse:
    if not token:
        raise InvalidToken("magic link token missing")
    established = await container.portal_auth.consume_magic_link_and_authenticate(token)
    response = RedirectResponse(url=_landing_path(established), status_code=status.HTTP_303_SEE_OTHER)
    set_portal_cookie(response, container.settings, established.cookie_value)
    return response


@router.post("/password", response_model=SuccessEnvelope[PortalSessionResponse])
async def password_sign_in(
    payload: PasswordSignInRequest,
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    established = await container.portal_auth.authenticate_with_password(
        brokerage_slug=payload.brokerage_slug,
        email=payload.email,
        password=payload.password,
    )
    set_portal_cookie(response, container.settings, established.cookie_value)
    data = PortalSessionResponse(
        session_id=established.session_id,
        brokerage_slug=established.brokerage_slug,
        requires_password_setup=established.requires_password_setup,
        redirect_to=f"/portal/{established.brokerage_slug}/intake",
    )
    return success_response(request=request, data=data)


@router.post("/set-password", response_model=SuccessEnvelope[AcceptedResponse])
async def set_password(
    payload: SetPasswordRequest,
    request: Request,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    await container.portal_auth.set_password(
        brokerage_slug=payload.brokerage_slug,
        signed_cookie_value=cookie_value,
        password=payload.password,
    )
    return success_response(request=request, data=AcceptedResponse(accepted=True))


@router.post("/sign-out", response_model=SuccessEnvelope[SignOutResponse])
async def sign_out(
    request: Request,
    response: Response,
    cookie_value: str | None = Depends(portal_cookie),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    revoked = await container.portal_auth.sign_out(cookie_value)
    clear_portal_cookie(response, container.settings)
    return success_response(request=request, data=SignOutResponse(signed_out=revoked))
