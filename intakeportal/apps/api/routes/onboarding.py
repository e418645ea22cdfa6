from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import OperatorPrincipal, get_container, require_operator
from intakeportal.apps.api.openapi import OPERATOR_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.domain.models import OnboardingSource
from intakeportal.services.auth.operator_sessions import OperatorRole
from intakeportal.services.container import ServiceContainer
from intakeportal.services.onboarding import OnboardingResult

router = APIRouter(prefix="/onboarding", tags=["onboarding"], responses=OPERATOR_ERROR_RESPONSES)


class ClientOnboardingRequest(BaseModel):
    brokerage_slug: str = Field(min_length=1)
    business_name: str = Field(min_length=1, max_length=200)
    contact_name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    phone: str | None = Field(default=None, max_length=50)
    assigned_owner: str | None = Field(default=None, max_length=200)
    trigger_invite: bool = False


class ClientOnboardingResponse(BaseModel):
    client_id: str
    session_id: str
    invite_sent: bool
    magic_link_url: str | None = None
    replayed: bool = False


def onboarding_response(result: OnboardingResult) -> ClientOnboardingResponse:
    return ClientOnboardingResponse(
        client_id=result.client_id,
        session_id=result.session_id,
        invite_sent=result.invite_sent,
        magic_link_url=result.magic_link_url,
        replayed=result.replayed,
    )


@router.post("/clients", response_model=SuccessEnvelope[ClientOnboardingResponse])
async def onboard_client(
    payload: ClientOnboardingRequest,
    request: Request,
    principal: OperatorPrincipal = Depends(require_operator(OperatorRole.ADMIN, OperatorRole.EDITOR)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    result = await container.onboarding.create_or_update_client_onboarding(
        brokerage_slug=payload.brokerage_slug,
        business_name=payload.business_name,
        contact_name=payload.contact_name,
        email=payload.email,
        phone=payload.phone,
        assigned_owner=payload.assigned_owner or principal.email,
        trigger_invite=payload.trigger_invite,
        source=OnboardingSource.ADMIN,
    )
    return success_response(request=request, data=onboarding_response(result))
