from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import get_container, require_webhook_secret
from intakeportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.apps.api.routes.onboarding import ClientOnboardingResponse, onboarding_response
from intakeportal.domain.models import OnboardingSource
from intakeportal.services.container import ServiceContainer

router = APIRouter(prefix="/webhooks", tags=["webhooks"], responses=DEFAULT_ERROR_RESPONSES)


class ClientIntakeWebhook(BaseModel):
    idempotency_key: str = Field(min_length=1, max_length=200)
    brokerage_slug: str = Field(min_length=1)
    business_name: str = Field(min_length=1, max_length=200)
    contact_name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    phone: str | None = Field(default=None, max_length=50)
    assigned_owner: str | None = Field(default=None, max_length=200)
    trigger_invite: bool = True


@router.post(
    "/client-intake",
    response_model=SuccessEnvelope[ClientOnboardingResponse],
    dependencies=[Depends(require_webhook_secret)],
)
async def client_intake(
    payload: ClientIntakeWebhook,
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    # Redelivered keys replay the first result without a second invite.
    result = await container.onboarding.create_or_update_client_onboarding(
        brokerage_slug=payload.brokerage_slug,
        business_name=payload.business_name,
        contact_name=payload.contact_name,
        email=payload.email,
        phone=payload.phone,
        assigned_owner=payload.assigned_owner,
        trigger_invite=payload.trigger_invite,
        source=OnboardingSource.API,
        idempotency_key=payload.idempotency_key,
    )
    return success_response(request=request, data=onboarding_response(result))
