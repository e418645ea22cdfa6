from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from intakeportal.apps.api.deps import get_container
from intakeportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.services.container import ServiceContainer

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    environment: str
    persistence_driver: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, container: ServiceContainer = Depends(get_container)) -> dict:
    settings = container.settings
    payload = HealthResponse(
        status="ok",
        environment=settings.environment,
        persistence_driver=settings.persistence_driver,
    )
    return success_response(request=request, data=payload)
