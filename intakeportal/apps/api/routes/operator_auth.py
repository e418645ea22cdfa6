from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from intakeportal.apps.api.deps import OperatorPrincipal, get_container, require_operator
from intakeportal.apps.api.openapi import OPERATOR_ERROR_RESPONSES
from intakeportal.apps.api.response import SuccessEnvelope, success_response
from intakeportal.services.auth.operator_sessions import OperatorRole
from intakeportal.services.container import ServiceContainer

router = APIRouter(prefix="/operator-auth", tags=["operator-auth"], responses=OPERATOR_ERROR_RESPONSES)


class OperatorSignInRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class OperatorIdentityResponse(BaseModel):
    email: str
    role: OperatorRole
    expires_at: datetime | None = None


class SignedOutResponse(BaseModel):
    signed_out: bool


def _attempt_key(request: Request, email: str) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    address = forwarded.split(",")[0].strip() or (request.client.host if request.client else "unknown")
    return f"{address}:{email.strip().lower()}"


@router.post("/sign-in", response_model=SuccessEnvelope[OperatorIdentityResponse])
async def sign_in(
    payload: OperatorSignInRequest,
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    key = _attempt_key(request, payload.email)
    retry_after = container.sign_in_throttle.consume(key)
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "code": "RATE_LIMITED",
                "message": f"Too many attempts. Try again in {retry_after} seconds.",
                "retry_after_seconds": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )

    issued = container.operator_access.sign_in(payload.email, payload.password)
    container.sign_in_throttle.clear(key)
    settings = container.settings
    response.set_cookie(
        settings.operator_cookie_name,
        issued.token,
        expires=issued.expires_at,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )
    data = OperatorIdentityResponse(
        email=issued.session.email,
        role=issued.session.role,
        expires_at=issued.expires_at,
    )
    return success_response(request=request, data=data)


@router.post("/sign-out", response_model=SuccessEnvelope[SignedOutResponse])
async def sign_out(
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    # Operator tokens are stateless; signing out drops the cookie.
    response.delete_cookie(container.settings.operator_cookie_name, path="/")
    return success_response(request=request, data=SignedOutResponse(signed_out=True))


@router.get("/me", response_model=SuccessEnvelope[OperatorIdentityResponse])
async def me(
    request: Request,
    principal: OperatorPrincipal = Depends(require_operator(OperatorRole.ADMIN, OperatorRole.EDITOR)),
) -> dict:
    data = OperatorIdentityResponse(email=principal.email, role=principal.role)
    return success_response(request=request, data=data)
