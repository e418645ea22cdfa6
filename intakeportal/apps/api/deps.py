from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request, Response, status
from pydantic import BaseModel

from intakeportal.core.config import Settings
from intakeportal.services.auth.operator_sessions import OperatorRole
from intakeportal.services.container import ServiceContainer


logger = logging.getLogger(__name__)

SYSTEM_API_KEY_HEADER = "X-System-Api-Key"
WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


class OperatorPrincipal(BaseModel):
    # Identity of the operator (or pipeline system) behind a mission control call.
    email: str
    role: OperatorRole


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_app_settings(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings


def portal_cookie(request: Request, container: ServiceContainer = Depends(get_container)) -> str | None:
    return request.cookies.get(container.settings.portal_cookie_name)


def set_portal_cookie(response: Response, settings: Settings, value: str) -> None:
    response.set_cookie(
        settings.portal_cookie_name,
        value,
        max_age=settings.portal_session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        path="/",
    )


def clear_portal_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.portal_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )


def _auth_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": "Unauthorized"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def require_operator(*allowed: OperatorRole, allow_system_key: bool = False):
    # Dependency factory: operator cookie for humans, system key header for the pipeline.
    async def _dependency(
        request: Request,
        container: ServiceContainer = Depends(get_container),
        system_api_key: str | None = Header(default=None, alias=SYSTEM_API_KEY_HEADER),
    ) -> OperatorPrincipal:
        access = container.operator_access
        session = access.parse(request.cookies.get(container.settings.operator_cookie_name))
        if session is not None:
            if session.role not in allowed:
                logger.warning(
                    "operator_forbidden email=%s role=%s path=%s",
                    session.email,
                    session.role.value,
                    request.url.path,
                )
                raise _forbidden_error("Insufficient role for this operation")
            return OperatorPrincipal(email=session.email, role=session.role)

        if allow_system_key and OperatorRole.SYSTEM in allowed and access.verify_system_key(system_api_key):
            return OperatorPrincipal(email="pipeline-system", role=OperatorRole.SYSTEM)

        logger.info("operator_unauthenticated path=%s", request.url.path)
        raise _auth_error()

    return _dependency


async def require_webhook_secret(
    container: ServiceContainer = Depends(get_container),
    webhook_secret: str | None = Header(default=None, alias=WEBHOOK_SECRET_HEADER),
) -> None:
    configured = container.settings.webhook_shared_secret
    if not configured:
        if container.settings.is_production:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"code": "CONFIGURATION_ERROR", "message": "Webhook secret is not configured"},
            )
        return
    presented = webhook_secret or ""
    if not hmac.compare_digest(presented.encode("utf-8"), configured.encode("utf-8")):
        logger.warning("webhook_secret_rejected")
        raise _auth_error()
