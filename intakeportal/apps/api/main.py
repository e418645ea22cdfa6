from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from intakeportal.apps.api.errors import (
    http_exception_handler,
    intake_error_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from intakeportal.apps.api.response import API_VERSION, REQUEST_ID_HEADER
from intakeportal.apps.api.routes.health import router as health_router
from intakeportal.apps.api.routes.mission_control import router as mission_control_router
from intakeportal.apps.api.routes.onboarding import router as onboarding_router
from intakeportal.apps.api.routes.operator_auth import router as operator_auth_router
from intakeportal.apps.api.routes.pipeline import router as pipeline_router
from intakeportal.apps.api.routes.portal import router as portal_router
from intakeportal.apps.api.routes.portal_auth import router as portal_auth_router
from intakeportal.apps.api.routes.webhooks import router as webhooks_router
from intakeportal.core.config import Settings, get_settings
from intakeportal.core.errors import ConfigurationError, IntakeError
from intakeportal.core.logging import configure_logging
from intakeportal.services.container import ServiceContainer, build_container


logger = logging.getLogger(__name__)

_ROUTERS = (
    health_router,
    portal_auth_router,
    portal_router,
    operator_auth_router,
    mission_control_router,
    onboarding_router,
    pipeline_router,
    webhooks_router,
)


def enforce_security_posture(settings: Settings) -> None:
    """Warn about development secrets; refuse to start with them in production."""
    findings = settings.insecure_defaults()
    for finding in findings:
        logger.warning("insecure_default setting=%s environment=%s", finding, settings.environment)
    if not settings.is_production:
        return
    if findings:
        raise ConfigurationError(
            "refusing to start in production with insecure defaults: " + ", ".join(findings)
        )
    if not settings.webhook_shared_secret:
        raise ConfigurationError("WEBHOOK_SHARED_SECRET must be set in production")


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    resolved_settings = settings or (container.settings if container is not None else get_settings())
    configure_logging(resolved_settings.log_level)
    enforce_security_posture(resolved_settings)
    resolved_container = container or build_container(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await resolved_container.store.initialize()
        logger.info(
            "intake_portal_started environment=%s persistence_driver=%s",
            resolved_settings.environment,
            resolved_settings.persistence_driver,
        )
        try:
            yield
        finally:
            await resolved_container.store.close()

    app = FastAPI(title="Intake Portal API", lifespan=lifespan)
    app.state.container = resolved_container

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(IntakeError)
    async def _intake_error_handler(request: Request, exc: IntakeError):
        return await intake_error_handler(request, exc)

    # Mount versioned v1 API routes.
    for router in _ROUTERS:
        app.include_router(router, prefix=f"/{API_VERSION}")

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Intake Portal API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Describe the cookie and header credentials each surface expects.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="Intake Portal API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["PortalCookie"] = {
            "type": "apiKey",
            "in": "cookie",
            "name": resolved_settings.portal_cookie_name,
        }
        security_schemes["OperatorCookie"] = {
            "type": "apiKey",
            "in": "cookie",
            "name": resolved_settings.operator_cookie_name,
        }
        security_schemes["SystemApiKey"] = {"type": "apiKey", "in": "header", "name": "X-System-Api-Key"}
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
