from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from intakeportal.apps.api.response import error_response
from intakeportal.core.errors import (
    AuthError,
    ConfigurationError,
    ConflictError,
    IntakeError,
    IntakeLocked,
    InvalidTransition,
    NotFound,
    PersistenceError,
    SubmissionNotReady,
    ValidationFailed,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

UNAUTHORIZED_MESSAGE = "Unauthorized"


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _envelope(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=jsonable_encoder(payload), status_code=status_code, headers=headers)


def map_intake_error(exc: IntakeError) -> tuple[int, str, str, dict[str, Any] | None]:
    """Translate a core error into (status, code, message, details)."""
    if isinstance(exc, AuthError):
        # Every auth failure looks identical to the caller; the cause is only logged.
        return 401, "AUTH_UNAUTHORIZED", UNAUTHORIZED_MESSAGE, None
    if isinstance(exc, SubmissionNotReady):
        reasons = [{"code": reason.code, "message": reason.message} for reason in exc.reasons]
        return 422, "SUBMISSION_NOT_READY", str(exc), {"field_errors": exc.field_errors, "reasons": reasons}
    if isinstance(exc, ValidationFailed):
        return 422, "VALIDATION_ERROR", str(exc), {"field_errors": exc.field_errors}
    if isinstance(exc, InvalidTransition):
        return (
            409,
            "INVALID_TRANSITION",
            str(exc),
            {"from": getattr(exc.current, "value", exc.current), "to": getattr(exc.target, "value", exc.target)},
        )
    if isinstance(exc, IntakeLocked):
        return 409, "INTAKE_LOCKED", str(exc), None
    if isinstance(exc, ConflictError):
        return 409, "CONFLICT", str(exc), None
    if isinstance(exc, NotFound):
        return 404, "NOT_FOUND", f"{exc.entity} not found", None
    if isinstance(exc, PersistenceError):
        return 503, "SERVICE_UNAVAILABLE", "Storage is temporarily unavailable", None
    if isinstance(exc, ConfigurationError):
        return 500, "CONFIGURATION_ERROR", "Server is misconfigured", None
    return 500, "INTERNAL_ERROR", "Internal server error", None


async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
    status_code, code, message, details = map_intake_error(exc)
    if status_code >= 500:
        logger.error("intake_error path=%s code=%s", request.url.path, code, exc_info=exc)
    return _envelope(request, status_code, code, message, details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    return _envelope(request, exc.status_code, code, message, details, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    return _envelope(request, exc.status_code, code, message, details, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Surface request-shape errors with structured details for UI parsing.
    return _envelope(
        request,
        422,
        "REQUEST_VALIDATION_ERROR",
        "Validation error",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return _envelope(request, 500, "INTERNAL_ERROR", "Internal server error")
