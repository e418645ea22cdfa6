from __future__ import annotations

from typing import Any

from intakeportal.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Unauthorized"),
    404: _response("Not found", "NOT_FOUND", "intake_session not found"),
    409: _response(
        "Conflict",
        "INVALID_TRANSITION",
        "Invalid transition from APPROVED to IN_PROGRESS",
        details={"from": "APPROVED", "to": "IN_PROGRESS"},
    ),
    422: _response(
        "Validation error",
        "VALIDATION_ERROR",
        "Validation failed",
        details={"field_errors": {"asking_price": "Asking price is required"}},
    ),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    503: _response("Service unavailable", "SERVICE_UNAVAILABLE", "Storage is temporarily unavailable"),
}

OPERATOR_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    429: _response("Rate limited", "RATE_LIMITED", "Too many attempts", details={"retry_after_seconds": 600}),
}
