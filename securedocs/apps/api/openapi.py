from __future__ import annotations

from typing import Any

from securedocs.apps.api.response import API_VERSION, ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": API_VERSION},
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


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response("Bad request", "VALIDATION_ERROR", "Invalid request"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Authentication required"),
    403: _response("Forbidden", "PERMISSION_DENIED", "You do not have permission to access this document"),
    404: _response("Not found", "NOT_FOUND", "Resource not found"),
    409: _response("Conflict", "INVALID_STATE", "Access request is no longer pending"),
    413: _response(
        "Storage limit exceeded",
        "QUOTA_EXCEEDED",
        "Storage limit exceeded. Please upgrade your plan.",
        details={"used": 4194304, "limit": 5242880, "would_be_used": 6291456, "plan_name": "Free"},
    ),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
}


def error_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    return {code: DEFAULT_ERROR_RESPONSES[code] for code in status_codes}
