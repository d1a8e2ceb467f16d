from __future__ import annotations

from typing import Any

from caseflow.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "success": False,
        "data": None,
        "error": code,
        "message": message,
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", code="UNAUTHORIZED", message="Authentication required"),
    403: _response(
        "Forbidden",
        code="UNAUTHORIZED_ROLE",
        message="Insufficient role for this operation",
        details={"required_role": "MANAGER"},
    ),
    404: _response("Not found", code="NOT_FOUND", message="Case not found"),
    409: _response(
        "Conflict",
        code="CONCURRENT_MODIFICATION",
        message="Case was modified concurrently; reload and retry",
        details={"expected_version": 3, "current_version": 4},
    ),
    422: _response(
        "Validation error",
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "reason"], "msg": "Field required", "type": "missing"}]},
    ),
    503: _response("Storage unavailable", code="STORAGE_UNAVAILABLE", message="Storage unavailable"),
}

VAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    410: _response("Vault session expired", code="VAULT_SESSION_EXPIRED", message="Vault session expired"),
}
