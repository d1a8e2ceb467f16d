from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Include request/version metadata for consistent client tracing.
    request_id: str
    api_version: str = Field(default=API_VERSION)


class SuccessEnvelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    # `error` carries the stable code; `message` is for humans.
    success: bool = False
    data: None = None
    error: str
    message: str
    details: dict[str, Any] | None = None
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def success_response(*, request: Request, data: Any, message: str | None = None) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    payload: dict[str, Any] = {"success": True, "data": data, "meta": meta.model_dump()}
    if message:
        payload["message"] = message
    return payload


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Return the standard error envelope with request metadata.
    meta = ResponseMeta(request_id=get_request_id(request))
    envelope = ErrorEnvelope(error=code, message=message, details=details, meta=meta)
    return envelope.model_dump(exclude_none=True) | {"data": None}
