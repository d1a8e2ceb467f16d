from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.apps.api.response import get_request_id
from caseflow.core.config import get_settings
from caseflow.core.errors import UnauthorizedError, ValidationFailedError
from caseflow.persistence.db import get_session
from caseflow.services.auth.identity import (
    decode_access_token,
    identity_from_dev_headers,
    parse_bearer_token,
)
from caseflow.services.cases import CaseRegistry
from caseflow.services.lifecycle import CaseLifecycleEngine
from caseflow.services.tenant_context import RequestIdentity, TenantContext, resolve
from caseflow.services.transfer import CaseTransferCoordinator
from caseflow.services.vault import VaultSessionManager


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_request_identity(request: Request) -> RequestIdentity | None:
    settings = get_settings()
    bearer_token = parse_bearer_token(request.headers.get(settings.auth_header))
    if bearer_token is not None:
        return decode_access_token(bearer_token)
    if settings.auth_dev_bypass or not settings.auth_enabled:
        return identity_from_dev_headers(request.headers)
    return None


def get_tenant_context(
    request: Request,
    identity: RequestIdentity | None = Depends(get_request_identity),
) -> TenantContext:
    # Built fresh for every request; an identity without a firm never reaches a service.
    ctx = resolve(
        identity,
        request_id=get_request_id(request),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if ctx is None:
        raise UnauthorizedError("Missing or invalid credentials")
    return ctx


async def reject_firm_id_in_body(request: Request) -> None:
    # Reject client-supplied firm_id to enforce credential-bound tenancy.
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and "firm_id" in payload:
        raise ValidationFailedError(
            "firm_id must be derived from the caller's credentials",
            details={"field": "firm_id"},
        )


def get_case_registry() -> CaseRegistry:
    return CaseRegistry()


def get_lifecycle_engine() -> CaseLifecycleEngine:
    return CaseLifecycleEngine()


def get_transfer_coordinator() -> CaseTransferCoordinator:
    return CaseTransferCoordinator()


def get_vault_manager() -> VaultSessionManager:
    return VaultSessionManager()
