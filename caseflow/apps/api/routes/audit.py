from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.apps.api.deps import get_db, get_tenant_context
from caseflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from caseflow.apps.api.response import SuccessEnvelope, success_response
from caseflow.domain.models import AuditEntry
from caseflow.persistence.db import as_utc
from caseflow.services.audit import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, query_entries
from caseflow.services.tenant_context import TenantContext


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEntryResponse(BaseModel):
    id: int
    occurred_at: str
    entity_type: str
    entity_id: str
    action: str
    outcome: str
    actor_id: str | None
    actor_role: str | None
    request_id: str | None
    ip_address: str | None
    user_agent: str | None
    metadata: dict[str, Any] | None
    error_code: str | None


class AuditEntriesPage(BaseModel):
    items: list[AuditEntryResponse]
    total: int
    page: int
    limit: int
    total_pages: int


def _to_response(entry: AuditEntry) -> AuditEntryResponse:
    # Serialize audit datetimes to ISO 8601 for API clients.
    return AuditEntryResponse(
        id=entry.id,
        occurred_at=as_utc(entry.occurred_at).isoformat(),
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        action=entry.action,
        outcome=entry.outcome,
        actor_id=entry.actor_id,
        actor_role=entry.actor_role,
        request_id=entry.request_id,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        metadata=entry.metadata_json,
        error_code=entry.error_code,
    )


@router.get("", response_model=SuccessEnvelope[AuditEntriesPage])
async def list_audit_entries(
    request: Request,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Always scoped to the caller's firm; there is no firm filter to override.
    result = await query_entries(
        db,
        ctx=ctx,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        action=action,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        page=page,
        limit=limit,
    )
    data = AuditEntriesPage(
        items=[_to_response(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )
    return success_response(request=request, data=data)
