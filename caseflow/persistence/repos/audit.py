from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.domain.models import AuditEntry
from caseflow.persistence.guards import tenant_predicate


def _filtered(
    stmt,
    *,
    firm_id: str,
    entity_type: str | None,
    entity_id: str | None,
    actor_id: str | None,
    action: str | None,
    occurred_from: datetime | None,
    occurred_to: datetime | None,
):
    # Scope all audit queries to a firm to prevent cross-tenant leakage.
    stmt = stmt.where(tenant_predicate(AuditEntry, firm_id))
    if entity_type:
        stmt = stmt.where(AuditEntry.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditEntry.entity_id == entity_id)
    if actor_id:
        stmt = stmt.where(AuditEntry.actor_id == actor_id)
    if action:
        stmt = stmt.where(AuditEntry.action == action)
    if occurred_from:
        stmt = stmt.where(AuditEntry.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEntry.occurred_at <= occurred_to)
    return stmt


async def list_entries(
    session: AsyncSession,
    *,
    firm_id: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEntry]:
    stmt = _filtered(
        select(AuditEntry),
        firm_id=firm_id,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        action=action,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    stmt = stmt.order_by(AuditEntry.occurred_at.desc(), AuditEntry.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_entries(
    session: AsyncSession,
    *,
    firm_id: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
) -> int:
    stmt = _filtered(
        select(func.count()).select_from(AuditEntry),
        firm_id=firm_id,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        action=action,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
