from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import StorageUnavailableError
from caseflow.domain.enums import AuditAction, AuditOutcome, StaffRole
from caseflow.domain.models import AuditEntry
from caseflow.persistence.repos import audit as audit_repo
from caseflow.services.tenant_context import TenantContext, require_staff, require_tenant


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "pin"]
_REDACTED_VALUE = "[REDACTED]"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def append_entry(
    session: AsyncSession,
    *,
    ctx: TenantContext,
    entity_type: str,
    entity_id: str,
    action: AuditAction,
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    occurred_at: datetime | None = None,
) -> AuditEntry:
    """Stage an audit entry in the caller's unit of work.

    Nothing is flushed here; the entry becomes durable only together with the
    business mutation when the enclosing ``unit_of_work`` commits.
    """
    resolved = require_tenant(ctx)
    entry = AuditEntry(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        firm_id=resolved.firm_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action.value,
        outcome=outcome.value,
        actor_id=resolved.user_id,
        actor_role=resolved.actor_role,
        request_id=resolved.request_id,
        ip_address=resolved.ip_address,
        user_agent=resolved.user_agent,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    session.add(entry)
    return entry


@asynccontextmanager
async def unit_of_work(session: AsyncSession, *, operation: str) -> AsyncIterator[None]:
    """Commit business state and staged audit rows together or not at all.

    Storage failures roll back and surface as ``StorageUnavailableError``;
    any other exception rolls back and propagates unchanged.
    """
    try:
        yield
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("unit_of_work_failed operation=%s", operation, exc_info=exc)
        raise StorageUnavailableError("Could not persist the change and its audit entry") from exc
    except BaseException:
        await session.rollback()
        raise


@asynccontextmanager
async def storage_reads(*, operation: str) -> AsyncIterator[None]:
    # Reads outside a unit of work surface storage outages the same way writes do.
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("storage_read_failed operation=%s", operation, exc_info=exc)
        raise StorageUnavailableError("Storage unavailable") from exc


def _to_utc(value: datetime | None) -> datetime | None:
    # Range bounds may carry any offset; stored timestamps are UTC.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class AuditPage:
    items: list[AuditEntry]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


async def query_entries(
    session: AsyncSession,
    *,
    ctx: TenantContext | None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> AuditPage:
    # Investigations are limited to firm admins and always scoped to the caller's firm.
    resolved = require_staff(ctx, StaffRole.ADMIN)
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    filters = {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "actor_id": actor_id,
        "action": action,
        "occurred_from": _to_utc(occurred_from),
        "occurred_to": _to_utc(occurred_to),
    }
    async with storage_reads(operation="audit.query"):
        total = await audit_repo.count_entries(session, firm_id=resolved.firm_id, **filters)
        items = await audit_repo.list_entries(
            session,
            firm_id=resolved.firm_id,
            offset=(page - 1) * limit,
            limit=limit,
            **filters,
        )
    return AuditPage(items=items, total=total, page=page, limit=limit)
