from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
import re
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import get_settings
from caseflow.core.errors import (
    ConcurrentModificationError,
    NotFoundError,
    StorageUnavailableError,
    ValidationFailedError,
)
from caseflow.domain import events as domain_events
from caseflow.domain.enums import (
    ENTITY_CASE,
    AuditAction,
    CaseFlag,
    CasePriority,
    CaseStatus,
    StaffRole,
)
from caseflow.domain.events import DomainEvent
from caseflow.domain.models import Case, CaseTransfer
from caseflow.persistence.db import as_utc
from caseflow.persistence.repos import cases as cases_repo
from caseflow.services.audit import append_entry, storage_reads, unit_of_work
from caseflow.services.events import EventSink, get_event_sink, publish
from caseflow.services.tenant_context import TenantContext, require_staff, require_tenant
from caseflow.services.vault import hash_pin


logger = logging.getLogger(__name__)

_PIN_PATTERN = re.compile(r"^\d{4,12}$")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_pin(pin: str) -> str:
    if not _PIN_PATTERN.match(pin or ""):
        raise ValidationFailedError("Vault PIN must be 4 to 12 digits", details={"field": "pin"})
    return pin


@dataclass(frozen=True)
class CasePage:
    items: list[Case]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class CaseRegistry:
    """Create and read cases, manage flags and the vault credential, list history."""

    def __init__(
        self,
        *,
        event_sink: EventSink | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._event_sink = event_sink
        self._now = time_provider or _utc_now

    async def create_case(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        organization_id: str,
        service_id: str,
        priority: CasePriority = CasePriority.MEDIUM,
        vault_pin: str | None = None,
    ) -> Case:
        resolved = require_staff(ctx)
        pin_hash = None
        if vault_pin is not None:
            pin_hash = await asyncio.to_thread(hash_pin, validate_pin(vault_pin))
        attempts = max(1, get_settings().case_number_max_attempts)

        for attempt in range(1, attempts + 1):
            now = self._now()
            case_id = uuid4().hex
            try:
                async with unit_of_work(session, operation="case.create"):
                    case_number = await cases_repo.next_case_number(session, resolved.firm_id, now.year)
                    case = Case(
                        id=case_id,
                        firm_id=resolved.firm_id,
                        organization_id=organization_id,
                        service_id=service_id,
                        case_number=case_number,
                        status=CaseStatus.DRAFT.value,
                        priority=CasePriority(priority).value,
                        assignee_id=None,
                        flags=[],
                        version=1,
                        vault_pin_hash=pin_hash,
                        created_by=resolved.user_id,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(case)
                    append_entry(
                        session,
                        ctx=resolved,
                        entity_type=ENTITY_CASE,
                        entity_id=case_id,
                        action=AuditAction.CREATE,
                        metadata={
                            "case_number": case_number,
                            "organization_id": organization_id,
                            "service_id": service_id,
                            "priority": case.priority,
                        },
                        occurred_at=now,
                    )
            except StorageUnavailableError as exc:
                # Two creates in the same firm can race for one case number; draw again.
                if isinstance(exc.__cause__, IntegrityError) and attempt < attempts:
                    logger.warning("case_number_collision firm_id=%s attempt=%s", resolved.firm_id, attempt)
                    continue
                raise
            break

        logger.info("case_created case_id=%s case_number=%s", case_id, case_number)
        created = await self.get_case(session, resolved, case_id=case_id)
        publish(
            self._event_sink or get_event_sink(),
            [
                DomainEvent(
                    event_name=domain_events.CASE_CREATED,
                    firm_id=resolved.firm_id,
                    actor_id=resolved.user_id,
                    timestamp=now,
                    payload={"case_id": case_id, "case_number": case_number},
                )
            ],
        )
        return created

    async def get_case(self, session: AsyncSession, ctx: TenantContext | None, *, case_id: str) -> Case:
        resolved = require_tenant(ctx)
        async with storage_reads(operation="case.get"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
        if case is None:
            raise NotFoundError("Case not found")
        return case

    async def list_cases(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        status: CaseStatus | None = None,
        priority: CasePriority | None = None,
        assignee_id: str | None = None,
        organization_id: str | None = None,
        service_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> CasePage:
        # Listings are a staff view of the caller's firm; newest cases first.
        resolved = require_staff(ctx)
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        filters = {
            "status": CaseStatus(status).value if status else None,
            "priority": CasePriority(priority).value if priority else None,
            "assignee_id": assignee_id,
            "organization_id": organization_id,
            "service_id": service_id,
            "search": search.strip() if search and search.strip() else None,
        }
        async with storage_reads(operation="case.list"):
            total = await cases_repo.count_cases(session, firm_id=resolved.firm_id, **filters)
            items = await cases_repo.list_cases(
                session,
                firm_id=resolved.firm_id,
                offset=(page - 1) * limit,
                limit=limit,
                **filters,
            )
        return CasePage(items=items, total=total, page=page, limit=limit)

    async def transfers(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
    ) -> list[CaseTransfer]:
        # Reassignment log, newest first.
        case = await self.get_case(session, ctx, case_id=case_id)
        async with storage_reads(operation="case.transfers"):
            return await cases_repo.list_transfers(session, case.firm_id, case_id, newest_first=True)

    async def set_vault_pin(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        pin: str,
        expected_version: int,
    ) -> Case:
        resolved = require_staff(ctx, StaffRole.MANAGER)
        pin_hash = await asyncio.to_thread(hash_pin, validate_pin(pin))
        return await self._versioned_update(
            session,
            resolved,
            case_id=case_id,
            expected_version=expected_version,
            operation="case.vault_pin",
            build=lambda case: ({"vault_pin_hash": pin_hash}, {"field": "vault_credential"}),
        )

    async def add_flag(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        flag: CaseFlag,
        expected_version: int,
    ) -> Case:
        resolved = require_staff(ctx)
        flag = CaseFlag(flag)

        def _build(case: Case) -> tuple[dict[str, Any], dict[str, Any]] | None:
            flags = list(case.flags or [])
            if flag.value in flags:
                return None
            return {"flags": [*flags, flag.value]}, {"flag_added": flag.value}

        updated = await self._versioned_update(
            session,
            resolved,
            case_id=case_id,
            expected_version=expected_version,
            operation="case.flag_add",
            build=_build,
        )
        if flag.value in (updated.flags or []) and updated.version == expected_version + 1:
            publish(
                self._event_sink or get_event_sink(),
                [
                    DomainEvent(
                        event_name=domain_events.CASE_FLAG_ADDED,
                        firm_id=resolved.firm_id,
                        actor_id=resolved.user_id,
                        timestamp=self._now(),
                        payload={"case_id": case_id, "flag": flag.value},
                    )
                ],
            )
        return updated

    async def remove_flag(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        flag: CaseFlag,
        expected_version: int,
    ) -> Case:
        resolved = require_staff(ctx, StaffRole.MANAGER)
        flag = CaseFlag(flag)

        def _build(case: Case) -> tuple[dict[str, Any], dict[str, Any]] | None:
            flags = list(case.flags or [])
            if flag.value not in flags:
                return None
            return {"flags": [item for item in flags if item != flag.value]}, {"flag_removed": flag.value}

        return await self._versioned_update(
            session,
            resolved,
            case_id=case_id,
            expected_version=expected_version,
            operation="case.flag_remove",
            build=_build,
        )

    async def history(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
    ) -> list[dict[str, Any]]:
        # Merge status changes and reassignments into one chronological timeline.
        case = await self.get_case(session, ctx, case_id=case_id)
        async with storage_reads(operation="case.history"):
            transitions = await cases_repo.list_transitions(session, case.firm_id, case_id)
            transfers = await cases_repo.list_transfers(session, case.firm_id, case_id)
        timeline: list[tuple[datetime, int, dict[str, Any]]] = []
        for row in transitions:
            timeline.append(
                (
                    as_utc(row.created_at),
                    0,
                    {
                        "kind": "transition",
                        "from_status": row.from_status,
                        "to_status": row.to_status,
                        "actor_id": row.actor_id,
                        "actor_role": row.actor_role,
                        "reason": row.reason,
                        "created_at": as_utc(row.created_at).isoformat(),
                    },
                )
            )
        for row in transfers:
            timeline.append(
                (
                    as_utc(row.created_at),
                    1,
                    {
                        "kind": "transfer",
                        "from_employee_id": row.from_employee_id,
                        "to_employee_id": row.to_employee_id,
                        "reason": row.reason,
                        "actor_id": row.actor_id,
                        "created_at": as_utc(row.created_at).isoformat(),
                    },
                )
            )
        timeline.sort(key=lambda item: (item[0], item[1]))
        return [entry for _ts, _kind, entry in timeline]

    async def _versioned_update(
        self,
        session: AsyncSession,
        ctx: TenantContext,
        *,
        case_id: str,
        expected_version: int,
        operation: str,
        build: Callable[[Case], tuple[dict[str, Any], dict[str, Any]] | None],
    ) -> Case:
        now = self._now()
        async with unit_of_work(session, operation=operation):
            case = await cases_repo.get_case(session, ctx.firm_id, case_id)
            if case is None:
                raise NotFoundError("Case not found")
            if case.version != expected_version:
                raise ConcurrentModificationError(
                    details={"expected_version": expected_version, "current_version": case.version}
                )
            change = build(case)
            if change is not None:
                values, metadata = change
                applied = await cases_repo.apply_versioned_update(
                    session,
                    firm_id=ctx.firm_id,
                    case_id=case_id,
                    expected_version=expected_version,
                    values=values,
                    now=now,
                )
                if not applied:
                    raise ConcurrentModificationError(details={"expected_version": expected_version})
                append_entry(
                    session,
                    ctx=ctx,
                    entity_type=ENTITY_CASE,
                    entity_id=case_id,
                    action=AuditAction.UPDATE,
                    metadata={**metadata, "version": expected_version + 1},
                    occurred_at=now,
                )
        return await self.get_case(session, ctx, case_id=case_id)
