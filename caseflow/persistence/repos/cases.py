from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.domain.enums import CaseStatus
from caseflow.domain.models import Case, CaseTransfer, CaseTransition
from caseflow.persistence.guards import tenant_predicate


_TERMINAL_STATUSES = (CaseStatus.COMPLETED.value, CaseStatus.REJECTED.value)


async def get_case(session: AsyncSession, firm_id: str, case_id: str) -> Case | None:
    # Return None for firm mismatch to keep 404 semantics across tenants.
    result = await session.execute(
        select(Case)
        .where(Case.id == case_id, tenant_predicate(Case, firm_id))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def next_case_number(session: AsyncSession, firm_id: str, year: int) -> str:
    # Sequence numbers restart every calendar year per firm.
    prefix = f"CS-{year}-"
    result = await session.execute(
        select(func.count())
        .select_from(Case)
        .where(tenant_predicate(Case, firm_id), Case.case_number.like(f"{prefix}%"))
    )
    count = int(result.scalar() or 0)
    return f"{prefix}{count + 1:05d}"


async def apply_versioned_update(
    session: AsyncSession,
    *,
    firm_id: str,
    case_id: str,
    expected_version: int,
    values: dict[str, Any],
    now: datetime,
) -> bool:
    # Compare-and-set on version; a losing concurrent writer matches zero rows.
    result = await session.execute(
        update(Case)
        .where(
            Case.id == case_id,
            tenant_predicate(Case, firm_id),
            Case.version == expected_version,
        )
        .values(**values, version=Case.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def count_open_cases_for_assignee(session: AsyncSession, firm_id: str, employee_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Case)
        .where(
            tenant_predicate(Case, firm_id),
            Case.assignee_id == employee_id,
            Case.status.not_in(_TERMINAL_STATUSES),
        )
    )
    return int(result.scalar() or 0)


async def list_transitions(session: AsyncSession, firm_id: str, case_id: str) -> list[CaseTransition]:
    result = await session.execute(
        select(CaseTransition)
        .where(CaseTransition.case_id == case_id, tenant_predicate(CaseTransition, firm_id))
        .order_by(CaseTransition.created_at, CaseTransition.id)
    )
    return list(result.scalars().all())


async def list_transfers(
    session: AsyncSession, firm_id: str, case_id: str, *, newest_first: bool = False
) -> list[CaseTransfer]:
    stmt = select(CaseTransfer).where(
        CaseTransfer.case_id == case_id, tenant_predicate(CaseTransfer, firm_id)
    )
    if newest_first:
        stmt = stmt.order_by(CaseTransfer.created_at.desc(), CaseTransfer.id.desc())
    else:
        stmt = stmt.order_by(CaseTransfer.created_at, CaseTransfer.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def _filtered_cases(
    stmt,
    *,
    firm_id: str,
    status: str | None,
    priority: str | None,
    assignee_id: str | None,
    organization_id: str | None,
    service_id: str | None,
    search: str | None,
):
    stmt = stmt.where(tenant_predicate(Case, firm_id))
    if status:
        stmt = stmt.where(Case.status == status)
    if priority:
        stmt = stmt.where(Case.priority == priority)
    if assignee_id:
        stmt = stmt.where(Case.assignee_id == assignee_id)
    if organization_id:
        stmt = stmt.where(Case.organization_id == organization_id)
    if service_id:
        stmt = stmt.where(Case.service_id == service_id)
    if search:
        # Case-number search is a case-insensitive substring match.
        stmt = stmt.where(func.lower(Case.case_number).contains(search.lower(), autoescape=True))
    return stmt


async def list_cases(
    session: AsyncSession,
    *,
    firm_id: str,
    status: str | None = None,
    priority: str | None = None,
    assignee_id: str | None = None,
    organization_id: str | None = None,
    service_id: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> list[Case]:
    stmt = _filtered_cases(
        select(Case),
        firm_id=firm_id,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        organization_id=organization_id,
        service_id=service_id,
        search=search,
    )
    stmt = stmt.order_by(Case.created_at.desc(), Case.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_cases(
    session: AsyncSession,
    *,
    firm_id: str,
    status: str | None = None,
    priority: str | None = None,
    assignee_id: str | None = None,
    organization_id: str | None = None,
    service_id: str | None = None,
    search: str | None = None,
) -> int:
    stmt = _filtered_cases(
        select(func.count()).select_from(Case),
        firm_id=firm_id,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        organization_id=organization_id,
        service_id=service_id,
        search=search,
    )
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
