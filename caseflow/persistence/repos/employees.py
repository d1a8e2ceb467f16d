from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.domain.models import Employee
from caseflow.persistence.guards import tenant_predicate


async def get_employee(session: AsyncSession, firm_id: str, employee_id: str) -> Employee | None:
    result = await session.execute(
        select(Employee).where(Employee.id == employee_id, tenant_predicate(Employee, firm_id))
    )
    return result.scalar_one_or_none()


async def get_employee_by_id(session: AsyncSession, employee_id: str) -> Employee | None:
    # Use with care; only for telling a foreign-firm employee apart from a missing one.
    result = await session.execute(select(Employee).where(Employee.id == employee_id))
    return result.scalar_one_or_none()
