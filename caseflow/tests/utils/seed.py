from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select

from caseflow.domain.enums import CasePriority, CaseStatus
from caseflow.domain.models import AuditEntry, Case, CaseTransfer, CaseTransition, Employee, VaultSession
from caseflow.persistence.db import SessionLocal
from caseflow.services.vault import hash_pin


DEFAULT_PIN = "482913"


def new_firm_id() -> str:
    # Use unique firm ids to keep tests isolated.
    return f"firm-{uuid4().hex[:10]}"


class FakeClock:
    """Mutable UTC clock injected as a service ``time_provider``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


async def seed_employee(
    firm_id: str,
    *,
    is_active: bool = True,
    max_cases: int | None = None,
) -> Employee:
    employee = Employee(
        id=f"emp-{uuid4().hex[:10]}",
        firm_id=firm_id,
        user_id=f"u-{uuid4().hex[:10]}",
        display_name="Test Employee",
        is_active=is_active,
        max_cases=max_cases,
    )
    async with SessionLocal() as session:
        session.add(employee)
        await session.commit()
    return employee


async def seed_case(
    firm_id: str,
    *,
    status: CaseStatus = CaseStatus.DRAFT,
    assignee_id: str | None = None,
    pin: str | None = DEFAULT_PIN,
    version: int = 1,
    flags: list[str] | None = None,
    pin_iterations: int | None = None,
) -> Case:
    now = datetime.now(timezone.utc)
    case = Case(
        id=uuid4().hex,
        firm_id=firm_id,
        organization_id="org-1",
        service_id="svc-visa",
        case_number=f"CS-{now.year}-{uuid4().int % 100000:05d}",
        status=status.value,
        priority=CasePriority.MEDIUM.value,
        assignee_id=assignee_id,
        flags=flags or [],
        version=version,
        vault_pin_hash=hash_pin(pin, iterations=pin_iterations) if pin else None,
        created_by="seed",
        created_at=now,
        updated_at=now,
    )
    async with SessionLocal() as session:
        session.add(case)
        await session.commit()
    return case


async def load_case(case_id: str) -> Case | None:
    async with SessionLocal() as session:
        result = await session.execute(select(Case).where(Case.id == case_id))
        return result.scalar_one_or_none()


async def audit_entries_for(entity_id: str, *, action: str | None = None) -> list[AuditEntry]:
    async with SessionLocal() as session:
        stmt = select(AuditEntry).where(AuditEntry.entity_id == entity_id)
        if action:
            stmt = stmt.where(AuditEntry.action == action)
        result = await session.execute(stmt.order_by(AuditEntry.id))
        return list(result.scalars().all())


async def transitions_for(case_id: str) -> list[CaseTransition]:
    async with SessionLocal() as session:
        result = await session.execute(select(CaseTransition).where(CaseTransition.case_id == case_id))
        return list(result.scalars().all())


async def transfers_for(case_id: str) -> list[CaseTransfer]:
    async with SessionLocal() as session:
        result = await session.execute(select(CaseTransfer).where(CaseTransfer.case_id == case_id))
        return list(result.scalars().all())


async def vault_sessions_for(case_id: str) -> list[VaultSession]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(VaultSession).where(VaultSession.case_id == case_id).order_by(VaultSession.created_at)
        )
        return list(result.scalars().all())
