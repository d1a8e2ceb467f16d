from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import (
    ConcurrentModificationError,
    NotFoundError,
    TenantMismatchError,
    ValidationFailedError,
)
from caseflow.domain import events as domain_events
from caseflow.domain.enums import ENTITY_CASE, AuditAction, StaffRole
from caseflow.domain.events import DomainEvent
from caseflow.domain.models import Case, CaseTransfer, Employee
from caseflow.persistence.repos import cases as cases_repo
from caseflow.persistence.repos import employees as employees_repo
from caseflow.services.audit import append_entry, storage_reads, unit_of_work
from caseflow.services.events import EventSink, get_event_sink, publish
from caseflow.services.tenant_context import TenantContext, require_staff, require_tenant


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _eligible_assignee(
    session: AsyncSession,
    firm_id: str,
    case: Case,
    employee_id: str,
) -> Employee:
    # Shared by first assignment and transfer: same firm, active, not the holder, under capacity.
    target = await employees_repo.get_employee(session, firm_id, employee_id)
    if target is None:
        foreign = await employees_repo.get_employee_by_id(session, employee_id)
        if foreign is not None:
            raise TenantMismatchError("Target employee belongs to another firm")
        raise NotFoundError("Target employee not found")
    if not target.is_active:
        raise NotFoundError("Target employee is not active")
    if case.assignee_id == employee_id:
        raise ValidationFailedError(
            "Cannot transfer to the current assignee",
            details={"reason_code": "SAME_ASSIGNEE"},
        )
    if target.max_cases is not None:
        open_cases = await cases_repo.count_open_cases_for_assignee(session, firm_id, employee_id)
        if open_cases >= target.max_cases:
            raise ValidationFailedError(
                "Target employee is at maximum case capacity",
                details={"reason_code": "EMPLOYEE_AT_CAPACITY", "max_cases": target.max_cases},
            )
    return target


class CaseTransferCoordinator:
    """Assigns and reassigns cases to staff members of the same firm.

    Assignment is orthogonal to the lifecycle: any status, terminal ones
    included, may be reassigned, and the status never changes. A case
    without an assignee gets its first one through ``assign``; every later
    change goes through ``transfer`` and leaves a transfer record.
    """

    def __init__(
        self,
        *,
        event_sink: EventSink | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._event_sink = event_sink
        self._now = time_provider or _utc_now

    async def assign(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        employee_id: str,
        expected_version: int,
    ) -> Case:
        resolved = require_tenant(ctx)
        require_staff(resolved, StaffRole.MANAGER)
        now = self._now()

        async with unit_of_work(session, operation="case.assign"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
            if case is None:
                raise NotFoundError("Case not found")
            if case.assignee_id is not None:
                raise ValidationFailedError(
                    "Case already has an assignee; transfer it instead",
                    details={"reason_code": "CASE_ALREADY_ASSIGNED", "assignee_id": case.assignee_id},
                )
            await _eligible_assignee(session, resolved.firm_id, case, employee_id)
            if case.version != expected_version:
                raise ConcurrentModificationError(
                    details={"expected_version": expected_version, "current_version": case.version}
                )

            applied = await cases_repo.apply_versioned_update(
                session,
                firm_id=resolved.firm_id,
                case_id=case_id,
                expected_version=expected_version,
                values={"assignee_id": employee_id},
                now=now,
            )
            if not applied:
                raise ConcurrentModificationError(details={"expected_version": expected_version})
            append_entry(
                session,
                ctx=resolved,
                entity_type=ENTITY_CASE,
                entity_id=case_id,
                action=AuditAction.ASSIGNMENT,
                metadata={
                    "case_number": case.case_number,
                    "assignee_id": employee_id,
                    "version": expected_version + 1,
                },
                occurred_at=now,
            )

        logger.info("case_assigned case_id=%s assignee_id=%s", case_id, employee_id)
        async with storage_reads(operation="case.assign"):
            updated = await cases_repo.get_case(session, resolved.firm_id, case_id)
        if updated is None:
            raise NotFoundError("Case not found")
        publish(
            self._event_sink or get_event_sink(),
            [
                DomainEvent(
                    event_name=domain_events.CASE_ASSIGNED,
                    firm_id=resolved.firm_id,
                    actor_id=resolved.user_id,
                    timestamp=now,
                    payload={
                        "case_id": case_id,
                        "case_number": updated.case_number,
                        "assignee_id": employee_id,
                    },
                )
            ],
        )
        return updated

    async def transfer(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        to_employee_id: str,
        reason: str | None,
        expected_version: int,
    ) -> Case:
        resolved = require_tenant(ctx)
        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise ValidationFailedError("A reason is required to transfer a case", details={"field": "reason"})
        require_staff(resolved, StaffRole.MANAGER)
        now = self._now()

        async with unit_of_work(session, operation="case.transfer"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
            if case is None:
                raise NotFoundError("Case not found")
            from_employee_id = case.assignee_id
            await _eligible_assignee(session, resolved.firm_id, case, to_employee_id)
            if case.version != expected_version:
                raise ConcurrentModificationError(
                    details={"expected_version": expected_version, "current_version": case.version}
                )

            applied = await cases_repo.apply_versioned_update(
                session,
                firm_id=resolved.firm_id,
                case_id=case_id,
                expected_version=expected_version,
                values={"assignee_id": to_employee_id},
                now=now,
            )
            if not applied:
                raise ConcurrentModificationError(details={"expected_version": expected_version})

            session.add(
                CaseTransfer(
                    case_id=case_id,
                    firm_id=resolved.firm_id,
                    from_employee_id=from_employee_id,
                    to_employee_id=to_employee_id,
                    reason=cleaned_reason,
                    actor_id=resolved.user_id,
                    created_at=now,
                )
            )
            append_entry(
                session,
                ctx=resolved,
                entity_type=ENTITY_CASE,
                entity_id=case_id,
                action=AuditAction.TRANSFER,
                metadata={
                    "case_number": case.case_number,
                    "from_employee_id": from_employee_id,
                    "to_employee_id": to_employee_id,
                    "reason": cleaned_reason,
                    "version": expected_version + 1,
                },
                occurred_at=now,
            )

        logger.info(
            "case_transferred case_id=%s from_employee_id=%s to_employee_id=%s",
            case_id,
            from_employee_id,
            to_employee_id,
        )
        async with storage_reads(operation="case.transfer"):
            updated = await cases_repo.get_case(session, resolved.firm_id, case_id)
        if updated is None:
            raise NotFoundError("Case not found")
        publish(
            self._event_sink or get_event_sink(),
            [
                DomainEvent(
                    event_name=domain_events.CASE_TRANSFERRED,
                    firm_id=resolved.firm_id,
                    actor_id=resolved.user_id,
                    timestamp=now,
                    payload={
                        "case_id": case_id,
                        "case_number": updated.case_number,
                        "from_employee_id": from_employee_id,
                        "to_employee_id": to_employee_id,
                        "reason": cleaned_reason,
                    },
                )
            ],
        )
        return updated
