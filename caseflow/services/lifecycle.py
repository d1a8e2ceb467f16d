"""Case lifecycle engine.

The workflow is a closed table fixed in code: ``allowed_targets`` is the only
source of truth for which status may follow which. Each edge also carries the
lowest staff role allowed to take it, and rejections must state a reason.
Transitions are applied with a compare-and-set on the case version so a
concurrent writer loses with ``CONCURRENT_MODIFICATION`` instead of
overwriting.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from types import MappingProxyType
from typing import Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedRoleError,
    ValidationFailedError,
)
from caseflow.domain import events as domain_events
from caseflow.domain.enums import ENTITY_CASE, AuditAction, CaseStatus, StaffRole
from caseflow.domain.events import DomainEvent
from caseflow.domain.models import Case, CaseTransition
from caseflow.persistence.repos import cases as cases_repo
from caseflow.services.audit import append_entry, storage_reads, unit_of_work
from caseflow.services.events import EventSink, get_event_sink, publish
from caseflow.services.tenant_context import (
    TenantContext,
    has_staff_role,
    require_staff,
    require_tenant,
)


logger = logging.getLogger(__name__)

_TRANSITIONS: Mapping[CaseStatus, frozenset[CaseStatus]] = MappingProxyType(
    {
        CaseStatus.DRAFT: frozenset({CaseStatus.SUBMITTED}),
        CaseStatus.SUBMITTED: frozenset({CaseStatus.UNDER_REVIEW, CaseStatus.REJECTED}),
        CaseStatus.UNDER_REVIEW: frozenset(
            {CaseStatus.DOCS_REQUIRED, CaseStatus.PROCESSING, CaseStatus.REJECTED}
        ),
        CaseStatus.DOCS_REQUIRED: frozenset({CaseStatus.UNDER_REVIEW}),
        CaseStatus.PROCESSING: frozenset({CaseStatus.COMPLETED, CaseStatus.DOCS_REQUIRED}),
        CaseStatus.COMPLETED: frozenset(),
        CaseStatus.REJECTED: frozenset(),
    }
)

TERMINAL_STATUSES: frozenset[CaseStatus] = frozenset(
    status for status, targets in _TRANSITIONS.items() if not targets
)

# Edges not listed here are open to every staff role.
_EDGE_MIN_ROLES: Mapping[tuple[CaseStatus, CaseStatus], StaffRole] = MappingProxyType(
    {
        (CaseStatus.SUBMITTED, CaseStatus.REJECTED): StaffRole.MANAGER,
        (CaseStatus.UNDER_REVIEW, CaseStatus.REJECTED): StaffRole.MANAGER,
    }
)

_REASON_REQUIRED_TARGETS: frozenset[CaseStatus] = frozenset({CaseStatus.REJECTED})

_TRANSITION_LABELS: Mapping[CaseStatus, str] = MappingProxyType(
    {
        CaseStatus.SUBMITTED: "Submit Case",
        CaseStatus.UNDER_REVIEW: "Start Review",
        CaseStatus.DOCS_REQUIRED: "Request Documents",
        CaseStatus.PROCESSING: "Start Processing",
        CaseStatus.COMPLETED: "Mark Completed",
        CaseStatus.REJECTED: "Reject Case",
    }
)

# Specialised event emitted alongside case.status_changed when entering these states.
_ENTRY_EVENTS: Mapping[CaseStatus, str] = MappingProxyType(
    {
        CaseStatus.SUBMITTED: domain_events.CASE_SUBMITTED,
        CaseStatus.DOCS_REQUIRED: domain_events.CASE_DOCS_REQUESTED,
        CaseStatus.COMPLETED: domain_events.CASE_COMPLETED,
        CaseStatus.REJECTED: domain_events.CASE_REJECTED,
    }
)


def allowed_targets(status: CaseStatus) -> frozenset[CaseStatus]:
    return _TRANSITIONS[CaseStatus(status)]


def is_allowed(current: CaseStatus, target: CaseStatus) -> bool:
    return CaseStatus(target) in allowed_targets(current)


def minimum_role(current: CaseStatus, target: CaseStatus) -> StaffRole:
    return _EDGE_MIN_ROLES.get((CaseStatus(current), CaseStatus(target)), StaffRole.EMPLOYEE)


def requires_reason(target: CaseStatus) -> bool:
    return CaseStatus(target) in _REASON_REQUIRED_TARGETS


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CaseLifecycleEngine:
    def __init__(
        self,
        *,
        event_sink: EventSink | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._event_sink = event_sink
        self._now = time_provider or _utc_now

    async def transition(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        target_status: CaseStatus,
        expected_version: int,
        reason: str | None = None,
    ) -> Case:
        resolved = require_tenant(ctx)
        target = CaseStatus(target_status)
        reason = reason.strip() if reason and reason.strip() else None
        now = self._now()

        async with unit_of_work(session, operation="case.transition"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
            if case is None:
                raise NotFoundError("Case not found")
            require_staff(resolved)
            current = CaseStatus(case.status)
            # A stale writer must reload before its target is judged against the new status.
            if case.version != expected_version:
                raise ConcurrentModificationError(
                    details={"expected_version": expected_version, "current_version": case.version}
                )
            if not is_allowed(current, target):
                raise InvalidTransitionError(
                    f"Invalid transition: {current.value} -> {target.value}",
                    details={"from_status": current.value, "to_status": target.value},
                )
            required_role = minimum_role(current, target)
            if not has_staff_role(resolved, required_role):
                raise UnauthorizedRoleError(
                    f"Role {resolved.actor_role} cannot move a case to {target.value}",
                    details={"required_role": required_role.value},
                )
            if requires_reason(target) and reason is None:
                raise ValidationFailedError(
                    f"A reason is required to move a case to {target.value}",
                    details={"field": "reason"},
                )

            values: dict[str, object] = {"status": target.value}
            if target is CaseStatus.SUBMITTED:
                values["submitted_at"] = now
            if target in TERMINAL_STATUSES:
                values["completed_at"] = now
            applied = await cases_repo.apply_versioned_update(
                session,
                firm_id=resolved.firm_id,
                case_id=case_id,
                expected_version=expected_version,
                values=values,
                now=now,
            )
            if not applied:
                raise ConcurrentModificationError(details={"expected_version": expected_version})

            session.add(
                CaseTransition(
                    case_id=case_id,
                    firm_id=resolved.firm_id,
                    from_status=current.value,
                    to_status=target.value,
                    actor_id=resolved.user_id,
                    actor_role=resolved.actor_role,
                    reason=reason,
                    created_at=now,
                )
            )
            append_entry(
                session,
                ctx=resolved,
                entity_type=ENTITY_CASE,
                entity_id=case_id,
                action=AuditAction.STATUS_CHANGE,
                metadata={
                    "case_number": case.case_number,
                    "from_status": current.value,
                    "to_status": target.value,
                    "reason": reason,
                    "version": expected_version + 1,
                },
                occurred_at=now,
            )

        logger.info(
            "case_transitioned case_id=%s from=%s to=%s version=%s",
            case_id,
            current.value,
            target.value,
            expected_version + 1,
        )
        async with storage_reads(operation="case.transition"):
            updated = await cases_repo.get_case(session, resolved.firm_id, case_id)
        if updated is None:
            raise NotFoundError("Case not found")
        self._publish(resolved, updated, from_status=current, to_status=target, reason=reason, now=now)
        return updated

    async def available_transitions(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
    ) -> list[dict[str, str]]:
        # Clients may read a case but never move it, so they get no actions.
        resolved = require_tenant(ctx)
        async with storage_reads(operation="case.available_transitions"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
        if case is None:
            raise NotFoundError("Case not found")
        if not resolved.is_staff:
            return []
        targets = allowed_targets(CaseStatus(case.status))
        return [
            {"to": status.value, "label": _TRANSITION_LABELS[status]}
            for status in CaseStatus
            if status in targets and has_staff_role(resolved, minimum_role(case.status, status))
        ]

    def _publish(
        self,
        ctx: TenantContext,
        case: Case,
        *,
        from_status: CaseStatus,
        to_status: CaseStatus,
        reason: str | None,
        now: datetime,
    ) -> None:
        payload = {
            "case_id": case.id,
            "case_number": case.case_number,
            "from_status": from_status.value,
            "to_status": to_status.value,
            "reason": reason,
            "assignee_id": case.assignee_id,
        }
        names = [domain_events.CASE_STATUS_CHANGED]
        if to_status in _ENTRY_EVENTS:
            names.append(_ENTRY_EVENTS[to_status])
        publish(
            self._event_sink or get_event_sink(),
            [
                DomainEvent(
                    event_name=name,
                    firm_id=ctx.firm_id,
                    actor_id=ctx.user_id,
                    timestamp=now,
                    payload=payload,
                )
                for name in names
            ],
        )
