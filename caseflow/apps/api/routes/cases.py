from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.apps.api.deps import (
    get_case_registry,
    get_db,
    get_lifecycle_engine,
    get_tenant_context,
    get_transfer_coordinator,
    reject_firm_id_in_body,
)
from caseflow.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from caseflow.apps.api.response import SuccessEnvelope, success_response
from caseflow.domain.enums import CaseFlag, CasePriority, CaseStatus
from caseflow.domain.models import Case, CaseTransfer
from caseflow.persistence.db import as_utc
from caseflow.services.cases import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, CaseRegistry
from caseflow.services.lifecycle import CaseLifecycleEngine
from caseflow.services.tenant_context import TenantContext
from caseflow.services.transfer import CaseTransferCoordinator


router = APIRouter(prefix="/cases", tags=["cases"], responses=DEFAULT_ERROR_RESPONSES)


class CaseCreateRequest(BaseModel):
    # Reject unknown fields so firm_id cannot be supplied in the payload.
    model_config = {"extra": "forbid"}

    organization_id: str = Field(min_length=1)
    service_id: str = Field(min_length=1)
    priority: CasePriority = CasePriority.MEDIUM
    vault_pin: str | None = None


class TransitionRequest(BaseModel):
    model_config = {"extra": "forbid"}

    status: CaseStatus
    reason: str | None = None
    expected_version: int = Field(ge=1)


class TransferRequest(BaseModel):
    model_config = {"extra": "forbid"}

    to_employee_id: str = Field(min_length=1)
    # Blank reasons are rejected by the coordinator with a field-level error.
    reason: str | None = None
    expected_version: int = Field(ge=1)


class AssignRequest(BaseModel):
    model_config = {"extra": "forbid"}

    employee_id: str = Field(min_length=1)
    expected_version: int = Field(ge=1)


class FlagRequest(BaseModel):
    model_config = {"extra": "forbid"}

    flag: CaseFlag
    expected_version: int = Field(ge=1)


class VaultPinRequest(BaseModel):
    model_config = {"extra": "forbid"}

    pin: str
    expected_version: int = Field(ge=1)


class CaseResponse(BaseModel):
    id: str
    case_number: str
    organization_id: str
    service_id: str
    status: str
    priority: str
    assignee_id: str | None
    flags: list[str]
    version: int
    has_vault_pin: bool
    created_by: str
    submitted_at: str | None
    completed_at: str | None
    created_at: str | None
    updated_at: str | None


class CasesPage(BaseModel):
    items: list[CaseResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class TransferRecord(BaseModel):
    id: int
    from_employee_id: str | None
    to_employee_id: str
    reason: str
    actor_id: str
    created_at: str


class TransitionOption(BaseModel):
    to: str
    label: str


class HistoryEntry(BaseModel):
    kind: str
    created_at: str
    actor_id: str
    reason: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    actor_role: str | None = None
    from_employee_id: str | None = None
    to_employee_id: str | None = None


def _iso(value) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def _to_response(case: Case) -> dict[str, Any]:
    # Never expose the stored PIN hash; only whether one is configured.
    return CaseResponse(
        id=case.id,
        case_number=case.case_number,
        organization_id=case.organization_id,
        service_id=case.service_id,
        status=case.status,
        priority=case.priority,
        assignee_id=case.assignee_id,
        flags=list(case.flags or []),
        version=case.version,
        has_vault_pin=case.vault_pin_hash is not None,
        created_by=case.created_by,
        submitted_at=_iso(case.submitted_at),
        completed_at=_iso(case.completed_at),
        created_at=_iso(case.created_at),
        updated_at=_iso(case.updated_at),
    ).model_dump()


def _transfer_record(row: CaseTransfer) -> dict[str, Any]:
    return TransferRecord(
        id=row.id,
        from_employee_id=row.from_employee_id,
        to_employee_id=row.to_employee_id,
        reason=row.reason,
        actor_id=row.actor_id,
        created_at=as_utc(row.created_at).isoformat(),
    ).model_dump()


@router.get("", response_model=SuccessEnvelope[CasesPage])
async def list_cases(
    request: Request,
    case_status: CaseStatus | None = Query(default=None, alias="status"),
    priority: CasePriority | None = None,
    assignee_id: str | None = None,
    organization_id: str | None = None,
    service_id: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
) -> dict:
    # Always scoped to the caller's firm; there is no firm filter to override.
    result = await registry.list_cases(
        db,
        ctx,
        status=case_status,
        priority=priority,
        assignee_id=assignee_id,
        organization_id=organization_id,
        service_id=service_id,
        search=search,
        page=page,
        limit=limit,
    )
    data = CasesPage(
        items=[_to_response(case) for case in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )
    return success_response(request=request, data=data)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[CaseResponse],
)
async def create_case(
    request: Request,
    payload: CaseCreateRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await registry.create_case(
        db,
        ctx,
        organization_id=payload.organization_id,
        service_id=payload.service_id,
        priority=payload.priority,
        vault_pin=payload.vault_pin,
    )
    return success_response(request=request, data=_to_response(case), message="Case created")


@router.get("/{case_id}", response_model=SuccessEnvelope[CaseResponse])
async def get_case(
    request: Request,
    case_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
) -> dict:
    case = await registry.get_case(db, ctx, case_id=case_id)
    return success_response(request=request, data=_to_response(case))


@router.get("/{case_id}/transitions", response_model=SuccessEnvelope[list[TransitionOption]])
async def list_available_transitions(
    request: Request,
    case_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    engine: CaseLifecycleEngine = Depends(get_lifecycle_engine),
) -> dict:
    options = await engine.available_transitions(db, ctx, case_id=case_id)
    return success_response(request=request, data=options)


@router.patch("/{case_id}/status", response_model=SuccessEnvelope[CaseResponse])
async def transition_case(
    request: Request,
    case_id: str,
    payload: TransitionRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    engine: CaseLifecycleEngine = Depends(get_lifecycle_engine),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await engine.transition(
        db,
        ctx,
        case_id=case_id,
        target_status=payload.status,
        expected_version=payload.expected_version,
        reason=payload.reason,
    )
    return success_response(request=request, data=_to_response(case), message="Status updated")


@router.post("/{case_id}/transfer", response_model=SuccessEnvelope[CaseResponse])
async def transfer_case(
    request: Request,
    case_id: str,
    payload: TransferRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    coordinator: CaseTransferCoordinator = Depends(get_transfer_coordinator),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await coordinator.transfer(
        db,
        ctx,
        case_id=case_id,
        to_employee_id=payload.to_employee_id,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )
    return success_response(request=request, data=_to_response(case), message="Case transferred")


@router.patch("/{case_id}/assign", response_model=SuccessEnvelope[CaseResponse])
async def assign_case(
    request: Request,
    case_id: str,
    payload: AssignRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    coordinator: CaseTransferCoordinator = Depends(get_transfer_coordinator),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await coordinator.assign(
        db,
        ctx,
        case_id=case_id,
        employee_id=payload.employee_id,
        expected_version=payload.expected_version,
    )
    return success_response(request=request, data=_to_response(case), message="Case assigned")


@router.get("/{case_id}/transfers", response_model=SuccessEnvelope[list[TransferRecord]])
async def case_transfers(
    request: Request,
    case_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
) -> dict:
    rows = await registry.transfers(db, ctx, case_id=case_id)
    return success_response(request=request, data=[_transfer_record(row) for row in rows])


@router.post("/{case_id}/flags", response_model=SuccessEnvelope[CaseResponse])
async def add_case_flag(
    request: Request,
    case_id: str,
    payload: FlagRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await registry.add_flag(
        db, ctx, case_id=case_id, flag=payload.flag, expected_version=payload.expected_version
    )
    return success_response(request=request, data=_to_response(case))


@router.post("/{case_id}/flags/remove", response_model=SuccessEnvelope[CaseResponse])
async def remove_case_flag(
    request: Request,
    case_id: str,
    payload: FlagRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await registry.remove_flag(
        db, ctx, case_id=case_id, flag=payload.flag, expected_version=payload.expected_version
    )
    return success_response(request=request, data=_to_response(case))


@router.put("/{case_id}/vault-pin", response_model=SuccessEnvelope[CaseResponse])
async def set_vault_pin(
    request: Request,
    case_id: str,
    payload: VaultPinRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    case = await registry.set_vault_pin(
        db, ctx, case_id=case_id, pin=payload.pin, expected_version=payload.expected_version
    )
    return success_response(request=request, data=_to_response(case), message="Vault PIN updated")


@router.get("/{case_id}/history", response_model=SuccessEnvelope[list[HistoryEntry]])
async def case_history(
    request: Request,
    case_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    registry: CaseRegistry = Depends(get_case_registry),
) -> dict:
    entries = await registry.history(db, ctx, case_id=case_id)
    return success_response(request=request, data=entries)
