from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.apps.api.deps import get_db, get_tenant_context, get_vault_manager, reject_firm_id_in_body
from caseflow.apps.api.openapi import VAULT_ERROR_RESPONSES
from caseflow.apps.api.response import SuccessEnvelope, success_response
from caseflow.domain.enums import AuditAction
from caseflow.services.tenant_context import TenantContext
from caseflow.services.vault import VaultSessionManager


router = APIRouter(prefix="/vault", tags=["vault"], responses=VAULT_ERROR_RESPONSES)

VAULT_SESSION_HEADER = "x-vault-session"


class UnlockRequest(BaseModel):
    model_config = {"extra": "forbid"}

    pin: str = Field(min_length=1, max_length=64)


class AccessRequest(BaseModel):
    model_config = {"extra": "forbid"}

    document_id: str = Field(min_length=1)
    action: AuditAction = AuditAction.ACCESS


class UnlockResponse(BaseModel):
    session_id: str
    expires_in: int
    heartbeat_interval: int


class HeartbeatResponse(BaseModel):
    expires_in: int


class LockResponse(BaseModel):
    locked: bool


@router.post("/{case_id}/unlock", response_model=SuccessEnvelope[UnlockResponse])
async def unlock_vault(
    request: Request,
    case_id: str,
    payload: UnlockRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    manager: VaultSessionManager = Depends(get_vault_manager),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    grant = await manager.unlock(db, ctx, case_id=case_id, pin=payload.pin)
    data = UnlockResponse(
        session_id=grant.session_id,
        expires_in=grant.expires_in,
        heartbeat_interval=grant.heartbeat_interval,
    )
    return success_response(request=request, data=data, message="Vault unlocked")


@router.post("/{case_id}/heartbeat", response_model=SuccessEnvelope[HeartbeatResponse])
async def heartbeat_vault(
    request: Request,
    case_id: str,
    vault_session_id: str | None = Header(default=None, alias=VAULT_SESSION_HEADER),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    manager: VaultSessionManager = Depends(get_vault_manager),
) -> dict:
    expires_in = await manager.heartbeat(db, ctx, case_id=case_id, vault_session_id=vault_session_id)
    return success_response(request=request, data=HeartbeatResponse(expires_in=expires_in))


@router.post("/{case_id}/lock", response_model=SuccessEnvelope[LockResponse])
async def lock_vault(
    request: Request,
    case_id: str,
    vault_session_id: str | None = Header(default=None, alias=VAULT_SESSION_HEADER),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    manager: VaultSessionManager = Depends(get_vault_manager),
) -> dict:
    # Locking an already ended session still succeeds; `locked` tells the two apart.
    locked = await manager.lock(db, ctx, case_id=case_id, vault_session_id=vault_session_id)
    return success_response(request=request, data=LockResponse(locked=locked), message="Vault locked")


@router.post("/{case_id}/access", response_model=SuccessEnvelope[dict])
async def record_vault_access(
    request: Request,
    case_id: str,
    payload: AccessRequest,
    vault_session_id: str | None = Header(default=None, alias=VAULT_SESSION_HEADER),
    ctx: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    manager: VaultSessionManager = Depends(get_vault_manager),
    _reject_firm: None = Depends(reject_firm_id_in_body),
) -> dict:
    await manager.record_access(
        db,
        ctx,
        case_id=case_id,
        vault_session_id=vault_session_id,
        document_id=payload.document_id,
        action=payload.action,
    )
    return success_response(request=request, data={})
