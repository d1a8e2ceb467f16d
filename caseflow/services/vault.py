"""Vault session manager.

A vault session is a renewable lease granting one holder exclusive access to
a case's secured documents. Only ``last_heartbeat_at`` is stored; a session is
live while ``now - last_heartbeat_at <= ttl`` and its state is ``UNLOCKED``.
Expiry is computed on every access, so a session that went stale but was
never marked behaves exactly like an ``EXPIRED`` one. The periodic sweep only
tidies state for reporting.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import logging
import secrets
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import get_settings
from caseflow.core.errors import (
    NotFoundError,
    ValidationFailedError,
    VaultInvalidPinError,
    VaultSessionActiveError,
    VaultSessionExpiredError,
)
from caseflow.domain.enums import (
    ENTITY_VAULT,
    AuditAction,
    AuditOutcome,
    VaultSessionState,
)
from caseflow.domain.models import VaultSession
from caseflow.persistence.repos import cases as cases_repo
from caseflow.persistence.repos import vault_sessions as vault_repo
from caseflow.services.audit import append_entry, unit_of_work
from caseflow.services.tenant_context import TenantContext, require_tenant


logger = logging.getLogger(__name__)

_PIN_HASH_SCHEME = "pbkdf2_sha256"
_DOCUMENT_ACTIONS = frozenset({AuditAction.ACCESS, AuditAction.DOWNLOAD})


def hash_pin(pin: str, *, iterations: int | None = None, salt: str | None = None) -> str:
    # Salted PBKDF2 so low-entropy PINs are not trivially reversible at rest.
    rounds = iterations or get_settings().vault_pin_hash_iterations
    resolved_salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), bytes.fromhex(resolved_salt), rounds)
    return f"{_PIN_HASH_SCHEME}${rounds}${resolved_salt}${digest.hex()}"


def verify_pin(pin: str | None, stored: str | None) -> bool:
    if not pin or not stored:
        return False
    try:
        scheme, raw_rounds, salt, expected = stored.split("$")
        rounds = int(raw_rounds)
    except ValueError:
        logger.error("vault_pin_hash_malformed")
        return False
    if scheme != _PIN_HASH_SCHEME:
        return False
    candidate = hash_pin(pin, iterations=rounds, salt=salt).rsplit("$", 1)[1]
    return hmac.compare_digest(candidate, expected)


@dataclass(frozen=True)
class VaultGrant:
    session_id: str
    expires_in: int
    heartbeat_interval: int


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VaultSessionManager:
    def __init__(
        self,
        *,
        time_provider: Callable[[], datetime] | None = None,
        ttl_s: int | None = None,
        heartbeat_interval_s: int | None = None,
    ) -> None:
        settings = get_settings()
        self._now = time_provider or _utc_now
        self._ttl = timedelta(seconds=ttl_s or settings.vault_session_ttl_s)
        self._heartbeat_interval_s = heartbeat_interval_s or settings.vault_heartbeat_interval_s

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    async def unlock(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        pin: str | None,
    ) -> VaultGrant:
        resolved = require_tenant(ctx)
        now = self._now()
        cutoff = now - self._ttl
        grant: VaultGrant | None = None

        async with unit_of_work(session, operation="vault.unlock"):
            case = await cases_repo.get_case(session, resolved.firm_id, case_id)
            if case is None:
                raise NotFoundError("Case not found")
            # PBKDF2 runs on a worker thread so a PIN check never stalls other requests.
            if not await asyncio.to_thread(verify_pin, pin, case.vault_pin_hash):
                # Denials are committed so abuse detection can see repeated attempts.
                append_entry(
                    session,
                    ctx=resolved,
                    entity_type=ENTITY_VAULT,
                    entity_id=case_id,
                    action=AuditAction.ACCESS,
                    outcome=AuditOutcome.FAILURE,
                    error_code=VaultInvalidPinError.code,
                    metadata={"reason": "invalid_credential"},
                    occurred_at=now,
                )
            else:
                await vault_repo.expire_stale_for_case(
                    session, firm_id=resolved.firm_id, case_id=case_id, cutoff=cutoff, now=now
                )
                active = await vault_repo.get_unlocked_for_case(
                    session, firm_id=resolved.firm_id, case_id=case_id
                )
                if active is not None:
                    raise VaultSessionActiveError(details={"holder_id": active.holder_id})
                lease = VaultSession(
                    id=uuid4().hex,
                    firm_id=resolved.firm_id,
                    case_id=case_id,
                    holder_id=resolved.user_id,
                    state=VaultSessionState.UNLOCKED.value,
                    created_at=now,
                    last_heartbeat_at=now,
                )
                session.add(lease)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    # A concurrent unlock won the partial unique index on active leases.
                    raise VaultSessionActiveError() from exc
                append_entry(
                    session,
                    ctx=resolved,
                    entity_type=ENTITY_VAULT,
                    entity_id=case_id,
                    action=AuditAction.UNLOCK,
                    metadata={"session_id": lease.id},
                    occurred_at=now,
                )
                grant = VaultGrant(
                    session_id=lease.id,
                    expires_in=self.ttl_seconds,
                    heartbeat_interval=self._heartbeat_interval_s,
                )

        if grant is None:
            logger.warning("vault_unlock_denied case_id=%s user_id=%s", case_id, resolved.user_id)
            raise VaultInvalidPinError()
        logger.info("vault_unlocked case_id=%s session_id=%s", case_id, grant.session_id)
        return grant

    async def heartbeat(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        vault_session_id: str | None,
    ) -> int:
        """Renew a live lease; returns the seconds until it would lapse."""
        resolved = require_tenant(ctx)
        now = self._now()
        expired = False
        async with unit_of_work(session, operation="vault.heartbeat"):
            await self._load_held(session, resolved, case_id=case_id, vault_session_id=vault_session_id)
            if not await vault_repo.touch(
                session, vault_session_id=vault_session_id, cutoff=now - self._ttl, now=now
            ):
                await vault_repo.expire_if_stale(
                    session, vault_session_id=vault_session_id, cutoff=now - self._ttl, now=now
                )
                expired = True
        if expired:
            raise VaultSessionExpiredError()
        return self.ttl_seconds

    async def lock(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        vault_session_id: str | None,
    ) -> bool:
        """End a lease; returns False when it had already ended (idempotent)."""
        resolved = require_tenant(ctx)
        now = self._now()
        async with unit_of_work(session, operation="vault.lock"):
            await self._load_held(session, resolved, case_id=case_id, vault_session_id=vault_session_id)
            locked = await vault_repo.end_live_session(
                session,
                vault_session_id=vault_session_id,
                state=VaultSessionState.LOCKED,
                cutoff=now - self._ttl,
                now=now,
            )
            if locked:
                append_entry(
                    session,
                    ctx=resolved,
                    entity_type=ENTITY_VAULT,
                    entity_id=case_id,
                    action=AuditAction.LOCK,
                    metadata={"session_id": vault_session_id},
                    occurred_at=now,
                )
            else:
                await vault_repo.expire_if_stale(
                    session, vault_session_id=vault_session_id, cutoff=now - self._ttl, now=now
                )
        if locked:
            logger.info("vault_locked case_id=%s session_id=%s", case_id, vault_session_id)
        return locked

    async def record_access(
        self,
        session: AsyncSession,
        ctx: TenantContext | None,
        *,
        case_id: str,
        vault_session_id: str | None,
        document_id: str,
        action: AuditAction,
    ) -> None:
        # Document reads require a live lease and renew it like a heartbeat.
        resolved = require_tenant(ctx)
        action = AuditAction(action)
        if action not in _DOCUMENT_ACTIONS:
            raise ValidationFailedError("Vault action must be ACCESS or DOWNLOAD", details={"field": "action"})
        if not document_id:
            raise ValidationFailedError("document_id is required", details={"field": "document_id"})
        now = self._now()
        expired = False
        async with unit_of_work(session, operation="vault.access"):
            await self._load_held(session, resolved, case_id=case_id, vault_session_id=vault_session_id)
            if await vault_repo.touch(
                session, vault_session_id=vault_session_id, cutoff=now - self._ttl, now=now
            ):
                append_entry(
                    session,
                    ctx=resolved,
                    entity_type=ENTITY_VAULT,
                    entity_id=case_id,
                    action=action,
                    metadata={"session_id": vault_session_id, "document_id": document_id},
                    occurred_at=now,
                )
            else:
                await vault_repo.expire_if_stale(
                    session, vault_session_id=vault_session_id, cutoff=now - self._ttl, now=now
                )
                expired = True
        if expired:
            raise VaultSessionExpiredError()

    async def expire_stale_sessions(self, session: AsyncSession) -> int:
        # Optional sweep; lazy checks already treat stale leases as expired.
        now = self._now()
        async with unit_of_work(session, operation="vault.sweep"):
            expired = await vault_repo.expire_all_stale(session, cutoff=now - self._ttl, now=now)
        logger.info("vault_sessions_swept expired=%s", expired)
        return expired

    async def _load_held(
        self,
        session: AsyncSession,
        ctx: TenantContext,
        *,
        case_id: str,
        vault_session_id: str | None,
    ) -> VaultSession:
        # Unknown ids, foreign cases and other holders all look the same to the caller.
        if not vault_session_id:
            raise NotFoundError("Vault session not found")
        lease = await vault_repo.get_vault_session(
            session, firm_id=ctx.firm_id, case_id=case_id, vault_session_id=vault_session_id
        )
        if lease is None or lease.holder_id != ctx.user_id:
            raise NotFoundError("Vault session not found")
        return lease
