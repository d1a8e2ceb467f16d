from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.domain.enums import VaultSessionState
from caseflow.domain.models import VaultSession
from caseflow.persistence.guards import tenant_predicate


_UNLOCKED = VaultSessionState.UNLOCKED.value


async def get_vault_session(
    session: AsyncSession,
    *,
    firm_id: str,
    case_id: str,
    vault_session_id: str,
) -> VaultSession | None:
    # Sessions are only visible through their own case and firm.
    result = await session.execute(
        select(VaultSession)
        .where(
            VaultSession.id == vault_session_id,
            VaultSession.case_id == case_id,
            tenant_predicate(VaultSession, firm_id),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_unlocked_for_case(session: AsyncSession, *, firm_id: str, case_id: str) -> VaultSession | None:
    result = await session.execute(
        select(VaultSession).where(
            VaultSession.case_id == case_id,
            tenant_predicate(VaultSession, firm_id),
            VaultSession.state == _UNLOCKED,
        )
    )
    return result.scalars().first()


async def expire_stale_for_case(
    session: AsyncSession,
    *,
    firm_id: str,
    case_id: str,
    cutoff: datetime,
    now: datetime,
) -> int:
    # Mark leases without a heartbeat since cutoff as expired before checking exclusivity.
    result = await session.execute(
        update(VaultSession)
        .where(
            VaultSession.case_id == case_id,
            tenant_predicate(VaultSession, firm_id),
            VaultSession.state == _UNLOCKED,
            VaultSession.last_heartbeat_at < cutoff,
        )
        .values(state=VaultSessionState.EXPIRED.value, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def touch(
    session: AsyncSession,
    *,
    vault_session_id: str,
    cutoff: datetime,
    now: datetime,
) -> bool:
    # Renew only a live lease; state and freshness are checked in the same statement.
    result = await session.execute(
        update(VaultSession)
        .where(
            VaultSession.id == vault_session_id,
            VaultSession.state == _UNLOCKED,
            VaultSession.last_heartbeat_at >= cutoff,
        )
        .values(last_heartbeat_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def end_live_session(
    session: AsyncSession,
    *,
    vault_session_id: str,
    state: VaultSessionState,
    cutoff: datetime,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(VaultSession)
        .where(
            VaultSession.id == vault_session_id,
            VaultSession.state == _UNLOCKED,
            VaultSession.last_heartbeat_at >= cutoff,
        )
        .values(state=state.value, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def expire_if_stale(
    session: AsyncSession,
    *,
    vault_session_id: str,
    cutoff: datetime,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(VaultSession)
        .where(
            VaultSession.id == vault_session_id,
            VaultSession.state == _UNLOCKED,
            VaultSession.last_heartbeat_at < cutoff,
        )
        .values(state=VaultSessionState.EXPIRED.value, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def expire_all_stale(session: AsyncSession, *, cutoff: datetime, now: datetime) -> int:
    # Sweep across firms; used by the maintenance script only.
    result = await session.execute(
        update(VaultSession)
        .where(VaultSession.state == _UNLOCKED, VaultSession.last_heartbeat_at < cutoff)
        .values(state=VaultSessionState.EXPIRED.value, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
