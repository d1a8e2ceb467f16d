from __future__ import annotations

import asyncio
import time

import pytest

from caseflow.core.errors import (
    NotFoundError,
    ValidationFailedError,
    VaultInvalidPinError,
    VaultSessionActiveError,
    VaultSessionExpiredError,
)
from caseflow.domain.enums import AuditAction, StaffRole
from caseflow.persistence.db import SessionLocal
from caseflow.services.vault import VaultSessionManager
from caseflow.tests.utils.auth import client_context, staff_context
from caseflow.tests.utils.seed import (
    DEFAULT_PIN,
    FakeClock,
    audit_entries_for,
    new_firm_id,
    seed_case,
    vault_sessions_for,
)


def _manager(clock: FakeClock) -> VaultSessionManager:
    return VaultSessionManager(time_provider=clock, ttl_s=120, heartbeat_interval_s=60)


@pytest.mark.asyncio
async def test_heartbeat_extends_lease_until_ttl_lapses() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)
    holder = staff_context(firm_id)

    async with SessionLocal() as session:
        grant = await manager.unlock(session, holder, case_id=case.id, pin=DEFAULT_PIN)
        assert grant.expires_in == 120
        assert grant.heartbeat_interval == 60

        clock.advance(50)
        assert await manager.heartbeat(session, holder, case_id=case.id, vault_session_id=grant.session_id) == 120

        clock.advance(150)
        with pytest.raises(VaultSessionExpiredError):
            await manager.heartbeat(session, holder, case_id=case.id, vault_session_id=grant.session_id)

    sessions = await vault_sessions_for(case.id)
    assert [s.state for s in sessions] == ["EXPIRED"]
    assert sessions[0].ended_at is not None
    assert len(await audit_entries_for(case.id, action=AuditAction.UNLOCK.value)) == 1


@pytest.mark.asyncio
async def test_second_holder_is_refused_while_lease_is_live() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)
    first = staff_context(firm_id)
    second = client_context(firm_id)

    async with SessionLocal() as session:
        await manager.unlock(session, first, case_id=case.id, pin=DEFAULT_PIN)
        clock.advance(100)
        with pytest.raises(VaultSessionActiveError) as exc_info:
            await manager.unlock(session, second, case_id=case.id, pin=DEFAULT_PIN)
    assert exc_info.value.details == {"holder_id": first.user_id}
    assert len(await vault_sessions_for(case.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_unlocks_grant_exactly_one_lease() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    manager = _manager(FakeClock())

    async def _attempt():
        async with SessionLocal() as session:
            return await manager.unlock(session, staff_context(firm_id), case_id=case.id, pin=DEFAULT_PIN)

    results = await asyncio.gather(_attempt(), _attempt(), return_exceptions=True)

    granted = [result for result in results if not isinstance(result, BaseException)]
    refused = [result for result in results if isinstance(result, BaseException)]
    assert len(granted) == 1
    assert len(refused) == 1
    assert isinstance(refused[0], VaultSessionActiveError)
    sessions = await vault_sessions_for(case.id)
    assert [s.state for s in sessions] == ["UNLOCKED"]


@pytest.mark.asyncio
async def test_expired_lease_frees_the_case_for_a_new_unlock() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)

    async with SessionLocal() as session:
        stale = await manager.unlock(session, staff_context(firm_id), case_id=case.id, pin=DEFAULT_PIN)
        clock.advance(121)
        fresh = await manager.unlock(session, staff_context(firm_id), case_id=case.id, pin=DEFAULT_PIN)

    assert fresh.session_id != stale.session_id
    states = {s.id: s.state for s in await vault_sessions_for(case.id)}
    assert states == {stale.session_id: "EXPIRED", fresh.session_id: "UNLOCKED"}


@pytest.mark.asyncio
async def test_wrong_pin_is_refused_and_audited_as_failure() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    unset = await seed_case(firm_id, pin=None)
    manager = _manager(FakeClock())

    async with SessionLocal() as session:
        with pytest.raises(VaultInvalidPinError):
            await manager.unlock(session, staff_context(firm_id), case_id=case.id, pin="000000")
        with pytest.raises(VaultInvalidPinError):
            await manager.unlock(session, staff_context(firm_id), case_id=unset.id, pin=DEFAULT_PIN)

    assert await vault_sessions_for(case.id) == []
    entries = await audit_entries_for(case.id)
    assert len(entries) == 1
    assert entries[0].action == "ACCESS"
    assert entries[0].outcome == "failure"
    assert entries[0].error_code == "VAULT_INVALID_PIN"
    assert "000000" not in str(entries[0].metadata_json)


@pytest.mark.asyncio
async def test_pin_check_keeps_the_event_loop_responsive() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id, pin_iterations=400_000)
    manager = _manager(FakeClock())
    gaps: list[float] = []
    stop = asyncio.Event()

    async def _ticker() -> None:
        last = time.perf_counter()
        while not stop.is_set():
            await asyncio.sleep(0.005)
            current = time.perf_counter()
            gaps.append(current - last)
            last = current

    ticker = asyncio.create_task(_ticker())
    await asyncio.sleep(0)
    started = time.perf_counter()
    async with SessionLocal() as session:
        with pytest.raises(VaultInvalidPinError):
            await manager.unlock(session, staff_context(firm_id), case_id=case.id, pin="000000")
    elapsed = time.perf_counter() - started
    stop.set()
    await ticker

    # A blocked loop would show one gap as long as the whole hash.
    assert len(gaps) >= 3
    assert max(gaps) < elapsed / 2


@pytest.mark.asyncio
async def test_lock_is_idempotent_and_audited_once() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)
    holder = staff_context(firm_id)

    async with SessionLocal() as session:
        grant = await manager.unlock(session, holder, case_id=case.id, pin=DEFAULT_PIN)
        assert await manager.lock(session, holder, case_id=case.id, vault_session_id=grant.session_id) is True
        assert await manager.lock(session, holder, case_id=case.id, vault_session_id=grant.session_id) is False
        with pytest.raises(VaultSessionExpiredError):
            await manager.heartbeat(session, holder, case_id=case.id, vault_session_id=grant.session_id)

        # An expired lease locks as a no-op too.
        expired = await manager.unlock(session, holder, case_id=case.id, pin=DEFAULT_PIN)
        clock.advance(500)
        assert await manager.lock(session, holder, case_id=case.id, vault_session_id=expired.session_id) is False

    assert len(await audit_entries_for(case.id, action=AuditAction.LOCK.value)) == 1
    states = {s.id: s.state for s in await vault_sessions_for(case.id)}
    assert states == {grant.session_id: "LOCKED", expired.session_id: "EXPIRED"}


@pytest.mark.asyncio
async def test_sessions_are_invisible_to_other_holders_and_firms() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    manager = _manager(FakeClock())
    holder = staff_context(firm_id)

    async with SessionLocal() as session:
        grant = await manager.unlock(session, holder, case_id=case.id, pin=DEFAULT_PIN)
        for intruder in (staff_context(firm_id, role=StaffRole.MASTER_ADMIN), staff_context(new_firm_id())):
            with pytest.raises(NotFoundError):
                await manager.lock(session, intruder, case_id=case.id, vault_session_id=grant.session_id)
        with pytest.raises(NotFoundError):
            await manager.heartbeat(session, holder, case_id=case.id, vault_session_id=None)
        with pytest.raises(NotFoundError):
            await manager.unlock(session, staff_context(new_firm_id()), case_id=case.id, pin=DEFAULT_PIN)

    assert [s.state for s in await vault_sessions_for(case.id)] == ["UNLOCKED"]


@pytest.mark.asyncio
async def test_document_access_requires_live_lease_and_is_audited() -> None:
    firm_id = new_firm_id()
    case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)
    holder = client_context(firm_id)

    async with SessionLocal() as session:
        grant = await manager.unlock(session, holder, case_id=case.id, pin=DEFAULT_PIN)
        clock.advance(100)
        await manager.record_access(
            session,
            holder,
            case_id=case.id,
            vault_session_id=grant.session_id,
            document_id="doc-passport",
            action=AuditAction.DOWNLOAD,
        )
        with pytest.raises(ValidationFailedError):
            await manager.record_access(
                session,
                holder,
                case_id=case.id,
                vault_session_id=grant.session_id,
                document_id="doc-passport",
                action=AuditAction.DELETE,
            )
        # The access renewed the lease, so it is still live 100s later.
        clock.advance(100)
        assert await manager.heartbeat(session, holder, case_id=case.id, vault_session_id=grant.session_id) == 120
        clock.advance(121)
        with pytest.raises(VaultSessionExpiredError):
            await manager.record_access(
                session,
                holder,
                case_id=case.id,
                vault_session_id=grant.session_id,
                document_id="doc-passport",
                action=AuditAction.ACCESS,
            )

    downloads = await audit_entries_for(case.id, action=AuditAction.DOWNLOAD.value)
    assert len(downloads) == 1
    assert downloads[0].metadata_json["document_id"] == "doc-passport"
    assert downloads[0].actor_role == "CLIENT"


@pytest.mark.asyncio
async def test_sweep_marks_only_stale_leases_expired() -> None:
    firm_id = new_firm_id()
    stale_case = await seed_case(firm_id)
    live_case = await seed_case(firm_id)
    clock = FakeClock()
    manager = _manager(clock)

    async with SessionLocal() as session:
        await manager.unlock(session, staff_context(firm_id), case_id=stale_case.id, pin=DEFAULT_PIN)
        clock.advance(90)
        await manager.unlock(session, staff_context(firm_id), case_id=live_case.id, pin=DEFAULT_PIN)
        clock.advance(60)
        assert await manager.expire_stale_sessions(session) == 1

    assert [s.state for s in await vault_sessions_for(stale_case.id)] == ["EXPIRED"]
    assert [s.state for s in await vault_sessions_for(live_case.id)] == ["UNLOCKED"]
