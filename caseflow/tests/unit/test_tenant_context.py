from __future__ import annotations

import pytest

from caseflow.core.errors import UnauthorizedError, UnauthorizedRoleError
from caseflow.domain.enums import StaffRole, UserType
from caseflow.services.tenant_context import RequestIdentity, require_staff, require_tenant, resolve


def test_resolve_builds_context_from_identity() -> None:
    ctx = resolve(
        RequestIdentity(user_id="u1", firm_id="f1", user_type="staff", staff_role="manager"),
        request_id="req-1",
        ip_address="10.0.0.1",
    )
    assert ctx is not None
    assert ctx.firm_id == "f1"
    assert ctx.user_type is UserType.STAFF
    assert ctx.staff_role is StaffRole.MANAGER
    assert ctx.request_id == "req-1"
    assert ctx.actor_role == "MANAGER"


@pytest.mark.parametrize(
    "identity",
    [
        None,
        RequestIdentity(user_id="u1", firm_id=None, user_type="STAFF", staff_role="ADMIN"),
        RequestIdentity(user_id="u1", firm_id="", user_type="STAFF", staff_role="ADMIN"),
        RequestIdentity(user_id=None, firm_id="f1", user_type="STAFF", staff_role="ADMIN"),
        RequestIdentity(user_id="u1", firm_id="f1", user_type="ROBOT"),
    ],
)
def test_resolve_returns_none_without_firm_or_user(identity: RequestIdentity | None) -> None:
    assert resolve(identity) is None


def test_client_identity_never_carries_staff_role() -> None:
    ctx = resolve(RequestIdentity(user_id="c1", firm_id="f1", user_type="CLIENT", staff_role="ADMIN"))
    assert ctx is not None
    assert ctx.staff_role is None
    assert ctx.is_staff is False
    assert ctx.actor_role == "CLIENT"


def test_require_tenant_rejects_missing_context() -> None:
    with pytest.raises(UnauthorizedError):
        require_tenant(None)


def test_require_staff_orders_roles() -> None:
    manager = resolve(RequestIdentity(user_id="u1", firm_id="f1", user_type="STAFF", staff_role="MANAGER"))
    assert require_staff(manager, StaffRole.EMPLOYEE) is manager
    assert require_staff(manager, StaffRole.MANAGER) is manager
    with pytest.raises(UnauthorizedRoleError) as exc_info:
        require_staff(manager, StaffRole.ADMIN)
    assert exc_info.value.details == {"required_role": "ADMIN"}


def test_require_staff_rejects_clients_and_roleless_staff() -> None:
    client = resolve(RequestIdentity(user_id="c1", firm_id="f1", user_type="CLIENT"))
    roleless = resolve(RequestIdentity(user_id="s1", firm_id="f1", user_type="STAFF"))
    for ctx in (client, roleless):
        with pytest.raises(UnauthorizedRoleError):
            require_staff(ctx)
