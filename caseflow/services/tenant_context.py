"""Per-request tenant context.

A ``TenantContext`` is built once at request entry from the authenticated
identity and handed explicitly to every service call. It is frozen, holds no
connections, and is never cached between requests.
"""

from __future__ import annotations

from dataclasses import dataclass

from caseflow.core.errors import UnauthorizedError, UnauthorizedRoleError
from caseflow.domain.enums import StaffRole, UserType


_STAFF_ROLE_ORDER: dict[str, int] = {
    StaffRole.EMPLOYEE.value: 1,
    StaffRole.MANAGER.value: 2,
    StaffRole.ADMIN.value: 3,
    StaffRole.MASTER_ADMIN.value: 4,
}


@dataclass(frozen=True)
class RequestIdentity:
    # Identity as supplied by the authentication layer; firm_id may be missing.
    user_id: str | None
    firm_id: str | None
    user_type: str | None
    staff_role: str | None = None


@dataclass(frozen=True)
class TenantContext:
    firm_id: str
    user_id: str
    user_type: UserType
    staff_role: StaffRole | None = None
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.user_type is UserType.STAFF and self.staff_role is not None

    @property
    def actor_role(self) -> str:
        # Role string recorded on audit rows and history records.
        if self.user_type is UserType.CLIENT:
            return UserType.CLIENT.value
        return self.staff_role.value if self.staff_role else UserType.STAFF.value


def _parse_user_type(raw: str | None) -> UserType | None:
    if not raw:
        return None
    try:
        return UserType(raw.strip().upper())
    except ValueError:
        return None


def _parse_staff_role(raw: str | None) -> StaffRole | None:
    if not raw:
        return None
    try:
        return StaffRole(raw.strip().upper())
    except ValueError:
        return None


def resolve(
    identity: RequestIdentity | None,
    *,
    request_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> TenantContext | None:
    """Build the tenant context for one request.

    Returns ``None`` when the identity is absent, carries no firm association
    or no user id. Callers must treat ``None`` as unauthenticated; there is no
    unscoped fallback.
    """
    if identity is None or not identity.firm_id or not identity.user_id:
        return None
    user_type = _parse_user_type(identity.user_type)
    if user_type is None:
        return None
    staff_role = _parse_staff_role(identity.staff_role) if user_type is UserType.STAFF else None
    return TenantContext(
        firm_id=identity.firm_id,
        user_id=identity.user_id,
        user_type=user_type,
        staff_role=staff_role,
        request_id=request_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def require_tenant(ctx: TenantContext | None) -> TenantContext:
    # Every service entry point calls this before touching storage.
    if ctx is None or not ctx.firm_id:
        raise UnauthorizedError("Tenant context is required")
    return ctx


def has_staff_role(ctx: TenantContext, minimum_role: StaffRole) -> bool:
    # Compare staff roles using numeric ordering for least-privilege enforcement.
    role = ctx.staff_role
    if not ctx.is_staff or role is None:
        return False
    return _STAFF_ROLE_ORDER[role.value] >= _STAFF_ROLE_ORDER[minimum_role.value]


def require_staff(ctx: TenantContext | None, minimum_role: StaffRole = StaffRole.EMPLOYEE) -> TenantContext:
    resolved = require_tenant(ctx)
    role = resolved.staff_role
    if not resolved.is_staff or role is None:
        raise UnauthorizedRoleError("Staff role required for this operation")
    if not has_staff_role(resolved, minimum_role):
        raise UnauthorizedRoleError(
            f"Role {role.value} cannot perform this operation",
            details={"required_role": minimum_role.value},
        )
    return resolved
