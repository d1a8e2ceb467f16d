from __future__ import annotations

from uuid import uuid4

from caseflow.domain.enums import StaffRole, UserType
from caseflow.services.auth.identity import issue_access_token
from caseflow.services.tenant_context import TenantContext


def _user_id() -> str:
    return f"u-{uuid4().hex[:12]}"


def auth_headers(
    *,
    firm_id: str | None,
    user_id: str | None = None,
    user_type: str = UserType.STAFF.value,
    staff_role: str | None = StaffRole.EMPLOYEE.value,
) -> dict[str, str]:
    # Mint a signed bearer token the API accepts for the given identity.
    token = issue_access_token(
        user_id=user_id or _user_id(),
        firm_id=firm_id,
        user_type=user_type,
        staff_role=staff_role if user_type == UserType.STAFF.value else None,
    )
    return {"Authorization": f"Bearer {token}"}


def staff_context(
    firm_id: str,
    *,
    role: StaffRole = StaffRole.EMPLOYEE,
    user_id: str | None = None,
) -> TenantContext:
    return TenantContext(
        firm_id=firm_id,
        user_id=user_id or _user_id(),
        user_type=UserType.STAFF,
        staff_role=role,
        request_id=f"req-{uuid4().hex[:8]}",
    )


def client_context(firm_id: str, *, user_id: str | None = None) -> TenantContext:
    return TenantContext(firm_id=firm_id, user_id=user_id or _user_id(), user_type=UserType.CLIENT)
