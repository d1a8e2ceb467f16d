from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import jwt

from caseflow.core.config import get_settings
from caseflow.core.errors import UnauthorizedError
from caseflow.services.tenant_context import RequestIdentity


DEV_HEADER_USER_ID = "X-User-Id"
DEV_HEADER_FIRM_ID = "X-Firm-Id"
DEV_HEADER_USER_TYPE = "X-User-Type"
DEV_HEADER_STAFF_ROLE = "X-Staff-Role"


def parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce Bearer token format for access token authentication.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Missing or invalid bearer token")
    return parts[1]


def decode_access_token(token: str) -> RequestIdentity:
    """Validate an access token and map its claims onto a request identity.

    Expected claims: ``sub`` (user id), ``firm_id``, ``user_type`` and, for
    staff, ``staff_role``. ``exp`` is enforced with the configured leeway.
    """
    settings = get_settings()
    options: dict[str, Any] = {"require": ["sub", "exp"]}
    if settings.auth_jwt_audience is None:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            leeway=settings.auth_clock_skew_seconds,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Access token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid access token") from exc
    return RequestIdentity(
        user_id=_claim(claims, "sub"),
        firm_id=_claim(claims, "firm_id"),
        user_type=_claim(claims, "user_type"),
        staff_role=_claim(claims, "staff_role"),
    )


def identity_from_dev_headers(headers: Mapping[str, str]) -> RequestIdentity:
    # Allow plain identity headers only when explicitly enabled for local dev.
    return RequestIdentity(
        user_id=headers.get(DEV_HEADER_USER_ID),
        firm_id=headers.get(DEV_HEADER_FIRM_ID),
        user_type=headers.get(DEV_HEADER_USER_TYPE, "STAFF"),
        staff_role=headers.get(DEV_HEADER_STAFF_ROLE),
    )


def issue_access_token(
    *,
    user_id: str,
    firm_id: str | None,
    user_type: str,
    staff_role: str | None = None,
    ttl_seconds: int = 3600,
) -> str:
    # Mint tokens for local tooling and tests; production tokens come from the identity service.
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": user_id,
        "user_type": user_type,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    if firm_id is not None:
        claims["firm_id"] = firm_id
    if staff_role is not None:
        claims["staff_role"] = staff_role
    if settings.auth_jwt_issuer:
        claims["iss"] = settings.auth_jwt_issuer
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def _claim(claims: Mapping[str, Any], name: str) -> str | None:
    value = claims.get(name)
    if value is None:
        return None
    return str(value)
