from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from caseflow.core.config import get_settings
from caseflow.core.errors import UnauthorizedError
from caseflow.services.auth.identity import (
    decode_access_token,
    identity_from_dev_headers,
    issue_access_token,
    parse_bearer_token,
)


def test_issued_token_decodes_to_identity() -> None:
    token = issue_access_token(user_id="u1", firm_id="f1", user_type="STAFF", staff_role="ADMIN")
    identity = decode_access_token(token)
    assert identity.user_id == "u1"
    assert identity.firm_id == "f1"
    assert identity.user_type == "STAFF"
    assert identity.staff_role == "ADMIN"


def test_token_without_firm_yields_identity_without_firm() -> None:
    token = issue_access_token(user_id="u1", firm_id=None, user_type="CLIENT")
    identity = decode_access_token(token)
    assert identity.firm_id is None


def test_expired_token_is_rejected() -> None:
    settings = get_settings()
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {"sub": "u1", "firm_id": "f1", "user_type": "STAFF", "exp": past},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )
    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = jwt.encode(
        {"sub": "u1", "firm_id": "f1", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        "not-the-configured-secret",
        algorithm="HS256",
    )
    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_parse_bearer_token_formats() -> None:
    assert parse_bearer_token(None) is None
    assert parse_bearer_token("Bearer abc") == "abc"
    with pytest.raises(UnauthorizedError):
        parse_bearer_token("Basic abc")
    with pytest.raises(UnauthorizedError):
        parse_bearer_token("Bearer")


def test_dev_headers_map_to_identity() -> None:
    identity = identity_from_dev_headers({"X-User-Id": "u9", "X-Firm-Id": "f9", "X-Staff-Role": "MANAGER"})
    assert identity.user_id == "u9"
    assert identity.firm_id == "f9"
    assert identity.user_type == "STAFF"
    assert identity.staff_role == "MANAGER"
