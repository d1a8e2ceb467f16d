from __future__ import annotations

import pytest
from pydantic import ValidationError

from caseflow.core.config import Settings


def test_default_vault_lease_settings() -> None:
    settings = Settings()
    assert settings.vault_session_ttl_s == 120
    assert settings.vault_heartbeat_interval_s == 60


def test_ttl_must_cover_one_and_a_half_heartbeats() -> None:
    assert Settings(vault_session_ttl_s=90, vault_heartbeat_interval_s=60).vault_session_ttl_s == 90
    with pytest.raises(ValidationError):
        Settings(vault_session_ttl_s=89, vault_heartbeat_interval_s=60)
