from __future__ import annotations

import os
from pathlib import Path
import tempfile

# Point settings at an isolated database before any caseflow module builds the engine.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="caseflow-tests-"))
os.environ["DATABASE_URL"] = os.environ.get(
    "CASEFLOW_TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'caseflow.db'}",
)
# Keep PIN hashing cheap in tests; production uses the configured work factor.
os.environ.setdefault("VAULT_PIN_HASH_ITERATIONS", "1000")
os.environ["AUTH_DEV_BYPASS"] = "false"

import pytest  # noqa: E402

from caseflow.domain.models import Base  # noqa: E402
from caseflow.persistence.db import engine  # noqa: E402
from caseflow.services.events import drain_pending  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_schema_between_tests() -> None:
    # Rebuild tables per test so rows never leak between cases.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_pending()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
