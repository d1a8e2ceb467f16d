from __future__ import annotations

import asyncio

from caseflow.persistence.db import SessionLocal
from caseflow.services.vault import VaultSessionManager


async def sweep() -> None:
    async with SessionLocal() as session:
        expired = await VaultSessionManager().expire_stale_sessions(session)
        print(f"expired_vault_sessions={expired}")


if __name__ == "__main__":
    asyncio.run(sweep())
