"""
skeleton_orchestrator.db.init_db

Table bootstrap for local development and tests; deployments run Alembic migrations.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from skeleton_orchestrator.db import models  # noqa: F401  (registers tables on Base.metadata)
from skeleton_orchestrator.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
