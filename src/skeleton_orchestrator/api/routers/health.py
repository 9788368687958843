"""
skeleton_orchestrator.api.routers.health

Health and readiness endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from skeleton_orchestrator.api.deps import engine_dep

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(engine: AsyncEngine | None = Depends(engine_dep)) -> dict[str, str]:
    # With the SQL store, the database must answer.
    if engine is not None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    return {"status": "ready"}
