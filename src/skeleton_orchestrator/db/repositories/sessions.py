"""
skeleton_orchestrator.db.repositories.sessions

Repository for `SessionRecord` rows.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skeleton_orchestrator.db.models import SessionRecord


class SessionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, session_id: str) -> SessionRecord | None:
        return await self._session.get(SessionRecord, session_id)

    async def upsert(
        self,
        *,
        session_id: str,
        stage: str,
        status: str,
        state_version: int,
        state: dict[str, Any],
    ) -> SessionRecord:
        # Plain read-then-write, no row lock: the last writer wins.
        record = await self._session.get(SessionRecord, session_id)
        if record is None:
            record = SessionRecord(id=session_id)
            self._session.add(record)
        record.stage = stage
        record.status = status
        record.state_version = state_version
        record.state = state
        await self._session.flush()
        return record

    async def list_ids(self) -> list[str]:
        stmt = select(SessionRecord.id).order_by(SessionRecord.created_at)
        return list((await self._session.execute(stmt)).scalars().all())
