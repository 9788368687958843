"""
skeleton_orchestrator.storage.sql

Session store backed by async SQLAlchemy.

Responsibilities:
- Map `SessionState` to and from `SessionRecord` rows through `SessionRepo`.
- Own the unit of work: one short transaction per read or write.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skeleton_orchestrator.db.repositories.sessions import SessionRepo
from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.orchestrator.models import SessionState

log = get_logger(__name__)


class SqlSessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_state(self, session_id: str) -> SessionState | None:
        async with self._session_factory() as session:
            record = await SessionRepo(session).get(session_id)
            if record is None:
                return None
            return SessionState.from_document(record.state)

    async def save_state(self, session_id: str, state: SessionState) -> None:
        async with self._session_factory() as session:
            await SessionRepo(session).upsert(
                session_id=session_id,
                stage=state.meta.stage,
                status=state.meta.status,
                state_version=state.meta.state_version,
                state=state.to_document(),
            )
            await session.commit()
        log.debug(
            "session_saved",
            session_id=session_id,
            state_version=state.meta.state_version,
        )

    async def get_all_session_ids(self) -> list[str]:
        async with self._session_factory() as session:
            return await SessionRepo(session).list_ids()


# --- Module Notes -----------------------------------------------------------
# No optimistic-lock check on `state_version`: concurrent writers to one session race and the
# last commit wins.
