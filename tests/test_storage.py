from __future__ import annotations

from pathlib import Path

import pytest

from skeleton_orchestrator.db.init_db import init_db
from skeleton_orchestrator.db.session import create_engine, create_sessionmaker
from skeleton_orchestrator.orchestrator.contracts import Patch
from skeleton_orchestrator.orchestrator.models import SessionState
from skeleton_orchestrator.orchestrator.patch_applier import apply_patch, transition
from skeleton_orchestrator.settings import Settings
from skeleton_orchestrator.storage import InMemorySessionStore, SessionStore, SqlSessionStore


@pytest.mark.asyncio
async def test_memory_store_returns_independent_copies(state: SessionState) -> None:
    store = InMemorySessionStore()
    assert isinstance(store, SessionStore)
    assert await store.get_state(state.session_id) is None

    seeded = apply_patch(state, Patch.merge({"domain": {"parties": {"customer": "А"}}}))
    await store.save_state(seeded.session_id, seeded)

    loaded = await store.get_state(seeded.session_id)
    assert loaded == seeded
    assert loaded is not seeded
    loaded.domain["parties"]["customer"] = "changed"
    assert (await store.get_state(seeded.session_id)).domain == {"parties": {"customer": "А"}}
    assert await store.get_all_session_ids() == [seeded.session_id]


@pytest.mark.asyncio
async def test_sql_store_round_trip_and_overwrite(tmp_path: Path, state: SessionState) -> None:
    settings = Settings(env="test", database_url=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    engine = create_engine(settings)
    try:
        await init_db(engine)
        store = SqlSessionStore(create_sessionmaker(engine))
        assert isinstance(store, SessionStore)
        assert await store.get_state(state.session_id) is None

        await store.save_state(state.session_id, state)
        updated = transition(
            apply_patch(state, Patch.merge({"domain": {"subject": "услуги"}})), status="gating"
        )
        await store.save_state(updated.session_id, updated)

        loaded = await store.get_state(state.session_id)
        assert loaded == updated
        assert loaded.meta.state_version == 2
        assert await store.get_all_session_ids() == [state.session_id]
    finally:
        await engine.dispose()
