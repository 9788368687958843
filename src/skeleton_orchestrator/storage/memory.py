"""
skeleton_orchestrator.storage.memory

Process-local session store for tests and single-process development.
"""

from __future__ import annotations

import copy
from typing import Any

from skeleton_orchestrator.orchestrator.models import SessionState


class InMemorySessionStore:
    def __init__(self) -> None:
        # JSON snapshots, so no caller ever shares nested containers with the store.
        self._docs: dict[str, dict[str, Any]] = {}

    async def get_state(self, session_id: str) -> SessionState | None:
        doc = self._docs.get(session_id)
        if doc is None:
            return None
        return SessionState.from_document(copy.deepcopy(doc))

    async def save_state(self, session_id: str, state: SessionState) -> None:
        self._docs[session_id] = state.to_document()

    async def get_all_session_ids(self) -> list[str]:
        return list(self._docs)
