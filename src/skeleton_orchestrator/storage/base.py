"""
skeleton_orchestrator.storage.base

Storage collaborator contract consumed by the orchestrator.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from skeleton_orchestrator.orchestrator.models import SessionState


@runtime_checkable
class SessionStore(Protocol):
    async def get_state(self, session_id: str) -> SessionState | None: ...

    async def save_state(self, session_id: str, state: SessionState) -> None: ...

    async def get_all_session_ids(self) -> list[str]:
        """Diagnostics only."""
        ...
