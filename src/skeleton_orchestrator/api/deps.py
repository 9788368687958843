"""
skeleton_orchestrator.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for the session orchestrator and the database engine.
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from skeleton_orchestrator.orchestrator.session_orchestrator import SessionOrchestrator


def orchestrator_dep(request: Request) -> SessionOrchestrator:
    # Created in the app lifespan (`skeleton_orchestrator.api.app.create_app`).
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def engine_dep(request: Request) -> AsyncEngine | None:
    # None when the in-memory store is active.
    return getattr(request.app.state, "engine", None)
