"""
skeleton_orchestrator.api.app

FastAPI app factory for the skeleton orchestrator service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Initialize and dispose shared infrastructure (session store, DB engine, oracle HTTP client).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from skeleton_orchestrator import __version__
from skeleton_orchestrator.api.routers.health import router as health_router
from skeleton_orchestrator.api.routers.sessions import router as sessions_router
from skeleton_orchestrator.db.init_db import init_db
from skeleton_orchestrator.db.session import create_engine, create_sessionmaker
from skeleton_orchestrator.observability.logging import configure_logging, get_logger
from skeleton_orchestrator.observability.middleware import RequestContextMiddleware
from skeleton_orchestrator.oracle.base import GenerationOracle
from skeleton_orchestrator.oracle.chat_completions import ChatCompletionsOracle
from skeleton_orchestrator.orchestrator.session_orchestrator import SessionOrchestrator
from skeleton_orchestrator.settings import Settings
from skeleton_orchestrator.storage.base import SessionStore
from skeleton_orchestrator.storage.memory import InMemorySessionStore
from skeleton_orchestrator.storage.sql import SqlSessionStore

log = get_logger(__name__)


def create_app(
    *,
    settings: Settings,
    oracle: GenerationOracle | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    """
    `oracle` and `store` override the settings-driven collaborators (tests, embedding).
    """

    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env, storage=settings.storage_backend)

        app.state.engine = None
        session_store = store
        if session_store is None and settings.storage_backend == "sql":
            engine = create_engine(settings)
            app.state.engine = engine
            if settings.env in ("dev", "test"):
                # Dev/test convenience; deployments run Alembic migrations.
                await init_db(engine)
            session_store = SqlSessionStore(create_sessionmaker(engine))
        elif session_store is None:
            session_store = InMemorySessionStore()

        http: httpx.AsyncClient | None = None
        step_oracle = oracle
        if step_oracle is None:
            http = httpx.AsyncClient()
            step_oracle = ChatCompletionsOracle(settings=settings, http=http)

        app.state.orchestrator = SessionOrchestrator(
            store=session_store, oracle=step_oracle, settings=settings
        )
        try:
            yield
        finally:
            if http is not None:
                await http.aclose()
            if app.state.engine is not None:
                # Dispose the engine to close pools/FDs gracefully.
                await app.state.engine.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="Skeleton Session Orchestrator",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(sessions_router)

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; routers only translate HTTP to orchestrator calls.
