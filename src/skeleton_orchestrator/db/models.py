"""
skeleton_orchestrator.db.models

Persistence schema for session documents.

Responsibilities:
- `SessionRecord`: one row per session, holding the full JSON session document plus a few
  denormalized columns (stage, status, state_version) for diagnostics and listing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from skeleton_orchestrator.db.base import Base
from skeleton_orchestrator.orchestrator.models import utcnow


class SessionRecord(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    stage: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


# --- Module Notes -----------------------------------------------------------
# `state` is the source of truth; the other columns are rewritten from it on every save.
