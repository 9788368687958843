"""
skeleton_orchestrator.db.base

SQLAlchemy declarative base.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# --- Module Notes -----------------------------------------------------------
# ORM models inherit from `Base` so Alembic and `init_db` see their tables.
