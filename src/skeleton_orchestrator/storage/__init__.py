"""
skeleton_orchestrator.storage

Session stores behind the `SessionStore` protocol (in-memory and SQL).
"""

from skeleton_orchestrator.storage.base import SessionStore
from skeleton_orchestrator.storage.memory import InMemorySessionStore
from skeleton_orchestrator.storage.sql import SqlSessionStore

__all__ = ["InMemorySessionStore", "SessionStore", "SqlSessionStore"]
