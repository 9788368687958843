"""
skeleton_orchestrator.db

Persistence package (SQLAlchemy async): ORM models, engine/session setup, repositories.
"""
