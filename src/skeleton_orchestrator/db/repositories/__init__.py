"""
skeleton_orchestrator.db.repositories

Data-access repositories; imported directly from submodules.
"""
