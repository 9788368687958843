"""
skeleton_orchestrator.api.routers

HTTP routers (health probes and the session API).
"""
