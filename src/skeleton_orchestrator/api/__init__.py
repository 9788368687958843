"""
skeleton_orchestrator.api

API package: FastAPI app factory, dependency wiring and routers.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer stays thin: request validation and delegation to the session orchestrator.
