"""
skeleton_orchestrator.oracle

Generation-oracle boundary.

Responsibilities:
- The protocol the orchestration core consumes (`GenerationOracle`).
- The HTTP client that talks to an OpenAI-compatible chat completions service.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The core depends only on `oracle.base.GenerationOracle`; tests plug in scripted oracles.
