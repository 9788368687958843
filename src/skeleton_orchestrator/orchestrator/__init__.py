"""
skeleton_orchestrator.orchestrator

Orchestration core.

Responsibilities:
- Typed session document, patch engine and policy guard.
- Gate, skeleton linting/ordering and review impact.
- The session state machine (with its LangGraph intake graph).
"""

# Package marker; import from submodules.
