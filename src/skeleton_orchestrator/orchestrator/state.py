"""
skeleton_orchestrator.orchestrator.state

Typed state schema used by the LangGraph intake graph.

Responsibilities:
- Define the contract between intake nodes (inputs/outputs).
- Carry the session document through the graph; persistence stays with the orchestrator.
"""

from __future__ import annotations

from typing import Annotated, TypedDict

from skeleton_orchestrator.orchestrator.actions import NextAction
from skeleton_orchestrator.orchestrator.contracts import OracleOutput
from skeleton_orchestrator.orchestrator.models import SessionState
from skeleton_orchestrator.orchestrator.reducers import append_trace


class IntakeState(TypedDict, total=False):
    # Inputs
    session: SessionState
    user_message: str

    # Step output after policy screening
    oracle_output: OracleOutput | None

    # Result handed back to the caller
    next_action: NextAction | None

    # Visited nodes, in order
    trace: Annotated[list[str], append_trace]


# --- Module Notes -----------------------------------------------------------
# Nodes return partial updates; only `trace` is merged (appended), every other key is replaced.
