from __future__ import annotations

from collections.abc import Awaitable, Callable

from langgraph.graph import END, StateGraph

from skeleton_orchestrator.orchestrator.nodes import (
    append_turn_node,
    check_limits_node,
    commit_node,
    gate_node,
    interpret_node,
    mark_blocked_node,
    mark_ready_node,
    record_question_node,
    route_after_check,
    route_after_commit,
    screen_node,
)
from skeleton_orchestrator.orchestrator.state import IntakeState
from skeleton_orchestrator.orchestrator.step_runner import StepRunner


def build_intake_graph(*, runner: StepRunner):
    """
    Returns a compiled LangGraph runnable for one user-message turn.
    """

    graph = StateGraph(IntakeState)

    graph.add_node("append_turn", append_turn_node)
    graph.add_node("check_limits", check_limits_node)
    graph.add_node("interpret", _bind_runner(interpret_node, runner))
    graph.add_node("screen", screen_node)
    graph.add_node("commit", commit_node)
    graph.add_node("record_question", record_question_node)
    graph.add_node("gate", _bind_runner(gate_node, runner))
    graph.add_node("mark_ready", mark_ready_node)
    graph.add_node("mark_blocked", mark_blocked_node)

    graph.set_entry_point("append_turn")

    graph.add_edge("append_turn", "check_limits")
    graph.add_conditional_edges(
        "check_limits",
        route_after_check,
        {"continue": "interpret", "finish": END},
    )
    graph.add_conditional_edges(
        "interpret",
        route_after_check,
        {"continue": "screen", "finish": END},
    )
    graph.add_edge("screen", "commit")
    graph.add_conditional_edges(
        "commit",
        route_after_commit,
        {
            "record_question": "record_question",
            "gate": "gate",
            "mark_ready": "mark_ready",
            "mark_blocked": "mark_blocked",
        },
    )

    graph.add_edge("record_question", END)
    graph.add_edge("gate", END)
    graph.add_edge("mark_ready", END)
    graph.add_edge("mark_blocked", END)

    return graph.compile()


def _bind_runner(
    fn: Callable[..., Awaitable[IntakeState]],
    runner: StepRunner,
) -> Callable[[IntakeState], Awaitable[IntakeState]]:
    async def _wrapped(state: IntakeState) -> IntakeState:
        return await fn(state, runner=runner)

    return _wrapped
