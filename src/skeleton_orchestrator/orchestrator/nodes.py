from __future__ import annotations

from skeleton_orchestrator.observability.logging import get_logger, session_fields
from skeleton_orchestrator.orchestrator.actions import (
    AskUserAction,
    NextAction,
    ProceedToGateAction,
    ProceedToSkeletonAction,
    ask_user,
    halt_error,
)
from skeleton_orchestrator.orchestrator.contracts import StepName
from skeleton_orchestrator.orchestrator.errors import OracleError
from skeleton_orchestrator.orchestrator.gatekeeper import (
    FALLBACK_SUMMARY,
    check_gate,
    select_top_blocker,
)
from skeleton_orchestrator.orchestrator.models import SessionState
from skeleton_orchestrator.orchestrator.patch_applier import (
    add_asked_question,
    append_dialogue_turn,
    apply_oracle_output,
    transition,
)
from skeleton_orchestrator.orchestrator.policy_guard import (
    check_limits,
    check_question_deduplication,
    detect_invented_values,
)
from skeleton_orchestrator.orchestrator.state import IntakeState
from skeleton_orchestrator.orchestrator.step_runner import StepRunner

log = get_logger(__name__)

BLOCKER_WHY = "Этот вопрос закрывает критичный блокер: {message}"


async def gate_round(
    session: SessionState, runner: StepRunner
) -> tuple[SessionState, NextAction]:
    """
    One pass through the readiness gate.

    Ready: status `ready`, `proceed_to_skeleton`. Not ready: status `collecting` and a question built
    from the top blocker (or the gate summary). Oracle failure: status `blocked`, `halt_error`.
    """

    if session.meta.status != "gating":
        session = transition(session, status="gating")

    try:
        result = await check_gate(session, runner)
    except OracleError as e:
        log.error("gate_check_failed", error=str(e), **session_fields(session))
        session = transition(session, status="blocked")
        return session, halt_error(
            "other",
            f"Не удалось выполнить проверку готовности: {e}",
            suggested_recovery="Повторите попытку позже",
        )

    session = result.updated_state
    if result.ready:
        session = transition(session, status="ready")
        return session, ProceedToSkeletonAction()

    session = transition(session, status="collecting")
    blocker = select_top_blocker(result.blockers)
    if blocker is not None:
        session = add_asked_question(session, text=blocker.message)
        return session, ask_user(
            blocker.message,
            why=BLOCKER_WHY.format(message=blocker.message),
            issue_ids=blocker.linked_issue_ids,
        )
    return session, ask_user(result.summary or FALLBACK_SUMMARY, why=result.summary or None)


async def append_turn_node(state: IntakeState) -> IntakeState:
    session = append_dialogue_turn(state["session"], role="user", text=state["user_message"])
    return {"session": session, "trace": ["append_turn"]}


async def check_limits_node(state: IntakeState) -> IntakeState:
    session = state["session"]
    decision = check_limits(session)
    if decision.allowed:
        return {"trace": ["check_limits"]}

    log.warning("limits_exceeded", reason=decision.reason, **session_fields(session))
    return {
        "next_action": halt_error("policy_violation", decision.reason or "Limits exceeded"),
        "trace": ["check_limits"],
    }


async def interpret_node(state: IntakeState, *, runner: StepRunner) -> IntakeState:
    session = state["session"]
    try:
        output = await runner.run(
            StepName.interpret, session, last_message=state.get("user_message")
        )
    except OracleError as e:
        log.error("interpret_failed", error=str(e), **session_fields(session))
        return {
            "next_action": halt_error(
                "other",
                f"Не удалось обработать сообщение: {e}",
                suggested_recovery="Отправьте сообщение ещё раз",
            ),
            "trace": ["interpret"],
        }
    return {"oracle_output": output, "trace": ["interpret"]}


async def screen_node(state: IntakeState) -> IntakeState:
    session = state["session"]
    output = state["oracle_output"]
    assert output is not None

    invented = detect_invented_values(session, output)
    if invented.detected and session.control.checks.require_user_confirmation_for_assumptions:
        log.warning("unconfirmed_assumptions", reason=invented.reason, **session_fields(session))

    action = output.next_action
    if isinstance(action, AskUserAction):
        decision = check_question_deduplication(session, action.ask_user)
        if not decision.allowed:
            log.info("question_deduplicated", reason=decision.reason, **session_fields(session))
            action = ProceedToGateAction()

    return {"next_action": action, "trace": ["screen"]}


async def commit_node(state: IntakeState) -> IntakeState:
    output = state["oracle_output"]
    assert output is not None
    session = apply_oracle_output(state["session"], output)
    log.info(
        "interpret_committed",
        next_action=output.next_action.kind,
        **session_fields(session),
    )
    return {"session": session, "trace": ["commit"]}


async def record_question_node(state: IntakeState) -> IntakeState:
    action = state["next_action"]
    assert isinstance(action, AskUserAction)
    session = add_asked_question(
        state["session"],
        text=action.ask_user.question_text,
        question_id=action.ask_user.question_id,
    )
    return {"session": session, "trace": ["record_question"]}


async def gate_node(state: IntakeState, *, runner: StepRunner) -> IntakeState:
    session, action = await gate_round(state["session"], runner)
    return {"session": session, "next_action": action, "trace": ["gate"]}


async def mark_ready_node(state: IntakeState) -> IntakeState:
    session = state["session"]
    if session.meta.status != "ready":
        session = transition(session, status="ready")
    return {"session": session, "trace": ["mark_ready"]}


async def mark_blocked_node(state: IntakeState) -> IntakeState:
    session = transition(state["session"], status="blocked")
    return {"session": session, "trace": ["mark_blocked"]}


def route_after_check(state: IntakeState) -> str:
    if state.get("next_action") is not None:
        return "finish"
    return "continue"


def route_after_commit(state: IntakeState) -> str:
    action = state.get("next_action")
    session = state["session"]
    kind = action.kind if action is not None else None

    if kind == "ask_user":
        return "record_question"
    if kind == "halt_error":
        return "mark_blocked"
    if kind == "proceed_to_skeleton":
        # Skeleton generation needs a ready gate; an INTERPRET shortcut goes through the gate.
        if session.gate is not None and session.gate.ready_for_skeleton:
            return "mark_ready"
        return "gate"
    if kind != "proceed_to_gate":
        log.warning("unexpected_intake_action", next_action=kind, **session_fields(session))
    return "gate"
