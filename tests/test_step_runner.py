from __future__ import annotations

import json

import pytest

from skeleton_orchestrator.orchestrator.actions import AskUserAction
from skeleton_orchestrator.orchestrator.contracts import StepName
from skeleton_orchestrator.orchestrator.errors import OracleError, StepMismatchError
from skeleton_orchestrator.orchestrator.models import SessionState
from skeleton_orchestrator.orchestrator.patch_applier import append_dialogue_turn
from skeleton_orchestrator.orchestrator.step_runner import (
    RECENT_HISTORY_TURNS,
    StepRunner,
    parse_step_output,
    render_context,
)

from conftest import ScriptedOracle, ask, step_output


@pytest.mark.asyncio
async def test_run_parses_output_and_sends_rendered_context(state: SessionState) -> None:
    oracle = ScriptedOracle(step_output("INTERPRET", next_action=ask("Кто стороны?", "q1")))

    output = await StepRunner(oracle).run(StepName.interpret, state, last_message="Нужен договор")

    assert isinstance(output.next_action, AskUserAction)
    assert output.next_action.ask_user.question_id == "q1"
    request = oracle.requests[0]
    assert request.step_name is StepName.interpret
    assert json.loads(request.rendered_context)["last_message"] == "Нужен договор"


def test_step_mismatch_is_an_error() -> None:
    with pytest.raises(StepMismatchError) as excinfo:
        parse_step_output(StepName.gate_check, step_output("INTERPRET"))

    assert excinfo.value.expected == "GATE_CHECK"
    assert excinfo.value.actual == "INTERPRET"


@pytest.mark.parametrize(
    "raw",
    [
        "not an object",
        {"step": "INTERPRET"},
        {"step": "INTERPRET", "next_action": {"kind": "dance"}},
    ],
)
def test_unparsable_output_is_an_oracle_error(raw: object) -> None:
    with pytest.raises(OracleError):
        parse_step_output(StepName.interpret, raw)


def test_lenient_output_is_accepted_with_aliases() -> None:
    raw = {
        "step": "INTERPRET",
        "patch": {"format": "json_patch", "ops": [{"op": "add", "path": "/domain/a", "value": 1}]},
        "issue_updates": None,
        "next_action": {"kind": "proceed_to_gate"},
        "unexpected": "ignored",
    }

    output = parse_step_output(StepName.interpret, raw)

    assert output.patch.format == "pointer"
    assert output.issue_updates == []
    assert output.output_id is None


def test_interpret_context_keeps_recent_history_only(state: SessionState) -> None:
    for i in range(RECENT_HISTORY_TURNS + 2):
        state = append_dialogue_turn(state, role="user", text=f"сообщение {i}")

    context = json.loads(render_context(StepName.interpret, state, last_message="последнее"))

    assert len(context["recent_history"]) == RECENT_HISTORY_TURNS
    assert context["recent_history"][-1] == {
        "role": "user",
        "text": f"сообщение {RECENT_HISTORY_TURNS + 1}",
    }
    assert context["last_message"] == "последнее"


def test_review_contexts_tolerate_missing_review(state: SessionState) -> None:
    plan = json.loads(render_context(StepName.skeleton_review_plan, state))
    apply = json.loads(render_context(StepName.skeleton_review_apply, state))

    assert plan["iteration"] == 0
    assert plan["skeleton"] is None
    assert apply["questions"] == [] and apply["answers"] == []
