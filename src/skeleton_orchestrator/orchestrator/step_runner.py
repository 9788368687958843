"""
skeleton_orchestrator.orchestrator.step_runner

Runs one oracle step for a session.

Responsibilities:
- Render the step-specific context from the session state.
- Call the oracle and turn its raw reply into an `OracleOutput`.
- Strip pointer operations that would rewrite confirmed facts, whatever the step.
- Log strict-schema mismatches as validation warnings, fail on unparsable replies, and fail
  loudly when the reply belongs to a different step.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.oracle.base import GenerationOracle
from skeleton_orchestrator.orchestrator.contracts import (
    OracleOutput,
    OracleRequest,
    StepName,
    schema_warnings,
)
from skeleton_orchestrator.orchestrator.errors import OracleError, StepMismatchError
from skeleton_orchestrator.orchestrator.models import SessionState
from skeleton_orchestrator.orchestrator.policy_guard import protect_confirmed_facts

log = get_logger(__name__)

RECENT_HISTORY_TURNS = 5


class StepRunner:
    def __init__(self, oracle: GenerationOracle) -> None:
        self._oracle = oracle

    async def run(
        self,
        step: StepName,
        state: SessionState,
        *,
        last_message: str | None = None,
    ) -> OracleOutput:
        request = OracleRequest(
            step_name=step,
            rendered_context=render_context(step, state, last_message=last_message),
        )
        raw = await self._oracle.run_step(request)
        output = parse_step_output(step, raw, session_id=state.meta.session_id)

        patch = protect_confirmed_facts(state, output.patch)
        if patch is output.patch:
            return output
        log.warning(
            "confirmed_facts_protected", session_id=state.meta.session_id, step=step.value
        )
        return output.model_copy(update={"patch": patch})


def parse_step_output(
    step: StepName, raw: Any, *, session_id: str | None = None
) -> OracleOutput:
    if not isinstance(raw, Mapping):
        raise OracleError("oracle output is not an object", step=step.value)

    warnings = schema_warnings(dict(raw))
    if warnings:
        log.warning(
            "oracle_output_validation_warning",
            session_id=session_id,
            step=step.value,
            errors=warnings[:10],
        )

    try:
        output = OracleOutput.model_validate(dict(raw))
    except ValidationError as e:
        raise OracleError(
            f"oracle output could not be parsed ({e.error_count()} errors)", step=step.value
        ) from e

    if output.step != step.value:
        raise StepMismatchError(
            f"expected step {step.value}, got {output.step}",
            step=step.value,
            expected=step.value,
            actual=output.step,
        )
    return output


def render_context(
    step: StepName, state: SessionState, *, last_message: str | None = None
) -> str:
    doc = state.to_document()
    context: dict[str, Any]

    match step:
        case StepName.interpret:
            history = doc["dialogue"]["history"][-RECENT_HISTORY_TURNS:]
            context = {
                "domain": doc["domain"],
                "issues": doc["issues"],
                "recent_history": [{"role": t["role"], "text": t["text"]} for t in history],
                "last_message": last_message or "",
            }
        case StepName.gate_check:
            context = {"state": doc}
        case StepName.skeleton_generate:
            context = {
                "locale": doc["meta"]["locale"],
                "domain": doc["domain"],
                "issues": doc["issues"],
                "gate": doc.get("gate"),
            }
        case StepName.skeleton_review_plan:
            review = doc.get("review") or {}
            context = {
                "skeleton": (doc.get("document") or {}).get("skeleton"),
                "domain": doc["domain"],
                "open_issues": [i for i in doc["issues"] if i.get("status") == "open"],
                "iteration": review.get("iteration", 0),
                "previous_answers": review.get("answers", []),
            }
        case StepName.skeleton_review_apply:
            review = doc.get("review") or {}
            context = {
                "skeleton": (doc.get("document") or {}).get("skeleton"),
                "questions": review.get("questions", []),
                "answers": review.get("answers", []),
            }

    return json.dumps(context, ensure_ascii=False, indent=2)
