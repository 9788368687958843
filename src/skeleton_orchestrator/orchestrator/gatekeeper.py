"""
skeleton_orchestrator.orchestrator.gatekeeper

Readiness gate between intake and skeleton generation.

Responsibilities:
- Run the GATE_CHECK step and commit its patch.
- Fall back to a conservative "not ready" gate when the oracle did not populate one.
- Pick the blocker the user should be asked about next.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from skeleton_orchestrator.observability.logging import get_logger, session_fields
from skeleton_orchestrator.orchestrator.contracts import Patch, StepName
from skeleton_orchestrator.orchestrator.models import Gate, GateBlocker, SessionState
from skeleton_orchestrator.orchestrator.patch_applier import apply_oracle_output, apply_patch
from skeleton_orchestrator.orchestrator.step_runner import StepRunner

log = get_logger(__name__)

FALLBACK_SUMMARY = "Не удалось определить готовность. Требуется дополнительная информация."


@dataclass(frozen=True, slots=True)
class GateResult:
    ready: bool
    summary: str
    blockers: list[GateBlocker]
    updated_state: SessionState


async def check_gate(state: SessionState, runner: StepRunner) -> GateResult:
    output = await runner.run(StepName.gate_check, state)
    updated = apply_oracle_output(state, output)

    gate = updated.gate
    if gate is None:
        log.error("gate_not_populated", output_id=output.output_id, **session_fields(updated))
        fallback = Gate(ready_for_skeleton=False, summary=FALLBACK_SUMMARY, blockers=[])
        updated = apply_patch(updated, Patch.merge({"gate": fallback.model_dump(mode="json")}))
        gate = fallback

    log.info(
        "gate_checked",
        ready=gate.ready_for_skeleton,
        blockers=len(gate.blockers),
        **session_fields(updated),
    )
    return GateResult(
        ready=gate.ready_for_skeleton,
        summary=gate.summary,
        blockers=list(gate.blockers),
        updated_state=updated,
    )


def select_top_blocker(blockers: Sequence[GateBlocker]) -> GateBlocker | None:
    """First critical blocker, else the first blocker of any severity."""
    for blocker in blockers:
        if blocker.severity == "critical":
            return blocker
    return blockers[0] if blockers else None
