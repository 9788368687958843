"""
skeleton_orchestrator.orchestrator.policy_guard

Policy checks applied around every oracle step.

Responsibilities:
- Question de-duplication against the asked-question log.
- Question-rate and dialogue-length limits.
- Protection of confirmed facts from oracle rewrites.
- Detection of oracle outputs flagged as resting on unconfirmed assumptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from skeleton_orchestrator.orchestrator.actions import AskUserPayload
from skeleton_orchestrator.orchestrator.contracts import OracleOutput, Patch
from skeleton_orchestrator.orchestrator.models import SessionState, utcnow

QUESTION_WINDOW = timedelta(minutes=5)
CONFIRMED_FACTS_PATH = "/domain/facts/confirmed"


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class InventedValuesCheck:
    detected: bool
    reason: str | None = None


def _normalize_text(text: str) -> str:
    return text.strip().casefold()


def check_question_deduplication(state: SessionState, question: AskUserPayload) -> PolicyDecision:
    """
    Blocks a question whose id, or whose normalized text, is already in `dialogue.asked`.

    Matching stays literal (id / fingerprint equality, case-insensitive trimmed text); no
    similarity scoring is applied.
    """

    asked = state.dialogue.asked
    if question.question_id:
        for q in asked:
            if q.id == question.question_id or q.semantic_fingerprint == question.question_id:
                return PolicyDecision(
                    False, f"Question with id {question.question_id} was already asked"
                )

    proposed = _normalize_text(question.question_text)
    for q in asked:
        if _normalize_text(q.text) == proposed:
            return PolicyDecision(False, f"Similar question was already asked: {q.text}")

    return PolicyDecision(True)


def check_limits(state: SessionState, *, now: datetime | None = None) -> PolicyDecision:
    limits = state.control.limits
    cutoff = (now or utcnow()) - QUESTION_WINDOW

    recent = sum(1 for q in state.dialogue.asked if q.at > cutoff)
    if recent >= limits.max_questions_per_run:
        return PolicyDecision(
            False,
            f"Max questions per run exceeded: {recent} >= {limits.max_questions_per_run}. "
            "Please wait a moment or increase the limit.",
        )

    turns = len(state.dialogue.history)
    if turns >= limits.max_history_turns:
        return PolicyDecision(
            False, f"Max history turns exceeded: {turns} >= {limits.max_history_turns}"
        )

    return PolicyDecision(True)


def protect_confirmed_facts(state: SessionState, patch: Patch) -> Patch:
    """Drop pointer operations that would remove or replace anything under confirmed facts."""

    if patch.format != "pointer":
        return patch

    def rewrites_confirmed(path: str | None) -> bool:
        if not path:
            return False
        normalized = path if path.startswith("/") else "/" + path
        return normalized == CONFIRMED_FACTS_PATH or normalized.startswith(CONFIRMED_FACTS_PATH + "/")

    kept = [
        op
        for op in patch.pointer_ops
        if not (
            (op.op in ("remove", "replace") and rewrites_confirmed(op.path))
            or (op.op == "move" and rewrites_confirmed(op.from_))
        )
    ]
    if len(kept) == len(patch.pointer_ops):
        return patch
    return Patch(format="pointer", ops=kept)


def detect_invented_values(state: SessionState, output: OracleOutput) -> InventedValuesCheck:
    if output.safety is not None and output.safety.has_unconfirmed_assumptions:
        return InventedValuesCheck(True, "Oracle output contains unconfirmed assumptions")
    return InventedValuesCheck(False)


# --- Module Notes -----------------------------------------------------------
# `dialogue.asked[].semantic_fingerprint` is stored when a caller supplies one but is never
# computed here.
