"""
skeleton_orchestrator.orchestrator.session_orchestrator

Session state machine: intake, gate, skeleton generation and the bounded review loop.

Responsibilities:
- Load the session, check stage preconditions, run the step and persist the result on every exit.
- Turn oracle failures into `halt_error` and structural failures into persisted issues.
- Freeze the skeleton after the last review round and hand it to clause drafting.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from skeleton_orchestrator.observability.logging import get_logger, session_fields
from skeleton_orchestrator.oracle.base import GenerationOracle
from skeleton_orchestrator.orchestrator.actions import (
    NextAction,
    ProceedToClauseRequirementsAction,
    ProceedToSkeletonAction,
    ShowReviewQuestionsAction,
    ask_user,
    describe_action,
    halt_error,
)
from skeleton_orchestrator.orchestrator.contracts import IssueUpsert, Patch, StepName
from skeleton_orchestrator.orchestrator.errors import (
    OracleError,
    SessionNotFoundError,
    StagePreconditionError,
    StateSchemaError,
)
from skeleton_orchestrator.orchestrator.graph import build_intake_graph
from skeleton_orchestrator.orchestrator.models import (
    Issue,
    ReviewAnswer,
    ReviewState,
    SessionState,
    Skeleton,
    SkeletonMeta,
    new_session_state,
)
from skeleton_orchestrator.orchestrator.nodes import gate_round
from skeleton_orchestrator.orchestrator.patch_applier import (
    append_dialogue_turn,
    apply_oracle_output,
    apply_patch,
)
from skeleton_orchestrator.orchestrator.review_impact import (
    apply_impact_operations,
    impact_ops_for_answers,
)
from skeleton_orchestrator.orchestrator.skeleton_linter import count_nodes, lint_skeleton
from skeleton_orchestrator.orchestrator.skeleton_sorter import sort_skeleton
from skeleton_orchestrator.orchestrator.step_runner import StepRunner
from skeleton_orchestrator.settings import Settings, get_settings
from skeleton_orchestrator.storage.base import SessionStore

log = get_logger(__name__)

MAX_REVIEW_ITERATIONS = 2

OPENING_QUESTION = "Опишите, какой документ нужно подготовить и какую задачу он должен решить."
CONTINUE_QUESTION = "Продолжаю сбор информации для договора..."
REGENERATE_QUESTION = (
    "Сгенерированная структура документа не прошла проверку. Сгенерировать её заново?"
)


@dataclass(frozen=True, slots=True)
class StepResult:
    state: SessionState
    next_action: NextAction


@dataclass(frozen=True, slots=True)
class ClauseHandoff:
    skeleton_final: Skeleton
    domain: dict[str, Any]
    issues: list[Issue]


def derive_next_action(state: SessionState) -> NextAction:
    """What the caller should do next, judging from the persisted state alone."""

    stage, status = state.meta.stage, state.meta.status
    if stage == "skeleton_final":
        return ProceedToClauseRequirementsAction()
    if status == "blocked":
        return halt_error(
            "other",
            "Сессия заблокирована",
            suggested_recovery="Повторите последнее действие",
        )
    if stage in ("skeleton_ready", "skeleton_review"):
        return ShowReviewQuestionsAction()
    if status == "ready":
        return ProceedToSkeletonAction()

    gate = state.gate
    if gate is not None and not gate.ready_for_skeleton:
        text = gate.blockers[0].message if gate.blockers else gate.summary
        return ask_user(text or CONTINUE_QUESTION)
    return ask_user(CONTINUE_QUESTION)


class SessionOrchestrator:
    def __init__(
        self,
        *,
        store: SessionStore,
        oracle: GenerationOracle,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._runner = StepRunner(oracle)
        self._intake = build_intake_graph(runner=self._runner)

    # --- Plumbing ---------------------------------------------------------------

    async def _load(self, session_id: str) -> SessionState:
        state = await self._store.get_state(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    async def _finish(self, state: SessionState, action: NextAction) -> StepResult:
        await self._store.save_state(state.meta.session_id, state)
        log.info("session_step_finished", next_action=describe_action(action), **session_fields(state))
        return StepResult(state=state, next_action=action)

    # --- Intake -----------------------------------------------------------------

    async def create_session(self, initial_message: str | None = None) -> StepResult:
        state = new_session_state(self._settings)
        if initial_message:
            state = append_dialogue_turn(state, role="user", text=initial_message)
        log.info("session_created", **session_fields(state))
        return await self._finish(state, ask_user(OPENING_QUESTION))

    async def get_session(self, session_id: str) -> StepResult:
        state = await self._load(session_id)
        return StepResult(state=state, next_action=derive_next_action(state))

    async def list_session_ids(self) -> list[str]:
        return await self._store.get_all_session_ids()

    async def process_user_message(self, session_id: str, message: str) -> StepResult:
        state = await self._load(session_id)
        if state.meta.stage != "pre_skeleton":
            raise StagePreconditionError(
                "process_user_message",
                f"expected stage 'pre_skeleton', got '{state.meta.stage}'",
            )

        result = await self._intake.ainvoke(
            {
                "session": state,
                "user_message": message,
                "oracle_output": None,
                "next_action": None,
                "trace": [],
            }
        )
        log.debug("intake_trace", trace=result.get("trace", []), **session_fields(result["session"]))
        return await self._finish(result["session"], result["next_action"])

    async def proceed_to_gate(self, session_id: str) -> StepResult:
        state = await self._load(session_id)
        if state.meta.stage != "pre_skeleton":
            raise StagePreconditionError(
                "proceed_to_gate", f"expected stage 'pre_skeleton', got '{state.meta.stage}'"
            )
        state, action = await gate_round(state, self._runner)
        return await self._finish(state, action)

    # --- Skeleton ---------------------------------------------------------------

    async def process_skeleton_generation(self, session_id: str) -> StepResult:
        state = await self._load(session_id)
        if state.meta.stage != "pre_skeleton":
            raise StagePreconditionError(
                "process_skeleton_generation",
                f"expected stage 'pre_skeleton', got '{state.meta.stage}'",
            )
        if state.gate is None or not state.gate.ready_for_skeleton:
            raise StagePreconditionError(
                "process_skeleton_generation", "gate check must pass before skeleton generation"
            )

        try:
            output = await self._runner.run(StepName.skeleton_generate, state)
        except OracleError as e:
            log.error("skeleton_generation_failed", error=str(e), **session_fields(state))
            state = apply_patch(state, Patch.merge({"meta": {"status": "blocked"}}))
            return await self._finish(
                state,
                halt_error(
                    "other",
                    f"Не удалось сгенерировать структуру документа: {e}",
                    suggested_recovery="Повторите генерацию",
                ),
            )

        try:
            candidate = apply_oracle_output(state, output)
        except StateSchemaError as e:
            log.warning("skeleton_schema_invalid", error=str(e), **session_fields(state))
            return await self._reject_skeleton(state, _schema_issue(str(e)), [])

        skeleton = candidate.skeleton
        if skeleton is None:
            return await self._reject_skeleton(
                state, _schema_issue("ответ не содержит document.skeleton"), []
            )

        lint = lint_skeleton(skeleton)
        if not lint.valid:
            log.warning("skeleton_lint_failed", issues=len(lint.issues), **session_fields(candidate))
            return await self._reject_skeleton(state, _lint_issue(lint.issues), lint.issues)

        ordered = sort_skeleton(skeleton)
        stale = _stale_rejection_ids(state, ordered.issues)
        skeleton_meta = SkeletonMeta(
            generated_by_step=StepName.skeleton_generate.value,
            node_count=count_nodes(ordered.skeleton),
        )
        state = apply_patch(
            candidate,
            Patch.merge(
                {
                    "document": {
                        "skeleton": ordered.skeleton.model_dump(mode="json"),
                        "skeleton_meta": skeleton_meta.model_dump(mode="json"),
                    },
                    "meta": {"stage": "skeleton_ready", "status": "ready"},
                }
            ),
            issue_updates=[
                *(IssueUpsert(op="upsert", issue=i) for i in ordered.issues),
                *(IssueUpsert(op="resolve", issue=Issue(id=i)) for i in stale),
            ],
        )
        log.info(
            "skeleton_generated",
            node_count=skeleton_meta.node_count,
            ordering_issues=len(ordered.issues),
            **session_fields(state),
        )
        return await self._finish(state, ShowReviewQuestionsAction())

    async def _reject_skeleton(
        self, state: SessionState, summary: Issue, details: Sequence[Issue]
    ) -> StepResult:
        updates = [IssueUpsert(op="upsert", issue=i) for i in (*details, summary)]
        state = apply_patch(state, Patch.merge({"meta": {"status": "blocked"}}), issue_updates=updates)
        action = ask_user(
            REGENERATE_QUESTION,
            question_id=f"regenerate_skeleton_v{state.meta.state_version}",
            why=summary.resolution_hint,
            issue_ids=[summary.id],
        )
        return await self._finish(state, action)

    # --- Review loop ------------------------------------------------------------

    async def process_skeleton_review_plan(self, session_id: str) -> StepResult:
        state = await self._load(session_id)
        if state.meta.stage not in ("skeleton_ready", "skeleton_review"):
            raise StagePreconditionError(
                "process_skeleton_review_plan",
                f"expected stage 'skeleton_ready' or 'skeleton_review', got '{state.meta.stage}'",
            )
        if state.skeleton is None:
            raise StagePreconditionError(
                "process_skeleton_review_plan", "skeleton must exist before review planning"
            )
        state, action = await self._plan_review(state)
        return await self._finish(state, action)

    async def _plan_review(self, state: SessionState) -> tuple[SessionState, NextAction]:
        try:
            output = await self._runner.run(StepName.skeleton_review_plan, state)
        except OracleError as e:
            log.error("review_plan_failed", error=str(e), **session_fields(state))
            return state, halt_error(
                "other",
                f"Не удалось подготовить вопросы по структуре: {e}",
                suggested_recovery="Повторите запрос вопросов",
            )

        state = apply_oracle_output(state, output)

        changes: dict[str, Any] = {}
        if state.review is None:
            changes["review"] = ReviewState(status="collecting").model_dump(mode="json")
        if state.meta.stage != "skeleton_review":
            changes["meta"] = {"stage": "skeleton_review"}
        if changes:
            state = apply_patch(state, Patch.merge(changes))

        assert state.review is not None
        log.info(
            "review_planned",
            iteration=state.review.iteration,
            questions=len(state.review.questions),
            **session_fields(state),
        )
        return state, ShowReviewQuestionsAction()

    async def process_skeleton_review_apply(
        self, session_id: str, answers: Sequence[ReviewAnswer]
    ) -> StepResult:
        state = await self._load(session_id)
        review = state.review
        if review is None:
            raise StagePreconditionError(
                "process_skeleton_review_apply", "review block does not exist; plan the review first"
            )
        if review.status not in ("ready_to_apply", "collecting", "applied"):
            raise StagePreconditionError(
                "process_skeleton_review_apply",
                f"review is {review.status}; no more answers can be applied",
            )
        if not review.questions:
            raise StagePreconditionError(
                "process_skeleton_review_apply", "review questions must exist before applying answers"
            )
        if not answers:
            raise StagePreconditionError("process_skeleton_review_apply", "answers are required")
        if state.skeleton is None:
            raise StagePreconditionError("process_skeleton_review_apply", "skeleton is missing")

        recorded = [*review.answers, *answers]
        state = apply_patch(
            state,
            Patch.merge(
                {
                    "review": {
                        "answers": [a.model_dump(mode="json") for a in recorded],
                        "status": "ready_to_apply",
                    }
                }
            ),
        )

        assert state.review is not None
        ops = impact_ops_for_answers(state.review, answers)
        if ops:
            state = apply_impact_operations(state, ops)

        if self._settings.review_apply_refinement:
            state = await self._refine_review(state)

        iteration = review.iteration + 1
        if iteration >= MAX_REVIEW_ITERATIONS:
            skeleton = state.skeleton
            assert skeleton is not None
            state = apply_patch(
                state,
                Patch.merge(
                    {
                        "document": {
                            "skeleton_final": skeleton.model_dump(mode="json"),
                            "freeze": {"structure": True},
                        },
                        "review": {"iteration": iteration, "status": "frozen"},
                        "meta": {"stage": "skeleton_final", "status": "ready"},
                    }
                ),
            )
            log.info("skeleton_frozen", iteration=iteration, **session_fields(state))
            return await self._finish(state, ProceedToClauseRequirementsAction())

        state = apply_patch(
            state, Patch.merge({"review": {"iteration": iteration, "status": "applied"}})
        )
        state, action = await self._plan_review(state)
        return await self._finish(state, action)

    async def _refine_review(self, state: SessionState) -> SessionState:
        try:
            output = await self._runner.run(StepName.skeleton_review_apply, state)
        except OracleError as e:
            log.error("review_refinement_failed", error=str(e), **session_fields(state))
            return state
        return apply_oracle_output(state, output)

    # --- Handoff ----------------------------------------------------------------

    async def clause_handoff(self, session_id: str) -> ClauseHandoff:
        state = await self._load(session_id)
        final = state.document.skeleton_final if state.document else None
        if state.meta.stage != "skeleton_final" or final is None:
            raise StagePreconditionError(
                "clause_handoff", f"skeleton is not frozen yet (stage '{state.meta.stage}')"
            )
        return ClauseHandoff(skeleton_final=final, domain=dict(state.domain), issues=list(state.issues))


def _schema_issue(detail: str) -> Issue:
    return Issue(
        id="skeleton_schema_invalid",
        key="skeleton_schema_invalid",
        severity="high",
        title="Структура документа не соответствует схеме",
        why_it_matters="Без корректной структуры невозможно продолжить работу над документом",
        missing_or_conflict=detail,
        resolution_hint="Сгенерируйте структуру документа заново",
    )


_REJECTION_ISSUE_IDS = ("skeleton_schema_invalid", "skeleton_validation_failed")


def _stale_rejection_ids(state: SessionState, fresh: Sequence[Issue]) -> list[str]:
    """Open issues left by earlier rejected generations, with the lint findings they link to."""
    keep = {i.id for i in fresh}
    stale: list[str] = []
    for issue in state.issues:
        if issue.status != "open" or issue.id not in _REJECTION_ISSUE_IDS:
            continue
        for issue_id in (issue.id, *issue.linked_issue_ids):
            if issue_id not in keep and issue_id not in stale:
                stale.append(issue_id)
    return stale


def _lint_issue(found: Sequence[Issue]) -> Issue:
    titles = "; ".join(i.title for i in found[:5])
    more = f" и ещё {len(found) - 5}" if len(found) > 5 else ""
    return Issue(
        id="skeleton_validation_failed",
        key="skeleton_validation_failed",
        severity="high",
        title="Структура документа не прошла валидацию",
        why_it_matters="Найдены структурные ошибки, которые помешают генерации текста",
        missing_or_conflict=f"{titles}{more}",
        resolution_hint="Сгенерируйте структуру документа заново или исправьте отмеченные узлы",
        linked_issue_ids=[i.id for i in found],
    )


# --- Module Notes -----------------------------------------------------------
# No locking and no version check against storage: two concurrent operations on one session id
# race and the last `save_state` wins.
