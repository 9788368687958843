"""
skeleton_orchestrator.orchestrator.actions

The `next_action` contract returned to callers after every orchestrator operation.

Responsibilities:
- Model the six action kinds as a discriminated union on `kind`, each with only its own payload.
- Offer small constructors for the actions the orchestrator synthesizes itself.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Choice(_Action):
    id: str
    label: str
    value: str | int | float | bool


class AskUserPayload(_Action):
    question_id: str | None = None
    question_text: str
    answer_format: Literal["free_text", "choices"] = "free_text"
    choices: list[Choice] | None = None
    why_this_question: str | None = None
    links_to_issue_ids: list[str] | None = None


class HaltErrorPayload(_Action):
    category: Literal["schema_validation", "insufficient_context", "policy_violation", "other"]
    message: str
    suggested_recovery: str | None = None


class AskUserAction(_Action):
    kind: Literal["ask_user"] = "ask_user"
    ask_user: AskUserPayload


class ProceedToGateAction(_Action):
    kind: Literal["proceed_to_gate"] = "proceed_to_gate"


class ProceedToSkeletonAction(_Action):
    kind: Literal["proceed_to_skeleton"] = "proceed_to_skeleton"


class ShowReviewQuestionsAction(_Action):
    kind: Literal["show_review_questions"] = "show_review_questions"


class ProceedToClauseRequirementsAction(_Action):
    kind: Literal["proceed_to_clause_requirements"] = "proceed_to_clause_requirements"


class HaltErrorAction(_Action):
    kind: Literal["halt_error"] = "halt_error"
    error: HaltErrorPayload


NextAction = Annotated[
    Union[
        AskUserAction,
        ProceedToGateAction,
        ProceedToSkeletonAction,
        ShowReviewQuestionsAction,
        ProceedToClauseRequirementsAction,
        HaltErrorAction,
    ],
    Field(discriminator="kind"),
]

next_action_adapter: TypeAdapter[NextAction] = TypeAdapter(NextAction)


def ask_user(
    question_text: str,
    *,
    question_id: str | None = None,
    why: str | None = None,
    issue_ids: list[str] | None = None,
) -> AskUserAction:
    return AskUserAction(
        ask_user=AskUserPayload(
            question_id=question_id,
            question_text=question_text,
            why_this_question=why,
            links_to_issue_ids=issue_ids or None,
        )
    )


def halt_error(
    category: Literal["schema_validation", "insufficient_context", "policy_violation", "other"],
    message: str,
    *,
    suggested_recovery: str | None = None,
) -> HaltErrorAction:
    return HaltErrorAction(
        error=HaltErrorPayload(
            category=category, message=message, suggested_recovery=suggested_recovery
        )
    )


def describe_action(action: NextAction) -> str:
    """Short human-readable form of an action, used in logs."""

    match action:
        case AskUserAction(ask_user=payload):
            return f"ask_user: {payload.question_text}"
        case HaltErrorAction(error=error):
            return f"halt_error[{error.category}]: {error.message}"
        case (
            ProceedToGateAction()
            | ProceedToSkeletonAction()
            | ShowReviewQuestionsAction()
            | ProceedToClauseRequirementsAction()
        ):
            return action.kind
        case _:
            assert_never(action)
