"""
skeleton_orchestrator.api.routers.sessions

Session endpoints.

Responsibilities:
- Create/read sessions and list their ids (diagnostics).
- Drive the state machine: messages, gate, skeleton generation, review plan/apply.
- Expose the clause-drafting handoff once the skeleton is frozen.
- Map orchestrator errors to HTTP status codes (404 / 409 / 422).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from skeleton_orchestrator.api.deps import orchestrator_dep
from skeleton_orchestrator.orchestrator.actions import NextAction
from skeleton_orchestrator.orchestrator.errors import (
    PatchError,
    SessionNotFoundError,
    StagePreconditionError,
)
from skeleton_orchestrator.orchestrator.models import (
    Issue,
    ReviewAnswer,
    SessionState,
    Skeleton,
    utcnow,
)
from skeleton_orchestrator.orchestrator.session_orchestrator import (
    SessionOrchestrator,
    StepResult,
)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    initial_message: str | None = None


class MessageRequest(BaseModel):
    message: str = Field(min_length=1)


class ReviewAnswerIn(BaseModel):
    question_id: str
    value: Any = None
    at: datetime | None = None


class ReviewApplyRequest(BaseModel):
    answers: list[ReviewAnswerIn]


class SessionResponse(BaseModel):
    state: SessionState
    next_action: NextAction


class SessionListResponse(BaseModel):
    session_ids: list[str]


class HandoffResponse(BaseModel):
    skeleton_final: Skeleton
    domain: dict[str, Any]
    issues: list[Issue]


@contextmanager
def _orchestrator_errors() -> Iterator[None]:
    try:
        yield
    except SessionNotFoundError as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Session not found") from e
    except StagePreconditionError as e:
        raise HTTPException(
            status_code=HTTP_409_CONFLICT,
            detail={"operation": e.operation, "message": e.message},
        ) from e
    except PatchError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": e.message, "op_index": e.op_index, "op": e.op},
        ) from e


def _response(result: StepResult) -> SessionResponse:
    return SessionResponse(state=result.state, next_action=result.next_action)


@router.post("", response_model=SessionResponse)
async def create_session(
    body: CreateSessionRequest | None = None,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    initial_message = body.initial_message if body is not None else None
    return _response(await orchestrator.create_session(initial_message))


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionListResponse:
    return SessionListResponse(session_ids=await orchestrator.list_session_ids())


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    with _orchestrator_errors():
        return _response(await orchestrator.get_session(session_id))


@router.post("/{session_id}/messages", response_model=SessionResponse)
async def send_message(
    session_id: str,
    body: MessageRequest,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    with _orchestrator_errors():
        return _response(await orchestrator.process_user_message(session_id, body.message))


@router.post("/{session_id}/gate", response_model=SessionResponse)
async def run_gate(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    with _orchestrator_errors():
        return _response(await orchestrator.proceed_to_gate(session_id))


@router.post("/{session_id}/skeleton", response_model=SessionResponse)
async def generate_skeleton(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    with _orchestrator_errors():
        return _response(await orchestrator.process_skeleton_generation(session_id))


@router.post("/{session_id}/review/plan", response_model=SessionResponse)
async def plan_review(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    with _orchestrator_errors():
        return _response(await orchestrator.process_skeleton_review_plan(session_id))


@router.post("/{session_id}/review/apply", response_model=SessionResponse)
async def apply_review(
    session_id: str,
    body: ReviewApplyRequest,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> SessionResponse:
    answers = [
        ReviewAnswer(question_id=a.question_id, value=a.value, at=a.at or utcnow())
        for a in body.answers
    ]
    with _orchestrator_errors():
        return _response(await orchestrator.process_skeleton_review_apply(session_id, answers))


@router.get("/{session_id}/handoff", response_model=HandoffResponse)
async def clause_handoff(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(orchestrator_dep),
) -> HandoffResponse:
    with _orchestrator_errors():
        handoff = await orchestrator.clause_handoff(session_id)
    return HandoffResponse(
        skeleton_final=handoff.skeleton_final,
        domain=handoff.domain,
        issues=handoff.issues,
    )
