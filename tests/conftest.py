"""
tests.conftest

Shared fixtures: a scripted generation oracle and builders for step outputs and skeletons.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from skeleton_orchestrator.oracle.base import GenerationOracle
from skeleton_orchestrator.orchestrator.contracts import OracleRequest
from skeleton_orchestrator.orchestrator.errors import OracleError
from skeleton_orchestrator.orchestrator.models import SessionState, new_session_state
from skeleton_orchestrator.orchestrator.session_orchestrator import SessionOrchestrator
from skeleton_orchestrator.settings import Settings
from skeleton_orchestrator.storage.memory import InMemorySessionStore


class ScriptedOracle:
    """Replays queued step outputs in order; an `Exception` in the queue is raised instead."""

    def __init__(self, *outputs: Mapping[str, Any] | Exception) -> None:
        self._queue: list[Mapping[str, Any] | Exception] = list(outputs)
        self.requests: list[OracleRequest] = []

    def push(self, *outputs: Mapping[str, Any] | Exception) -> None:
        self._queue.extend(outputs)

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def run_step(self, request: OracleRequest) -> Mapping[str, Any]:
        self.requests.append(request)
        if not self._queue:
            raise OracleError("no scripted output left", step=request.step_name.value)
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def step_output(
    step: str,
    *,
    patch: dict[str, Any] | None = None,
    next_action: dict[str, Any] | None = None,
    issue_updates: list[dict[str, Any]] | None = None,
    safety: dict[str, Any] | None = None,
    output_id: str = "out_1",
) -> dict[str, Any]:
    out: dict[str, Any] = {
        "output_id": output_id,
        "step": step,
        "patch": patch or {"format": "merge", "ops": {}},
        "issue_updates": issue_updates or [],
        "next_action": next_action or {"kind": "proceed_to_gate"},
        "rationale": "scripted",
    }
    if safety is not None:
        out["safety"] = safety
    return out


def ask(text: str, question_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"question_text": text, "answer_format": "free_text"}
    if question_id:
        payload["question_id"] = question_id
    return {"kind": "ask_user", "ask_user": payload}


def gate_output(ready: bool, *, summary: str = "", blockers: list[dict[str, Any]] | None = None):
    return step_output(
        "GATE_CHECK",
        patch={
            "format": "merge",
            "ops": {
                "gate": {
                    "ready_for_skeleton": ready,
                    "summary": summary,
                    "blockers": blockers or [],
                }
            },
        },
        next_action={"kind": "proceed_to_skeleton"} if ready else ask(summary or "?"),
    )


def node(
    node_id: str,
    kind: str = "section",
    *,
    tags: list[str] | None = None,
    title: str | None = None,
    purpose: str | None = None,
    children: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "node_id": node_id,
        "kind": kind,
        "title": title if title is not None else f"Title {node_id}",
        "purpose": purpose if purpose is not None else f"Purpose {node_id}",
        "tags": tags if tags is not None else ["subject"],
        "children": children or [],
        **extra,
    }


def sample_skeleton() -> dict[str, Any]:
    return {
        "root": node(
            "root",
            "document",
            tags=["contract"],
            title="Договор оказания услуг",
            children=[
                node(
                    "sec_liability",
                    tags=["liability"],
                    children=[node("cl_liability_cap", "clause", tags=["liability"])],
                ),
                node(
                    "sec_subject",
                    tags=["subject"],
                    children=[node("cl_subject", "clause", tags=["services"])],
                ),
                node(
                    "sec_penalties",
                    tags=["penalties"],
                    children=[node("cl_penalty", "clause", tags=["penalties"])],
                ),
            ],
        )
    }


def penalty_question() -> dict[str, Any]:
    return {
        "question_id": "q_penalty",
        "title": "Нужны ли штрафные санкции?",
        "priority": 1,
        "required": True,
        "ux": {
            "type": "radio_group",
            "options": [
                {
                    "id": "yes",
                    "label": "Да",
                    "value": "yes",
                    "impact": [
                        {"op": "set_node_status", "node_id": "sec_penalties", "status": "active"}
                    ],
                },
                {
                    "id": "no",
                    "label": "Нет",
                    "value": "no",
                    "impact": [
                        {"op": "set_node_status", "node_id": "sec_penalties", "status": "omitted"}
                    ],
                },
            ],
        },
        "binding": {"node_ids": ["sec_penalties"]},
    }


@pytest.fixture()
def settings() -> Settings:
    return Settings(env="test", storage_backend="memory")


@pytest.fixture()
def state(settings: Settings) -> SessionState:
    return new_session_state(settings, session_id="s-1")


@pytest.fixture()
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture()
def orchestrator(
    store: InMemorySessionStore, oracle: ScriptedOracle, settings: Settings
) -> SessionOrchestrator:
    assert isinstance(oracle, GenerationOracle)
    return SessionOrchestrator(store=store, oracle=oracle, settings=settings)
