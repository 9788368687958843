"""
skeleton_orchestrator.orchestrator.contracts

Wire types exchanged with the generation oracle.

Responsibilities:
- Request shape (`OracleRequest`) and the step output the oracle returns (`OracleOutput`).
- Patch envelopes in both supported formats (pointer operations and recursive merge objects).
- Issue upserts and safety flags attached to a step output.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from skeleton_orchestrator.orchestrator.actions import NextAction
from skeleton_orchestrator.orchestrator.models import Issue


class StepName(StrEnum):
    interpret = "INTERPRET"
    gate_check = "GATE_CHECK"
    skeleton_generate = "SKELETON_GENERATE"
    skeleton_review_plan = "SKELETON_REVIEW_PLAN"
    skeleton_review_apply = "SKELETON_REVIEW_APPLY"


_FORMAT_ALIASES = {"json_patch": "pointer", "merge_patch": "merge"}


class OracleRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_name: StepName
    rendered_context: str


class PointerOp(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    op: Literal["add", "remove", "replace", "move", "copy", "test"]
    path: str
    from_: str | None = Field(default=None, alias="from")
    value: Any = None

    def as_dict(self) -> dict[str, Any]:
        # Only the keys the caller actually set: `value: null` and "no value" differ for add/test.
        return self.model_dump(by_alias=True, exclude_unset=True)


class Patch(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: Literal["pointer", "merge"]
    ops: list[PointerOp] | dict[str, Any]

    @field_validator("format", mode="before")
    @classmethod
    def accept_aliases(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _FORMAT_ALIASES.get(value, value)
        return value

    @model_validator(mode="after")
    def ops_match_format(self) -> Patch:
        if self.format == "pointer" and not isinstance(self.ops, list):
            raise ValueError("pointer patches carry a list of operations")
        if self.format == "merge" and not isinstance(self.ops, dict):
            raise ValueError("merge patches carry an object")
        return self

    @classmethod
    def pointer(cls, *ops: dict[str, Any]) -> Patch:
        return cls(format="pointer", ops=[PointerOp.model_validate(op) for op in ops])

    @classmethod
    def merge(cls, doc: dict[str, Any]) -> Patch:
        return cls(format="merge", ops=dict(doc))

    @classmethod
    def empty(cls) -> Patch:
        return cls(format="merge", ops={})

    @property
    def pointer_ops(self) -> list[PointerOp]:
        return list(self.ops) if isinstance(self.ops, list) else []


class IssueUpsert(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    op: Literal["upsert", "resolve", "dismiss"]
    issue: Issue


class SafetyFlags(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    has_unconfirmed_assumptions: bool = False
    detected_conflict: bool = False
    repeat_question_risk: bool = False


class OracleOutput(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    output_id: str | None = None
    step: str
    patch: Patch = Field(default_factory=Patch.empty)
    issue_updates: list[IssueUpsert] = Field(default_factory=list)
    next_action: NextAction
    rationale: str = ""
    safety: SafetyFlags | None = None
    observations: list[str] = Field(default_factory=list)

    @field_validator("issue_updates", "observations", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class _StrictOracleOutput(OracleOutput):
    model_config = ConfigDict(frozen=True, extra="forbid")

    output_id: str
    step: StepName
    rationale: str


def schema_warnings(raw: Any) -> list[str]:
    """
    Strict contract check of a raw step output. Mismatches are reported, not raised: callers log
    them as validation warnings and keep going with the lenient parse.
    """

    try:
        _StrictOracleOutput.model_validate(raw)
    except ValidationError as e:
        return [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        ]
    return []
