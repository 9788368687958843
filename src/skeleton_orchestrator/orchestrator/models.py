"""
skeleton_orchestrator.orchestrator.models

Typed session document used by the orchestration core.

Responsibilities:
- Define the versioned `SessionState` and every record it holds (issues, dialogue, gate,
  skeleton tree, review loop).
- Keep the shape closed: container models forbid unknown keys, so a patch that invents a path
  fails validation instead of silently growing the document.
- Provide the initial-state factory and the skeleton traversal helpers shared by linter/sorter.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from skeleton_orchestrator.settings import Settings, get_settings

SCHEMA_ID = "schema://skeleton-orchestrator/session_state/1.0.0"
SCHEMA_VERSION = "1.0.0"
SKELETON_SCHEMA_VERSION = "1.0.0"

Stage = Literal["pre_skeleton", "skeleton_ready", "skeleton_review", "skeleton_final"]
Status = Literal["collecting", "gating", "ready", "blocked"]
Severity = Literal["low", "med", "high", "critical"]
IssueStatus = Literal["open", "resolved", "dismissed"]
NodeKind = Literal["document", "section", "clause", "appendix"]
NodeStatus = Literal["active", "omitted"]
ReviewStatus = Literal["collecting", "ready_to_apply", "applied", "frozen"]

_SEVERITY_ALIASES = {"medium": "med", "moderate": "med", "minor": "low", "major": "high"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Container(BaseModel):
    # Structural parts of the session document: unknown keys are a patch error.
    model_config = ConfigDict(frozen=True, extra="forbid")


class _Record(BaseModel):
    # Records authored by the oracle: tolerate extra keys, keep only the typed ones.
    model_config = ConfigDict(frozen=True, extra="ignore")


def _normalize_severity(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        return _SEVERITY_ALIASES.get(lowered, lowered)
    return value


LenientSeverity = Annotated[Severity, BeforeValidator(_normalize_severity)]


# --- Issues -----------------------------------------------------------------


class Evidence(_Record):
    kind: Literal["turn", "fact_path", "note"] = "note"
    ref: str


class Issue(_Record):
    id: str
    key: str | None = None
    severity: LenientSeverity = "med"
    status: IssueStatus = "open"
    title: str = ""
    why_it_matters: str = ""
    missing_or_conflict: str | None = None
    resolution_hint: str = ""
    requires_user_confirmation: bool | None = None
    linked_issue_ids: list[str] = Field(default_factory=list)
    evidence: list[Evidence] = Field(default_factory=list)


# --- Dialogue / control -----------------------------------------------------


class DialogueTurn(_Record):
    id: str
    role: Literal["user", "assistant", "system"]
    text: str
    at: datetime


class AskedQuestion(_Record):
    id: str
    text: str
    at: datetime
    semantic_fingerprint: str | None = None


class Dialogue(_Container):
    history: list[DialogueTurn] = Field(default_factory=list)
    asked: list[AskedQuestion] = Field(default_factory=list)


class Limits(_Container):
    max_questions_per_run: int = 20
    max_loops: int = 20
    max_history_turns: int = 100


class Checks(_Container):
    require_user_confirmation_for_assumptions: bool = True


class Control(_Container):
    limits: Limits = Field(default_factory=Limits)
    checks: Checks = Field(default_factory=Checks)
    flags: dict[str, Any] = Field(default_factory=dict)


class Locale(_Container):
    language: str = "ru"
    jurisdiction: str = "RU"


class Meta(_Container):
    session_id: str
    schema_id: str = SCHEMA_ID
    schema_version: str = SCHEMA_VERSION
    stage: Stage = "pre_skeleton"
    status: Status = "collecting"
    state_version: int = 0
    locale: Locale = Field(default_factory=Locale)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touched(self) -> Meta:
        """Next version of the meta block: exactly one version step plus a fresh `updated_at`."""
        return self.model_copy(
            update={"state_version": self.state_version + 1, "updated_at": utcnow()}
        )


# --- Gate -------------------------------------------------------------------


class GateBlocker(_Record):
    severity: LenientSeverity = "high"
    message: str
    linked_issue_ids: list[str] = Field(default_factory=list)


class Gate(_Container):
    ready_for_skeleton: bool = False
    summary: str = ""
    blockers: list[GateBlocker] = Field(default_factory=list)


# --- Skeleton ---------------------------------------------------------------


class Variant(_Record):
    variant_id: str
    label: str = ""
    description: str | None = None
    children: list[SkeletonNode] = Field(default_factory=list)


class SkeletonNode(_Record):
    node_id: str
    kind: NodeKind
    title: str = ""
    purpose: str = ""
    tags: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)
    include_if: list[str] = Field(default_factory=list)
    notes_for_generator: str | None = None
    status: NodeStatus = "active"
    children: list[SkeletonNode] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)
    selected_variant_id: str | None = None

    @field_validator("title", "purpose", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("tags", "requires", "include_if", "children", "variants", mode="before")
    @classmethod
    def none_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def walk(self) -> Iterator[SkeletonNode]:
        """Pre-order traversal over this node, its children and every variant subtree."""
        yield self
        for child in self.children:
            yield from child.walk()
        for variant in self.variants:
            for child in variant.children:
                yield from child.walk()

    def variant_ids(self) -> list[str]:
        return [v.variant_id for v in self.variants]


class Skeleton(_Record):
    root: SkeletonNode

    def walk(self) -> Iterator[SkeletonNode]:
        return self.root.walk()


class SkeletonMeta(_Container):
    schema_version: str = SKELETON_SCHEMA_VERSION
    generated_at: datetime = Field(default_factory=utcnow)
    generated_by_step: str = "SKELETON_GENERATE"
    node_count: int = 0


class Freeze(_Container):
    structure: bool = False


class DocumentState(_Container):
    skeleton: Skeleton | None = None
    skeleton_final: Skeleton | None = None
    skeleton_meta: SkeletonMeta | None = None
    freeze: Freeze | None = None

    @property
    def is_frozen(self) -> bool:
        return bool(self.freeze and self.freeze.structure)


# --- Review loop ------------------------------------------------------------


class SetNodeStatusOp(_Record):
    op: Literal["set_node_status"]
    node_id: str
    status: NodeStatus


class SelectVariantOp(_Record):
    op: Literal["select_variant"]
    node_id: str
    variant_id: str


class SetDomainValueOp(_Record):
    op: Literal["set_domain_value"]
    path: str
    value: Any = None


class AddIssueOp(_Record):
    op: Literal["add_issue"]
    issue_payload: dict[str, Any]


class ResolveIssueOp(_Record):
    op: Literal["resolve_issue"]
    issue_id: str


ImpactOp = Annotated[
    Union[SetNodeStatusOp, SelectVariantOp, SetDomainValueOp, AddIssueOp, ResolveIssueOp],
    Field(discriminator="op"),
]


class ReviewOption(_Record):
    id: str
    label: str = ""
    value: Any = None
    impact: list[ImpactOp] = Field(default_factory=list)


class InputField(_Record):
    id: str
    label: str = ""
    bind_to_domain_path: str
    input_type: Literal["text", "number"] = "text"
    placeholder: str | None = None
    required: bool = False


class UXSpec(_Record):
    type: Literal["checkbox_group", "radio_group", "text_input", "number_input", "multi_text"]
    options: list[ReviewOption] = Field(default_factory=list)
    fields: list[InputField] = Field(default_factory=list)
    placeholder: str | None = None


class Binding(_Record):
    node_ids: list[str] = Field(default_factory=list)
    bind_to_domain_path: str | None = None


class Constraints(_Record):
    min: float | None = None
    max: float | None = None
    max_length: int | None = None
    pattern: str | None = None


class ReviewQuestion(_Record):
    question_id: str
    title: str = ""
    description: str | None = None
    priority: int = 0
    required: bool = False
    ux: UXSpec
    binding: Binding = Field(default_factory=Binding)
    constraints: Constraints | None = None
    why_this_matters: str | None = None


class ReviewAnswer(_Record):
    question_id: str
    value: Any = None
    at: datetime = Field(default_factory=utcnow)


class ReviewState(_Container):
    review_id: str = Field(default_factory=lambda: f"review_{uuid.uuid4().hex}")
    iteration: int = 0
    status: ReviewStatus = "collecting"
    questions: list[ReviewQuestion] = Field(default_factory=list)
    answers: list[ReviewAnswer] = Field(default_factory=list)

    def question(self, question_id: str) -> ReviewQuestion | None:
        return next((q for q in self.questions if q.question_id == question_id), None)


# --- Session ----------------------------------------------------------------


class SessionState(_Container):
    meta: Meta
    domain: dict[str, Any] = Field(default_factory=dict)
    issues: list[Issue] = Field(default_factory=list)
    dialogue: Dialogue = Field(default_factory=Dialogue)
    control: Control = Field(default_factory=Control)
    gate: Gate | None = None
    document: DocumentState | None = None
    review: ReviewState | None = None

    @property
    def session_id(self) -> str:
        return self.meta.session_id

    @property
    def skeleton(self) -> Skeleton | None:
        return self.document.skeleton if self.document else None

    def to_document(self) -> dict[str, Any]:
        """Plain JSON-compatible tree, the representation patches operate on."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> SessionState:
        return cls.model_validate(doc)


def new_session_state(
    settings: Settings | None = None, *, session_id: str | None = None
) -> SessionState:
    s = settings or get_settings()
    now = utcnow()
    return SessionState(
        meta=Meta(
            session_id=session_id or str(uuid.uuid4()),
            locale=Locale(language=s.default_language, jurisdiction=s.default_jurisdiction),
            created_at=now,
            updated_at=now,
        ),
        control=Control(
            limits=Limits(
                max_questions_per_run=s.max_questions_per_run,
                max_loops=s.max_loops,
                max_history_turns=s.max_history_turns,
            ),
            checks=Checks(
                require_user_confirmation_for_assumptions=s.require_user_confirmation_for_assumptions
            ),
        ),
    )


Variant.model_rebuild()
SkeletonNode.model_rebuild()


# --- Module Notes -----------------------------------------------------------
# Models are frozen: a mutation produces a new SessionState (via the patch engine or the
# review impact applier) and the previous version stays valid for whoever still holds it.
