"""
skeleton_orchestrator.orchestrator.review_impact

Consequences of review answers.

Responsibilities:
- Translate one review answer into impact operations according to the question's UX type.
- Apply a batch of impact operations (node status, variant selection, domain writes, issue add/resolve)
  as one committed mutation.
"""

from __future__ import annotations

import copy
import re
import uuid
from collections.abc import Callable, Sequence
from typing import Any, assert_never

from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.orchestrator.errors import PatchError, ProtectedPathError
from skeleton_orchestrator.orchestrator.models import (
    AddIssueOp,
    ImpactOp,
    Issue,
    ResolveIssueOp,
    ReviewAnswer,
    ReviewQuestion,
    ReviewState,
    SelectVariantOp,
    SessionState,
    SetDomainValueOp,
    SetNodeStatusOp,
    SkeletonNode,
    Variant,
)

log = get_logger(__name__)

_DOMAIN_PATH_SEPARATORS = re.compile(r"[/.]")

NodeChange = Callable[[SkeletonNode], SkeletonNode]


def apply_impact_operations(state: SessionState, ops: Sequence[ImpactOp]) -> SessionState:
    """Apply `ops` in order and return the next state; the whole batch is one version step."""

    skeleton = state.skeleton
    domain = copy.deepcopy(state.domain)
    issues = list(state.issues)

    touches_structure = any(isinstance(op, (SetNodeStatusOp, SelectVariantOp)) for op in ops)
    if touches_structure and state.document is not None and state.document.is_frozen:
        raise ProtectedPathError("skeleton structure is frozen")

    for op in ops:
        match op:
            case SetNodeStatusOp(node_id=node_id, status=status):
                if skeleton is None:
                    log.warning("impact_without_skeleton", op=op.op, node_id=node_id)
                    continue
                skeleton = skeleton.model_copy(
                    update={
                        "root": _update_node(
                            skeleton.root,
                            node_id,
                            lambda n, status=status: n.model_copy(update={"status": status}),
                        )
                    }
                )
            case SelectVariantOp(node_id=node_id, variant_id=variant_id):
                if skeleton is None:
                    log.warning("impact_without_skeleton", op=op.op, node_id=node_id)
                    continue
                skeleton = skeleton.model_copy(
                    update={
                        "root": _update_node(
                            skeleton.root,
                            node_id,
                            lambda n, variant_id=variant_id: _select_variant(n, variant_id),
                        )
                    }
                )
            case SetDomainValueOp(path=path, value=value):
                set_domain_value(domain, path, value)
            case AddIssueOp(issue_payload=payload):
                payload = dict(payload)
                if not payload.get("id"):
                    payload["id"] = f"issue_{uuid.uuid4().hex}"
                issues.append(Issue.model_validate(payload))
            case ResolveIssueOp(issue_id=issue_id):
                issues = [
                    i.model_copy(update={"status": "resolved"}) if i.id == issue_id else i
                    for i in issues
                ]
            case _:
                assert_never(op)

    update: dict[str, Any] = {"domain": domain, "issues": issues, "meta": state.meta.touched()}
    if state.document is not None:
        update["document"] = state.document.model_copy(update={"skeleton": skeleton})
    next_state = state.model_copy(update=update)

    log.info(
        "impact_applied",
        session_id=state.meta.session_id,
        op_count=len(ops),
        state_version=next_state.meta.state_version,
    )
    return next_state


def _select_variant(node: SkeletonNode, variant_id: str) -> SkeletonNode:
    if variant_id not in node.variant_ids():
        log.info("variant_not_found", node_id=node.node_id, variant_id=variant_id)
        return node
    return node.model_copy(update={"selected_variant_id": variant_id})


def _update_node(node: SkeletonNode, node_id: str, change: NodeChange) -> SkeletonNode:
    # Path copy: untouched subtrees are shared with the previous version.
    updated = change(node) if node.node_id == node_id else node
    children = [_update_node(child, node_id, change) for child in updated.children]
    variants = [_update_variant(variant, node_id, change) for variant in updated.variants]

    if any(a is not b for a, b in zip(children, updated.children)) or any(
        a is not b for a, b in zip(variants, updated.variants)
    ):
        updated = updated.model_copy(update={"children": children, "variants": variants})
    return updated


def _update_variant(variant: Variant, node_id: str, change: NodeChange) -> Variant:
    children = [_update_node(child, node_id, change) for child in variant.children]
    if all(a is b for a, b in zip(children, variant.children)):
        return variant
    return variant.model_copy(update={"children": children})


def domain_path_segments(path: str) -> list[str]:
    """`/domain/parties/customer`, `domain.parties.customer` and `parties/customer` are equivalent."""

    segments = [s for s in _DOMAIN_PATH_SEPARATORS.split(path.strip()) if s]
    if segments and segments[0] == "domain":
        segments = segments[1:]
    return segments


def set_domain_value(domain: dict[str, Any], path: str, value: Any) -> None:
    segments = domain_path_segments(path)
    if not segments:
        raise PatchError(f"domain path {path!r} does not address a value")

    current: dict[str, Any] = domain
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = copy.deepcopy(value)


# --- Answer translation -----------------------------------------------------


def _coerce_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, str):
        return value
    text = value.strip().replace(",", ".")
    for kind in (int, float):
        try:
            return kind(text)
        except ValueError:
            continue
    return value


def _matches(option_value: Any, option_id: str, selected: Any) -> bool:
    return selected == option_value or selected == option_id


def impact_ops_for_answer(question: ReviewQuestion, answer: ReviewAnswer) -> list[ImpactOp]:
    ux = question.ux
    value = answer.value
    ops: list[ImpactOp] = []

    match ux.type:
        case "checkbox_group":
            if value is None:
                selected: list[Any] = []
            elif isinstance(value, list):
                selected = value
            else:
                selected = [value]
            for option in ux.options:
                if any(_matches(option.value, option.id, s) for s in selected):
                    ops.extend(option.impact)
        case "radio_group":
            option = next((o for o in ux.options if _matches(o.value, o.id, value)), None)
            if option is not None:
                ops.extend(option.impact)
        case "text_input" | "number_input":
            path = question.binding.bind_to_domain_path
            if not path:
                log.warning("review_answer_unbound", question_id=question.question_id)
                return ops
            if ux.type == "number_input":
                value = _coerce_number(value)
            ops.append(SetDomainValueOp(op="set_domain_value", path=path, value=value))
        case "multi_text":
            values = value if isinstance(value, dict) else {}
            for input_field in ux.fields:
                if input_field.id not in values:
                    continue
                field_value = values[input_field.id]
                if input_field.input_type == "number":
                    field_value = _coerce_number(field_value)
                ops.append(
                    SetDomainValueOp(
                        op="set_domain_value",
                        path=input_field.bind_to_domain_path,
                        value=field_value,
                    )
                )
        case _:
            assert_never(ux.type)

    return ops


def impact_ops_for_answers(review: ReviewState, answers: Sequence[ReviewAnswer]) -> list[ImpactOp]:
    ops: list[ImpactOp] = []
    for answer in answers:
        question = review.question(answer.question_id)
        if question is None:
            log.warning("review_answer_unknown_question", question_id=answer.question_id)
            continue
        ops.extend(impact_ops_for_answer(question, answer))
    return ops
