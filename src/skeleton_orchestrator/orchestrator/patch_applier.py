"""
skeleton_orchestrator.orchestrator.patch_applier

Patch engine for the session document.

Responsibilities:
- Apply pointer-operation patches (add/remove/replace/move/copy/test) and recursive merge patches
  to a copy of the session document, never to the caller's state.
- Synthesize missing intermediate containers for add/replace; reject malformed paths.
- Guard append-only dialogue logs and the frozen final skeleton.
- Apply oracle issue updates in the same commit as the patch.
- Re-validate the result against the typed model and bump `state_version` exactly once.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.orchestrator.contracts import IssueUpsert, OracleOutput, Patch, PointerOp
from skeleton_orchestrator.orchestrator.errors import (
    PatchError,
    ProtectedPathError,
    StateSchemaError,
)
from skeleton_orchestrator.orchestrator.models import (
    AskedQuestion,
    DialogueTurn,
    SessionState,
    Stage,
    Status,
    utcnow,
)

log = get_logger(__name__)

APPEND_ONLY_PATHS = ("/dialogue/history", "/dialogue/asked")
FROZEN_PATHS = ("/document/skeleton_final", "/document/freeze")

_MISSING = object()


def apply_patch(
    state: SessionState,
    patch: Patch,
    *,
    issue_updates: Iterable[IssueUpsert] = (),
) -> SessionState:
    """
    Apply `patch` (and optional issue updates) and return the next version of `state`.

    Either every operation applies or a `PatchError` naming the failing operation is raised.
    """

    doc = state.to_document()

    if patch.format == "pointer":
        ops = patch.pointer_ops
        for index, op in enumerate(ops):
            _guard_pointer_op(state, index, op)
        for index, op in enumerate(ops):
            _apply_pointer_op(doc, index, op.as_dict())
    else:
        merge_doc = normalize_merge_keys(patch.ops)  # type: ignore[arg-type]
        _guard_merge(state, merge_doc)
        doc = deep_merge(doc, merge_doc)

    updates = list(issue_updates)
    if updates:
        doc["issues"] = apply_issue_updates(doc.get("issues") or [], updates)

    next_state = _commit(state, doc)
    log.debug(
        "patch_applied",
        session_id=state.meta.session_id,
        format=patch.format,
        op_count=len(patch.ops),
        issue_updates=len(updates),
        state_version=next_state.meta.state_version,
    )
    return next_state


def apply_oracle_output(state: SessionState, output: OracleOutput) -> SessionState:
    return apply_patch(state, output.patch, issue_updates=output.issue_updates)


def transition(
    state: SessionState,
    *,
    stage: Stage | None = None,
    status: Status | None = None,
) -> SessionState:
    """Commit a stage and/or status change as a single versioned mutation."""

    meta: dict[str, Any] = {}
    if stage is not None:
        meta["stage"] = stage
    if status is not None:
        meta["status"] = status
    if not meta:
        raise ValueError("transition requires a stage or a status")
    return apply_patch(state, Patch.merge({"meta": meta}))


def append_dialogue_turn(state: SessionState, *, role: str, text: str) -> SessionState:
    """The only sanctioned way to grow `dialogue.history`."""

    turn = DialogueTurn(id=f"turn_{uuid.uuid4().hex[:12]}", role=role, text=text, at=utcnow())
    dialogue = state.dialogue.model_copy(update={"history": [*state.dialogue.history, turn]})
    return state.model_copy(update={"dialogue": dialogue, "meta": state.meta.touched()})


def add_asked_question(
    state: SessionState,
    *,
    text: str,
    question_id: str | None = None,
    semantic_fingerprint: str | None = None,
) -> SessionState:
    """The only sanctioned way to grow `dialogue.asked`."""

    asked = AskedQuestion(
        id=question_id or f"question_{uuid.uuid4().hex[:12]}",
        text=text,
        at=utcnow(),
        semantic_fingerprint=semantic_fingerprint,
    )
    dialogue = state.dialogue.model_copy(update={"asked": [*state.dialogue.asked, asked]})
    return state.model_copy(update={"dialogue": dialogue, "meta": state.meta.touched()})


# --- Merge ------------------------------------------------------------------


def normalize_merge_keys(doc: dict[str, Any]) -> dict[str, Any]:
    return {(k[1:] if k.startswith("/") else k): v for k, v in doc.items()}


def deep_merge(target: Any, source: Any) -> Any:
    if not isinstance(source, dict):
        return copy.deepcopy(source)
    if not isinstance(target, dict):
        return copy.deepcopy(source)

    result = dict(target)
    for key, value in source.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# --- Issues -----------------------------------------------------------------


def apply_issue_updates(
    issues: list[dict[str, Any]], updates: Iterable[IssueUpsert]
) -> list[dict[str, Any]]:
    result = [dict(i) for i in issues]
    for update in updates:
        issue = update.issue
        index = _find_issue(result, issue.id, issue.key)
        if update.op == "upsert":
            if index is None:
                result.append(issue.model_dump(mode="json"))
            else:
                result[index] = {**result[index], **issue.model_dump(mode="json", exclude_unset=True)}
            continue

        if index is None:
            log.warning("issue_update_unmatched", op=update.op, issue_id=issue.id)
            continue
        result[index] = {**result[index], "status": "resolved" if update.op == "resolve" else "dismissed"}
    return result


def _find_issue(issues: list[dict[str, Any]], issue_id: str, key: str | None) -> int | None:
    for index, existing in enumerate(issues):
        if existing.get("id") == issue_id or (key and existing.get("key") == key):
            return index
    return None


# --- Pointer operations -----------------------------------------------------


def parse_pointer(path: str) -> list[str]:
    if path in ("", "/"):
        return []
    if not path.startswith("/"):
        path = "/" + path
    return [seg.replace("~1", "/").replace("~0", "~") for seg in path[1:].split("/")]


def _is_index_segment(segment: str) -> bool:
    return segment == "-" or segment.isdigit()


def _touches(path: str, prefix: str) -> bool:
    # True when `path` addresses `prefix`, something inside it, or one of its ancestors.
    path = "/" + "/".join(parse_pointer(path))
    if path == "/":
        return True
    return path == prefix or path.startswith(prefix + "/") or prefix.startswith(path + "/")


def _guard_pointer_op(state: SessionState, index: int, op: PointerOp) -> None:
    raw = op.as_dict()
    if not parse_pointer(op.path):
        raise PatchError("operations cannot target the document root", index, raw)

    rewrites = op.op in ("remove", "replace")
    for prefix in APPEND_ONLY_PATHS:
        if rewrites and _touches(op.path, prefix):
            raise ProtectedPathError(
                f"{prefix} is append-only; use the append helpers", index, raw
            )
        if op.op == "move" and op.from_ and _touches(op.from_, prefix):
            raise ProtectedPathError(f"cannot move entries out of {prefix}", index, raw)

    if state.document is not None and state.document.is_frozen:
        for prefix in FROZEN_PATHS:
            if _touches(op.path, prefix) and op.op != "test":
                raise ProtectedPathError("skeleton structure is frozen", index, raw)
            if op.op == "move" and op.from_ and _touches(op.from_, prefix):
                raise ProtectedPathError("skeleton structure is frozen", index, raw)


def _guard_merge(state: SessionState, merge_doc: dict[str, Any]) -> None:
    if state.document is None or not state.document.is_frozen:
        return
    document = merge_doc.get("document")
    if not isinstance(document, dict):
        if "document" in merge_doc:
            raise ProtectedPathError("skeleton structure is frozen", None, {"document": document})
        return
    for key in ("skeleton_final", "freeze"):
        if key in document:
            raise ProtectedPathError(
                "skeleton structure is frozen", None, {"document": {key: document[key]}}
            )


def _apply_pointer_op(doc: dict[str, Any], index: int, op: dict[str, Any]) -> None:
    kind = op["op"]
    segments = parse_pointer(op["path"])

    if kind in ("add", "replace"):
        if "value" not in op:
            raise PatchError(f"{kind} requires a value", index, op)
        parent, key = _resolve_parent(doc, segments, create=True, index=index, op=op)
        _set(parent, key, copy.deepcopy(op["value"]), insert=(kind == "add"), index=index, op=op)
    elif kind == "remove":
        parent, key = _resolve_parent(doc, segments, create=False, index=index, op=op)
        _remove(parent, key, index=index, op=op)
    elif kind in ("move", "copy"):
        source = op.get("from")
        if source is None:
            raise PatchError(f"{kind} requires 'from'", index, op)
        from_segments = parse_pointer(source)
        if not from_segments:
            raise PatchError("cannot move or copy the document root", index, op)
        value = _get(doc, from_segments, index=index, op=op)
        if kind == "move":
            if segments[: len(from_segments)] == from_segments and segments != from_segments:
                raise PatchError("cannot move a value into one of its own children", index, op)
            parent, key = _resolve_parent(doc, from_segments, create=False, index=index, op=op)
            _remove(parent, key, index=index, op=op)
        else:
            value = copy.deepcopy(value)
        parent, key = _resolve_parent(doc, segments, create=True, index=index, op=op)
        _set(parent, key, value, insert=True, index=index, op=op)
    elif kind == "test":
        actual = _get(doc, segments, index=index, op=op)
        if actual != op.get("value"):
            raise PatchError("test failed", index, op)
    else:  # pragma: no cover - PointerOp restricts the literal
        raise PatchError(f"unsupported operation {kind!r}", index, op)


def _resolve_parent(
    doc: dict[str, Any],
    segments: list[str],
    *,
    create: bool,
    index: int,
    op: dict[str, Any],
) -> tuple[Any, str]:
    current: Any = doc
    for position, segment in enumerate(segments[:-1]):
        next_segment = segments[position + 1]
        if isinstance(current, dict):
            child = current.get(segment, _MISSING)
            if not isinstance(child, (dict, list)):
                if not create:
                    raise PatchError(f"path segment {segment!r} does not exist", index, op)
                child = [] if _is_index_segment(next_segment) else {}
                current[segment] = child
        elif isinstance(current, list):
            position_in_list = _list_index(current, segment, allow_end=create, index=index, op=op)
            if position_in_list == len(current):
                child = [] if _is_index_segment(next_segment) else {}
                current.append(child)
            else:
                child = current[position_in_list]
                if not isinstance(child, (dict, list)):
                    if not create:
                        raise PatchError(f"path segment {segment!r} is not a container", index, op)
                    child = [] if _is_index_segment(next_segment) else {}
                    current[position_in_list] = child
        else:
            raise PatchError(f"path segment {segment!r} is not a container", index, op)
        current = child
    return current, segments[-1]


def _list_index(
    items: list[Any], segment: str, *, allow_end: bool, index: int, op: dict[str, Any]
) -> int:
    if segment == "-":
        if not allow_end:
            raise PatchError("'-' only addresses the end of an array on add", index, op)
        return len(items)
    if not segment.isdigit():
        raise PatchError(f"array index expected, got {segment!r}", index, op)
    position = int(segment)
    upper = len(items) if allow_end else len(items) - 1
    if position > upper:
        raise PatchError(f"array index {position} out of range", index, op)
    return position


def _set(
    parent: Any, key: str, value: Any, *, insert: bool, index: int, op: dict[str, Any]
) -> None:
    if isinstance(parent, dict):
        parent[key] = value
        return
    if isinstance(parent, list):
        position = _list_index(parent, key, allow_end=True, index=index, op=op)
        if insert or position == len(parent):
            parent.insert(position, value)
        else:
            parent[position] = value
        return
    raise PatchError("target parent is not a container", index, op)


def _remove(parent: Any, key: str, *, index: int, op: dict[str, Any]) -> None:
    if isinstance(parent, dict):
        if key not in parent:
            raise PatchError(f"cannot remove missing key {key!r}", index, op)
        del parent[key]
        return
    if isinstance(parent, list):
        parent.pop(_list_index(parent, key, allow_end=False, index=index, op=op))
        return
    raise PatchError("target parent is not a container", index, op)


def _get(doc: Any, segments: list[str], *, index: int, op: dict[str, Any]) -> Any:
    current = doc
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                raise PatchError(f"path segment {segment!r} does not exist", index, op)
            current = current[segment]
        elif isinstance(current, list):
            current = current[_list_index(current, segment, allow_end=False, index=index, op=op)]
        else:
            raise PatchError(f"path segment {segment!r} does not exist", index, op)
    return current


# --- Commit -----------------------------------------------------------------


def _commit(state: SessionState, doc: dict[str, Any]) -> SessionState:
    _verify_append_only(state, doc)
    _verify_frozen(state, doc)

    meta = doc.get("meta")
    if not isinstance(meta, dict):
        raise StateSchemaError("patch removed or replaced the meta block")
    next_meta = state.meta.touched()
    meta["state_version"] = next_meta.state_version
    meta["updated_at"] = next_meta.updated_at.isoformat()

    try:
        return SessionState.from_document(doc)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        first = errors[0] if errors else {}
        where = "/" + "/".join(str(p) for p in first.get("loc", ()))
        raise StateSchemaError(
            f"patched state is invalid at {where}: {first.get('msg', 'validation error')}",
            errors=[dict(err) for err in errors],
        ) from e


def _verify_append_only(state: SessionState, doc: dict[str, Any]) -> None:
    before = state.dialogue.model_dump(mode="json")
    after = doc.get("dialogue")
    if not isinstance(after, dict):
        raise ProtectedPathError("dialogue logs are append-only")
    for key in ("history", "asked"):
        old, new = before[key], after.get(key)
        if not isinstance(new, list) or new[: len(old)] != old:
            raise ProtectedPathError(f"/dialogue/{key} is append-only")


def _verify_frozen(state: SessionState, doc: dict[str, Any]) -> None:
    if state.document is None or not state.document.is_frozen:
        return
    before = state.document.model_dump(mode="json")
    after = doc.get("document")
    if not isinstance(after, dict):
        raise ProtectedPathError("skeleton structure is frozen")
    for key in ("skeleton_final", "freeze"):
        if after.get(key) != before.get(key):
            raise ProtectedPathError(f"/document/{key} is frozen")


# --- Module Notes -----------------------------------------------------------
# Patches run against `SessionState.to_document()`, a fresh JSON tree; the typed model is only
# rebuilt once every operation succeeded, so a failure leaves no trace in the caller's state.
