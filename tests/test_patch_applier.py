from __future__ import annotations

import pytest

from skeleton_orchestrator.orchestrator.contracts import IssueUpsert, OracleOutput, Patch
from skeleton_orchestrator.orchestrator.errors import (
    PatchError,
    ProtectedPathError,
    StateSchemaError,
)
from skeleton_orchestrator.orchestrator.models import (
    DocumentState,
    Freeze,
    Issue,
    SessionState,
    Skeleton,
)
from skeleton_orchestrator.orchestrator.patch_applier import (
    add_asked_question,
    append_dialogue_turn,
    apply_oracle_output,
    apply_patch,
    deep_merge,
    parse_pointer,
    transition,
)

from conftest import sample_skeleton, step_output


def test_add_synthesizes_missing_containers(state: SessionState) -> None:
    patch = Patch.pointer(
        {"op": "add", "path": "/domain/parties/0/name", "value": "ООО Ромашка"},
        {"op": "add", "path": "/domain/terms/start", "value": "2026-01-01"},
    )

    updated = apply_patch(state, patch)

    assert updated.domain == {
        "parties": [{"name": "ООО Ромашка"}],
        "terms": {"start": "2026-01-01"},
    }
    assert state.domain == {}


def test_every_apply_bumps_version_once(state: SessionState) -> None:
    updated = apply_patch(state, Patch.pointer({"op": "add", "path": "/domain/a", "value": 1}))
    assert updated.meta.state_version == state.meta.state_version + 1
    assert updated.meta.updated_at >= state.meta.updated_at

    merged = apply_patch(updated, Patch.merge({"domain": {"b": 2}}))
    assert merged.meta.state_version == state.meta.state_version + 2


def test_empty_merge_only_touches_version(state: SessionState) -> None:
    seeded = apply_patch(state, Patch.merge({"domain": {"subject": "услуги"}}))

    updated = apply_patch(seeded, Patch.merge({}))

    assert updated.meta.state_version == seeded.meta.state_version + 1
    assert updated.domain == seeded.domain
    assert updated.issues == seeded.issues
    assert updated.dialogue == seeded.dialogue


def test_primitive_is_overwritten_by_container(state: SessionState) -> None:
    seeded = apply_patch(state, Patch.merge({"domain": {"price": 100}}))

    updated = apply_patch(
        seeded, Patch.pointer({"op": "add", "path": "/domain/price/amount", "value": 100})
    )

    assert updated.domain == {"price": {"amount": 100}}


def test_failed_operation_aborts_whole_patch(state: SessionState) -> None:
    patch = Patch.pointer(
        {"op": "add", "path": "/domain/a", "value": 1},
        {"op": "remove", "path": "/domain/missing"},
    )

    with pytest.raises(PatchError) as excinfo:
        apply_patch(state, patch)

    assert excinfo.value.op_index == 1
    assert excinfo.value.op == {"op": "remove", "path": "/domain/missing"}
    assert state.domain == {}
    assert state.meta.state_version == 0


@pytest.mark.parametrize("op", ["remove", "replace"])
def test_dialogue_history_cannot_be_rewritten(state: SessionState, op: str) -> None:
    seeded = append_dialogue_turn(state, role="user", text="привет")
    raw = {"op": op, "path": "/dialogue/history/0"}
    if op == "replace":
        raw["value"] = {"id": "x", "role": "user", "text": "другое", "at": "2026-01-01T00:00:00Z"}

    with pytest.raises(ProtectedPathError):
        apply_patch(seeded, Patch.pointer(raw))


def test_dialogue_history_can_be_appended_by_pointer(state: SessionState) -> None:
    turn = {"id": "t1", "role": "assistant", "text": "Здравствуйте", "at": "2026-01-01T00:00:00Z"}

    updated = apply_patch(
        state, Patch.pointer({"op": "add", "path": "/dialogue/history/-", "value": turn})
    )

    assert [t.text for t in updated.dialogue.history] == ["Здравствуйте"]


def test_merge_cannot_truncate_asked_log(state: SessionState) -> None:
    seeded = add_asked_question(state, text="Кто стороны?")

    with pytest.raises(ProtectedPathError):
        apply_patch(seeded, Patch.merge({"dialogue": {"asked": []}}))


@pytest.mark.parametrize(
    "path",
    ["/meta/unknown_field", "/invented_top_level", "/control/limits/max_everything"],
)
def test_unknown_paths_are_rejected(state: SessionState, path: str) -> None:
    with pytest.raises(StateSchemaError):
        apply_patch(state, Patch.pointer({"op": "add", "path": path, "value": 1}))


def test_root_cannot_be_targeted(state: SessionState) -> None:
    with pytest.raises(PatchError):
        apply_patch(state, Patch.pointer({"op": "replace", "path": "", "value": {}}))


def test_merge_normalizes_leading_slash_and_recurses(state: SessionState) -> None:
    seeded = apply_patch(state, Patch.merge({"domain": {"parties": {"customer": "А"}}}))

    updated = apply_patch(
        seeded, Patch.merge({"/domain": {"parties": {"contractor": "Б"}, "subject": "услуги"}})
    )

    assert updated.domain == {
        "parties": {"customer": "А", "contractor": "Б"},
        "subject": "услуги",
    }


def test_deep_merge_non_object_replaces_target() -> None:
    assert deep_merge({"a": {"b": 1}}, {"a": [1, 2]}) == {"a": [1, 2]}
    assert deep_merge({"a": 1}, {"a": {"b": 2}}) == {"a": {"b": 2}}


def test_move_copy_and_test_operations(state: SessionState) -> None:
    seeded = apply_patch(state, Patch.merge({"domain": {"draft": {"subject": "услуги"}}}))

    updated = apply_patch(
        seeded,
        Patch.pointer(
            {"op": "test", "path": "/domain/draft/subject", "value": "услуги"},
            {"op": "copy", "from": "/domain/draft/subject", "path": "/domain/subject_copy"},
            {"op": "move", "from": "/domain/draft", "path": "/domain/final"},
        ),
    )

    assert updated.domain == {"final": {"subject": "услуги"}, "subject_copy": "услуги"}

    with pytest.raises(PatchError):
        apply_patch(
            updated, Patch.pointer({"op": "test", "path": "/domain/subject_copy", "value": "x"})
        )


def test_pointer_escapes_are_decoded() -> None:
    assert parse_pointer("/domain/a~1b/c~0d") == ["domain", "a/b", "c~d"]
    assert parse_pointer("domain/x") == ["domain", "x"]


def test_oracle_output_issue_updates_share_one_commit(state: SessionState) -> None:
    seeded = apply_patch(
        state,
        Patch.empty(),
        issue_updates=[
            IssueUpsert(op="upsert", issue=Issue(id="i1", key="jurisdiction", title="Юрисдикция")),
            IssueUpsert(op="upsert", issue=Issue(id="i2", title="Стороны")),
        ],
    )
    output = OracleOutput.model_validate(
        step_output(
            "INTERPRET",
            patch={"format": "json_patch", "ops": [{"op": "add", "path": "/domain/x", "value": 1}]},
            issue_updates=[
                {"op": "upsert", "issue": {"id": "other", "key": "jurisdiction", "severity": "high"}},
                {"op": "resolve", "issue": {"id": "i2"}},
                {"op": "upsert", "issue": {"id": "i3", "title": "Срок", "severity": "medium"}},
            ],
        )
    )

    updated = apply_oracle_output(seeded, output)

    assert updated.meta.state_version == seeded.meta.state_version + 1
    by_id = {i.id: i for i in updated.issues}
    # Matched by key: the incoming fields win, untouched ones survive.
    assert "i1" not in by_id
    assert by_id["other"].severity == "high"
    assert by_id["other"].title == "Юрисдикция"
    assert by_id["i2"].status == "resolved"
    assert by_id["i3"].severity == "med"
    assert updated.domain == {"x": 1}


def test_frozen_skeleton_final_is_immutable(state: SessionState) -> None:
    skeleton = Skeleton.model_validate(sample_skeleton())
    frozen = state.model_copy(
        update={
            "document": DocumentState(
                skeleton=skeleton, skeleton_final=skeleton, freeze=Freeze(structure=True)
            )
        }
    )

    with pytest.raises(ProtectedPathError):
        apply_patch(
            frozen,
            Patch.pointer(
                {"op": "replace", "path": "/document/skeleton_final/root/title", "value": "x"}
            ),
        )
    with pytest.raises(ProtectedPathError):
        apply_patch(frozen, Patch.merge({"document": {"freeze": {"structure": False}}}))

    # The working skeleton is not part of the frozen structure.
    updated = apply_patch(
        frozen,
        Patch.pointer({"op": "replace", "path": "/document/skeleton/root/title", "value": "x"}),
    )
    assert updated.document is not None
    assert updated.document.skeleton_final == skeleton


def test_append_helpers_and_transition_bump_once(state: SessionState) -> None:
    s1 = append_dialogue_turn(state, role="user", text="Нужен договор")
    s2 = add_asked_question(s1, text="Какая юрисдикция?", question_id="q1")
    s3 = transition(s2, stage="pre_skeleton", status="gating")

    assert [s.meta.state_version for s in (s1, s2, s3)] == [1, 2, 3]
    assert s3.meta.status == "gating"
    assert s3.dialogue.asked[0].id == "q1"
    assert len(state.dialogue.history) == 0
