"""
skeleton_orchestrator.orchestrator.skeleton_linter

Structural validation of a generated skeleton.

Responsibilities:
- Walk the whole tree (children and every variant subtree) and report each violation as an
  `Issue` carrying the node path it was found at.
- Decide whether a lint result allows moving on to clause drafting.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from skeleton_orchestrator.orchestrator.models import (
    Evidence,
    Issue,
    Severity,
    Skeleton,
    SkeletonNode,
)

BLOCKING_SEVERITIES: frozenset[str] = frozenset({"critical", "high"})


@dataclass(frozen=True, slots=True)
class LintResult:
    valid: bool
    issues: list[Issue]


def _issue(
    issue_id: str,
    severity: Severity,
    title: str,
    why: str,
    hint: str,
    path: str,
) -> Issue:
    return Issue(
        id=issue_id,
        key=issue_id,
        severity=severity,
        title=title,
        why_it_matters=why,
        resolution_hint=hint,
        evidence=[Evidence(kind="note", ref=path)],
    )


def _blank(value: str | None) -> bool:
    return not value or not value.strip()


def lint_skeleton(skeleton: Skeleton) -> LintResult:
    issues: list[Issue] = []
    first_seen: dict[str, str] = {}

    def visit(node: SkeletonNode, path: str) -> None:
        nid = node.node_id

        if nid in first_seen:
            issues.append(
                _issue(
                    f"duplicate_node_id:{nid}:{path}",
                    "high",
                    f"Дублирующийся node_id: {nid}",
                    "node_id должны быть уникальными по всему дереву, включая варианты",
                    f"Исправьте node_id для узла по пути {path} "
                    f"(первое вхождение: {first_seen[nid]})",
                    path,
                )
            )
        else:
            first_seen[nid] = path

        if not node.tags:
            issues.append(
                _issue(
                    f"missing_tags:{nid}:{path}",
                    "high",
                    f"Узел {nid} не имеет tags",
                    "tags необходимы для семантической классификации и упорядочивания узла",
                    f'Добавьте tags для узла "{node.title}" ({path})',
                    path,
                )
            )
        if _blank(node.purpose):
            issues.append(
                _issue(
                    f"missing_purpose:{nid}:{path}",
                    "med",
                    f"Узел {nid} не имеет purpose",
                    "purpose объясняет назначение узла и помогает в генерации текста",
                    f'Добавьте purpose для узла "{node.title}" ({path})',
                    path,
                )
            )
        if _blank(node.title):
            issues.append(
                _issue(
                    f"empty_title:{nid}:{path}",
                    "high",
                    f"Узел {nid} имеет пустой title",
                    "title обязателен для отображения и понимания структуры",
                    f"Добавьте title для узла {nid} ({path})",
                    path,
                )
            )
        if node.kind == "clause" and not node.tags:
            issues.append(
                _issue(
                    f"clause_without_tags:{nid}:{path}",
                    "high",
                    f"Clause {nid} не имеет tags",
                    "Clause без tags не может быть правильно обработан генератором текста",
                    f'Добавьте tags для clause "{node.title}" ({path})',
                    path,
                )
            )

        for field_name, entries in (("requires", node.requires), ("include_if", node.include_if)):
            if any(_blank(entry) for entry in entries):
                issues.append(
                    _issue(
                        f"empty_{field_name}:{nid}:{path}",
                        "low",
                        f"Узел {nid} имеет пустые {field_name}",
                        f"Пустые {field_name} указывают на ошибку в структуре",
                        f"Удалите пустые {field_name} или заполните их корректными путями ({path})",
                        path,
                    )
                )

        if (
            node.kind == "section"
            and node.status == "active"
            and not node.children
            and not node.variants
        ):
            issues.append(
                _issue(
                    f"empty_section:{nid}:{path}",
                    "med",
                    f"Раздел {nid} не содержит узлов",
                    "Активный раздел без дочерних узлов и вариантов даст пустую главу документа",
                    f'Добавьте пункты в раздел "{node.title}" или исключите его ({path})',
                    path,
                )
            )

        variant_ids = node.variant_ids()
        if node.selected_variant_id is not None and node.selected_variant_id not in variant_ids:
            issues.append(
                _issue(
                    f"unknown_selected_variant:{nid}:{path}",
                    "high",
                    f"Узел {nid} ссылается на несуществующий вариант {node.selected_variant_id}",
                    "selected_variant_id должен указывать на один из variants узла",
                    f"Выберите один из вариантов: {', '.join(variant_ids) or 'нет вариантов'}",
                    path,
                )
            )
        for variant_id, count in Counter(variant_ids).items():
            if count > 1:
                issues.append(
                    _issue(
                        f"duplicate_variant_id:{nid}:{variant_id}",
                        "high",
                        f"Узел {nid} содержит повторяющийся variant_id {variant_id}",
                        "variant_id должны быть уникальными в пределах узла",
                        f"Переименуйте повторяющиеся варианты узла {nid} ({path})",
                        path,
                    )
                )

        for index, child in enumerate(node.children):
            visit(child, f"{path}.children[{index}]")
        for v_index, variant in enumerate(node.variants):
            for index, child in enumerate(variant.children):
                visit(child, f"{path}.variants[{v_index}].children[{index}]")

    visit(skeleton.root, "root")
    return LintResult(valid=not issues, issues=issues)


def can_proceed_to_clauses(result: LintResult) -> bool:
    return not any(issue.severity in BLOCKING_SEVERITIES for issue in result.issues)


def count_nodes(skeleton: Skeleton) -> int:
    return sum(1 for _ in skeleton.walk())
