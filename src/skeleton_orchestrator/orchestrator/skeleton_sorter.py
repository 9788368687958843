"""
skeleton_orchestrator.orchestrator.skeleton_sorter

Tag-order, dependency-aware ordering of skeleton siblings.

Responsibilities:
- Derive a base order key per node from a tag-order profile (ordered tag groups).
- Raise a node past every node it `requires`, so a dependent section never precedes its dependency.
- Sort every sibling list (including each variant's children) with one order map per tree pass.
- Report soft ordering smells and post-sort dependency violations as issues; never reorder for them.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import cmp_to_key

from skeleton_orchestrator.observability.logging import get_logger
from skeleton_orchestrator.orchestrator.models import (
    Evidence,
    Issue,
    Severity,
    Skeleton,
    SkeletonNode,
)

log = get_logger(__name__)

EPSILON = 0.01
TIE_TOLERANCE = 0.001

BAD_NEWS_TAGS = frozenset(
    {"liability", "penalties", "damages", "force_majeure", "dispute_resolution", "arbitration"}
)
FORMALITY_TAGS = frozenset({"addresses", "bank_details", "requisites", "signatures", "execution"})

_PATH_SEPARATORS = re.compile(r"[/.:#\[\]\s]+")


def _normalize_tag(tag: str) -> str:
    return tag.strip().lower()


@dataclass(frozen=True, slots=True)
class TagGroup:
    name: str
    tags: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class TagOrderProfile:
    groups: tuple[TagGroup, ...]
    unknown_tags_group_index: int = 5
    commercial_group_index: int = 3
    _positions: dict[str, tuple[int, int]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        positions: dict[str, tuple[int, int]] = {}
        for group_index, group in enumerate(self.groups):
            for position, tag in enumerate(group.tags):
                positions.setdefault(_normalize_tag(tag), (group_index, position))
        object.__setattr__(self, "_positions", positions)

    def locate(self, tag: str) -> tuple[int, int] | None:
        """(group_index, position_within_group) of a tag, or None when no group lists it."""
        return self._positions.get(_normalize_tag(tag))

    @property
    def closing_group_index(self) -> int:
        # First of the two terminal groups.
        return max(len(self.groups) - 2, 0)


DEFAULT_PROFILE = TagOrderProfile(
    groups=(
        TagGroup("identification", ("parties", "preamble", "identification", "definitions")),
        TagGroup("subject", ("subject", "scope", "services", "goods", "work")),
        TagGroup("term", ("term", "duration", "effective_date", "deadlines")),
        TagGroup("commercial", ("price", "payment", "commercial_terms", "fees", "invoicing")),
        TagGroup("performance", ("performance", "delivery", "acceptance", "sla", "reporting")),
        TagGroup(
            "rights_obligations",
            ("rights", "obligations", "confidentiality", "ip", "data_protection", "warranties"),
        ),
        TagGroup(
            "risk",
            (
                "liability",
                "penalties",
                "damages",
                "force_majeure",
                "dispute_resolution",
                "arbitration",
                "governing_law",
            ),
        ),
        TagGroup("termination", ("termination", "amendment", "assignment")),
        TagGroup(
            "closing",
            (
                "final_provisions",
                "notices",
                "addresses",
                "bank_details",
                "requisites",
                "signatures",
                "execution",
                "appendices",
            ),
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class SortResult:
    skeleton: Skeleton
    issues: list[Issue]


def base_order(node: SkeletonNode, profile: TagOrderProfile = DEFAULT_PROFILE) -> float:
    for tag in node.tags:
        hit = profile.locate(tag)
        if hit is not None:
            group_index, position = hit
            return group_index + position / 100
    return float(profile.unknown_tags_group_index)


def resolve_requires(node: SkeletonNode, known_ids: Iterable[str]) -> list[str]:
    """
    Map `node.requires` entries onto known node ids.

    An entry resolves by exact id first, then by any path segment equal to an id
    (`sections/payment`, `document.payment`), then by ids occurring as substrings of the entry.
    The node itself is never its own dependency.
    """

    known = set(known_ids)
    known.discard(node.node_id)
    resolved: list[str] = []

    for entry in node.requires:
        entry = entry.strip()
        if not entry:
            continue
        if entry in known:
            matches = [entry]
        else:
            matches = [seg for seg in _PATH_SEPARATORS.split(entry) if seg in known]
            if not matches:
                found = [nid for nid in known if nid in entry]
                # Prefer the longest ids: "n10" inside an entry also contains "n1".
                matches = [
                    nid for nid in found if not any(nid != other and nid in other for other in found)
                ]
                matches.sort()
        for match in matches:
            if match not in resolved:
                resolved.append(match)
    return resolved


class OrderMap:
    """Adjusted order keys for every node of one tree, memoized, with a cycle guard."""

    def __init__(self, skeleton: Skeleton, profile: TagOrderProfile = DEFAULT_PROFILE) -> None:
        self._profile = profile
        self._nodes: dict[str, SkeletonNode] = {}
        for node in skeleton.walk():
            self._nodes.setdefault(node.node_id, node)
        self.dependencies: dict[str, list[str]] = {
            nid: resolve_requires(node, self._nodes) for nid, node in self._nodes.items()
        }
        self._orders: dict[str, float] = {}
        self._visiting: set[str] = set()

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def order(self, node_id: str) -> float:
        cached = self._orders.get(node_id)
        if cached is not None:
            return cached

        node = self._nodes[node_id]
        base = base_order(node, self._profile)
        if node_id in self._visiting:
            log.warning("skeleton_dependency_cycle", node_id=node_id)
            return base

        self._visiting.add(node_id)
        try:
            dep_orders = [self.order(dep) for dep in self.dependencies[node_id]]
        finally:
            self._visiting.discard(node_id)

        value = base
        if dep_orders:
            max_dependency_order = max(dep_orders)
            if base <= max_dependency_order:
                value = max_dependency_order + EPSILON
        self._orders[node_id] = value
        return value

    def group_index(self, node_id: str) -> int:
        return math.floor(self.order(node_id) + TIE_TOLERANCE)


def sort_skeleton(skeleton: Skeleton, profile: TagOrderProfile = DEFAULT_PROFILE) -> SortResult:
    orders = OrderMap(skeleton, profile)
    sorted_skeleton = Skeleton(root=_sort_node(skeleton.root, orders))

    issues = [
        *_soft_rule_issues(sorted_skeleton, orders, profile),
        *check_dependency_order(sorted_skeleton, profile, orders=orders),
    ]
    log.info(
        "skeleton_sorted",
        nodes=sum(1 for _ in sorted_skeleton.walk()),
        issues=len(issues),
    )
    return SortResult(skeleton=sorted_skeleton, issues=issues)


def _sort_node(node: SkeletonNode, orders: OrderMap) -> SkeletonNode:
    children = _sort_siblings(node.children, orders)
    variants = [
        variant.model_copy(update={"children": _sort_siblings(variant.children, orders)})
        for variant in node.variants
    ]
    return node.model_copy(update={"children": children, "variants": variants})


def _sort_siblings(siblings: list[SkeletonNode], orders: OrderMap) -> list[SkeletonNode]:
    def compare(a: tuple[int, SkeletonNode], b: tuple[int, SkeletonNode]) -> int:
        (index_a, node_a), (index_b, node_b) = a, b
        order_a, order_b = orders.order(node_a.node_id), orders.order(node_b.node_id)
        if abs(order_a - order_b) > TIE_TOLERANCE:
            return -1 if order_a < order_b else 1

        requires_a, requires_b = _requires_count(node_a), _requires_count(node_b)
        if (requires_a > 0) != (requires_b > 0):
            return -1 if requires_a == 0 else 1
        if requires_a != requires_b:
            return requires_a - requires_b
        if len(node_a.tags) != len(node_b.tags):
            return len(node_a.tags) - len(node_b.tags)
        return index_a - index_b

    ranked = sorted(enumerate(siblings), key=cmp_to_key(compare))
    return [_sort_node(node, orders) for _, node in ranked]


def _requires_count(node: SkeletonNode) -> int:
    return sum(1 for entry in node.requires if entry.strip())


def _order_issue(
    issue_id: str, severity: Severity, title: str, why: str, hint: str, node_id: str
) -> Issue:
    return Issue(
        id=issue_id,
        key=issue_id,
        severity=severity,
        title=title,
        why_it_matters=why,
        resolution_hint=hint,
        evidence=[Evidence(kind="note", ref=node_id)],
    )


def _soft_rule_issues(
    skeleton: Skeleton, orders: OrderMap, profile: TagOrderProfile
) -> list[Issue]:
    issues: list[Issue] = []
    seen: set[str] = set()
    for node in skeleton.walk():
        if node.node_id in seen:
            continue
        seen.add(node.node_id)
        tags = {_normalize_tag(t) for t in node.tags}
        group = orders.group_index(node.node_id)

        if tags & BAD_NEWS_TAGS and group < profile.commercial_group_index:
            issues.append(
                _order_issue(
                    f"bad_news_early:{node.node_id}",
                    "med",
                    f"Раздел об ответственности или спорах ({node.title or node.node_id}) стоит "
                    "раньше коммерческих условий",
                    "Условия об ответственности и спорах обычно следуют за предметом и ценой",
                    "Проверьте tags узла или перенесите его после коммерческих условий",
                    node.node_id,
                )
            )
        if tags & FORMALITY_TAGS and group < profile.closing_group_index:
            issues.append(
                _order_issue(
                    f"formalities_early:{node.node_id}",
                    "low",
                    f"Реквизиты или подписи ({node.title or node.node_id}) стоят не в конце документа",
                    "Реквизиты, адреса и подписи принято размещать в заключительной части",
                    "Перенесите узел в заключительные положения",
                    node.node_id,
                )
            )
    return issues


def check_dependency_order(
    skeleton: Skeleton,
    profile: TagOrderProfile = DEFAULT_PROFILE,
    *,
    orders: OrderMap | None = None,
) -> list[Issue]:
    """
    Verify that no node precedes a node it requires.

    Sibling violations are `high`; a dependency in another branch that comes later in the
    document is `med`. Ancestor/descendant pairs are not ordering constraints.
    """

    orders = orders or OrderMap(skeleton, profile)
    positions: dict[str, tuple[int, ...]] = {}

    def index(node: SkeletonNode, key: tuple[int, ...]) -> None:
        positions.setdefault(node.node_id, key)
        for i, child in enumerate(node.children):
            index(child, (*key, i))
        for v_index, variant in enumerate(node.variants):
            slot = len(node.children) + v_index
            for i, child in enumerate(variant.children):
                index(child, (*key, slot, i))

    index(skeleton.root, ())

    issues: list[Issue] = []
    for node_id, deps in orders.dependencies.items():
        here = positions[node_id]
        for dep in deps:
            there = positions[dep]
            if here[: len(there)] == there or there[: len(here)] == here:
                continue
            if here[:-1] == there[:-1]:
                if there[-1] > here[-1]:
                    issues.append(
                        _order_issue(
                            f"dependency_order:{node_id}:{dep}",
                            "high",
                            f"Узел {node_id} стоит раньше узла {dep}, от которого зависит",
                            "Раздел, который логически невозможен без другого, не может ему "
                            "предшествовать",
                            f"Перенесите {node_id} после {dep}",
                            node_id,
                        )
                    )
            elif there > here:
                issues.append(
                    _order_issue(
                        f"dependency_order:{node_id}:{dep}",
                        "med",
                        f"Узел {node_id} находится в группе раньше узла {dep}, от которого зависит",
                        "Зависимость из другой ветви документа оказывается ниже по тексту",
                        f"Проверьте структуру: {dep} должен предшествовать {node_id}",
                        node_id,
                    )
                )
    return issues
