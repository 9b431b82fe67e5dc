"""Hierarchy levels, category promotion/demotion, and route connection rules.

A node's category fixes its level (region is the highest, feature the
lowest). A parent must always sit strictly above its children. These
helpers only inspect nodes; they never mutate them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory, MapNode, NodeCategory

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

NODE_CATEGORY_LEVELS: dict[NodeCategory, int] = {
    category: level for level, category in enumerate(NodeCategory)
}

NODE_CATEGORY_DOWNGRADE: dict[NodeCategory, NodeCategory | None] = {
    NodeCategory.REGION: NodeCategory.LOCATION,
    NodeCategory.LOCATION: NodeCategory.SETTLEMENT,
    NodeCategory.SETTLEMENT: None,
    NodeCategory.DISTRICT: None,
    NodeCategory.EXTERIOR: None,
    NodeCategory.INTERIOR: NodeCategory.ROOM,
    NodeCategory.ROOM: NodeCategory.FEATURE,
    NodeCategory.FEATURE: None,
}

NODE_CATEGORY_UPGRADE: dict[NodeCategory, NodeCategory | None] = {
    NodeCategory.FEATURE: NodeCategory.ROOM,
    NodeCategory.ROOM: NodeCategory.INTERIOR,
    NodeCategory.INTERIOR: NodeCategory.EXTERIOR,
    NodeCategory.EXTERIOR: NodeCategory.DISTRICT,
    NodeCategory.DISTRICT: NodeCategory.SETTLEMENT,
    NodeCategory.SETTLEMENT: NodeCategory.LOCATION,
    NodeCategory.LOCATION: NodeCategory.REGION,
    NodeCategory.REGION: None,
}


def level_of(category: NodeCategory | str) -> int:
    """Return the hierarchy level of a category (0 is the highest)."""
    return NODE_CATEGORY_LEVELS[NodeCategory(category)]


def is_conflict(parent_category: NodeCategory | str, child_category: NodeCategory | str) -> bool:
    """True when a parent of *parent_category* may not hold *child_category*."""
    return level_of(parent_category) >= level_of(child_category)


def _children(node_id: str, nodes: Iterable[MapNode]) -> list[MapNode]:
    return [n for n in nodes if n.parent_id == node_id]


def suggest_downgrade(
    node: MapNode,
    parent_category: NodeCategory,
    nodes: Iterable[MapNode],
) -> NodeCategory | None:
    """Suggest a lower category for *node* that fits under its parent.

    The candidate must sit below the parent and still above every current
    child of *node*.

    Args:
        node: Node to demote.
        parent_category: Category of the node's parent.
        nodes: All nodes of the (projected) map.

    Returns:
        The demoted category, or None if no single-step demotion fits.
    """
    candidate = NODE_CATEGORY_DOWNGRADE[node.category]
    if candidate is None or is_conflict(parent_category, candidate):
        return None
    candidate_level = level_of(candidate)
    if all(level_of(c.category) > candidate_level for c in _children(node.id, nodes)):
        return candidate
    return None


def suggest_upgrade(
    node: MapNode,
    nodes_by_id: Mapping[str, MapNode],
) -> NodeCategory | None:
    """Suggest a single-step promotion of *node* that keeps its own parent valid.

    Returns:
        The promoted category, or None if the promotion would collide with
        the node's parent or leave a child at the same level.
    """
    candidate = NODE_CATEGORY_UPGRADE[node.category]
    if candidate is None:
        return None
    candidate_level = level_of(candidate)
    parent = nodes_by_id.get(node.parent_id)
    if parent is not None and level_of(parent.category) >= candidate_level:
        return None
    if any(level_of(c.category) <= candidate_level for c in _children(node.id, nodes_by_id.values())):
        return None
    return candidate


def lowest_category_above(
    node: MapNode,
    nodes_by_id: Mapping[str, MapNode],
) -> NodeCategory | None:
    """Find the lowest category that sits above all children of *node*.

    Used when promoting a feature that acquired children. Walks the upgrade
    chain one step at a time and stops at the first category strictly above
    every child; the node's own parent must remain strictly above it.
    """
    children = _children(node.id, nodes_by_id.values())
    if not children:
        return None
    ceiling = min(level_of(c.category) for c in children)
    parent = nodes_by_id.get(node.parent_id)
    candidate = NODE_CATEGORY_UPGRADE[node.category]
    while candidate is not None:
        if level_of(candidate) < ceiling:
            if parent is not None and level_of(parent.category) >= level_of(candidate):
                return None
            return candidate
        candidate = NODE_CATEGORY_UPGRADE[candidate]
    return None


def closest_allowed_ancestor(
    start_id: str,
    child_category: NodeCategory,
    nodes_by_id: Mapping[str, MapNode],
) -> str:
    """Walk up from *start_id* to the first ancestor that may hold *child_category*.

    Returns:
        The ancestor's id, or ROOT_NODE_ID if none qualifies.
    """
    seen: set[str] = set()
    current = start_id
    while current != ROOT_NODE_ID and current not in seen:
        seen.add(current)
        node = nodes_by_id.get(current)
        if node is None:
            break
        if not is_conflict(node.category, child_category):
            return node.id
        current = node.parent_id
    return ROOT_NODE_ID


def find_hierarchy_conflicts(nodes_by_id: Mapping[str, MapNode]) -> list[tuple[str, str]]:
    """List every (child_id, parent_id) pair whose parent is not strictly higher."""
    conflicts: list[tuple[str, str]] = []
    for node in nodes_by_id.values():
        if node.parent_id == ROOT_NODE_ID:
            continue
        parent = nodes_by_id.get(node.parent_id)
        if parent is None:
            continue
        if is_conflict(parent.category, node.category):
            conflicts.append((node.id, parent.id))
    return conflicts


def has_hierarchy_conflict(nodes_by_id: Mapping[str, MapNode]) -> bool:
    """True if any parent/child pair violates the level ordering."""
    return bool(find_hierarchy_conflicts(nodes_by_id))


def _parent_of(node_id: str, nodes_by_id: Mapping[str, MapNode]) -> str:
    node = nodes_by_id.get(node_id)
    return node.parent_id if node is not None else ROOT_NODE_ID


def is_edge_connection_allowed(
    a: MapNode,
    b: MapNode,
    category: EdgeCategory | str,
    nodes_by_id: Mapping[str, MapNode],
) -> bool:
    """True if an edge of *category* may join *a* and *b*.

    Routes only run between features. A shortcut may join any two features;
    other routes need the features to share a parent or a grandparent, or
    one feature's parent to be the other's grandparent.
    """
    if a.category is not NodeCategory.FEATURE or b.category is not NodeCategory.FEATURE:
        return False
    if EdgeCategory(category) is EdgeCategory.SHORTCUT:
        return True
    for parent_id in (a.parent_id, b.parent_id):
        if parent_id != ROOT_NODE_ID and parent_id not in nodes_by_id:
            return False
    if a.parent_id == b.parent_id:
        return True
    grand_a = _parent_of(a.parent_id, nodes_by_id)
    grand_b = _parent_of(b.parent_id, nodes_by_id)
    return grand_a == grand_b or b.parent_id == grand_a or a.parent_id == grand_b


def _connection_endpoints(node: MapNode, nodes_by_id: Mapping[str, MapNode]) -> list[tuple[int, MapNode]]:
    """Features that can stand in for *node*, paired with how far up they sit."""
    endpoints: list[tuple[int, MapNode]] = []
    seen: set[str] = set()
    if node.category is NodeCategory.FEATURE:
        endpoints.append((0, node))
        seen.add(node.id)
    distance = 0
    current: str = node.id
    while current != ROOT_NODE_ID and current in nodes_by_id:
        features = sorted(
            (c for c in _children(current, nodes_by_id.values()) if c.category is NodeCategory.FEATURE),
            key=lambda c: c.name.lower(),
        )
        for feature in features:
            if feature.id not in seen:
                seen.add(feature.id)
                endpoints.append((distance, feature))
        distance += 1
        current = nodes_by_id[current].parent_id
        if current in seen:
            break
        seen.add(current)
    return endpoints


def nearest_connection(
    a: MapNode,
    b: MapNode,
    category: EdgeCategory | str,
    nodes_by_id: Mapping[str, MapNode],
) -> tuple[MapNode, MapNode] | None:
    """Find the closest pair of features that may carry a route between *a* and *b*.

    Each side climbs its ancestor chain, offering itself when it is a
    feature and then the features directly under each ancestor. The pair
    with the smallest combined climb wins; ties go to the earlier source
    endpoint, then the earlier target endpoint.

    Returns:
        The (source, target) pair, or None if no allowed pair exists.
    """
    best: tuple[int, int, int] | None = None
    found: tuple[MapNode, MapNode] | None = None
    for i, (dist_a, end_a) in enumerate(_connection_endpoints(a, nodes_by_id)):
        for j, (dist_b, end_b) in enumerate(_connection_endpoints(b, nodes_by_id)):
            if end_a.id == end_b.id:
                continue
            rank = (dist_a + dist_b, i, j)
            if best is not None and rank >= best:
                continue
            if is_edge_connection_allowed(end_a, end_b, category, nodes_by_id):
                best, found = rank, (end_a, end_b)
    return found
