"""Apply validated deltas to the map.

:func:`apply_delta` mutates the graph it is given and is used on copies
(projection, staging). :func:`commit_delta` is the only writer of the live
map: it applies the delta to a copy, checks the map invariants, and swaps
the copy in only when everything succeeded.

Application order:
1. Node adds cancelled by a same-name node remove (both dropped), and
   removals of nodes that an update renames or touches
2. Node removals (edges cascade)
3. Node adds (existing node under the same parent is reused)
4. Node updates
5. Edge removals
6. Edge adds
7. Edge updates
8. Current-node suggestion
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cartographer.graph.errors import GraphCorruptionError
from cartographer.graph.graph import is_root_reference
from cartographer.graph.models import (
    LEAF_CATEGORIES,
    ROOT_NODE_ID,
    EdgeStatus,
    MapEdge,
    MapNode,
    NodeStatus,
)
from cartographer.observability.logging import get_logger

if TYPE_CHECKING:
    from cartographer.delta.models import (
        EdgeAdd,
        EdgeRemove,
        EdgeUpdate,
        MapDelta,
        NodeAdd,
        NodeRemove,
        NodeUpdate,
    )
    from cartographer.graph.graph import MapGraph

log = get_logger(__name__)

_SANITIZE_SPACES = re.compile(r"\s+")
_SANITIZE_CHARS = re.compile(r"[^a-zA-Z0-9_]")


@dataclass
class MapPatch:
    """Ids touched by one application, per entity kind and change."""

    nodes_added: list[str] = field(default_factory=list)
    nodes_updated: list[str] = field(default_factory=list)
    nodes_removed: list[str] = field(default_factory=list)
    edges_added: list[str] = field(default_factory=list)
    edges_updated: list[str] = field(default_factory=list)
    edges_removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.nodes_added,
                self.nodes_updated,
                self.nodes_removed,
                self.edges_added,
                self.edges_updated,
                self.edges_removed,
            )
        )

    def mark_node_updated(self, node_id: str) -> None:
        if node_id not in self.nodes_added and node_id not in self.nodes_updated:
            self.nodes_updated.append(node_id)

    def mark_edge_updated(self, edge_id: str) -> None:
        if edge_id not in self.edges_added and edge_id not in self.edges_updated:
            self.edges_updated.append(edge_id)


@dataclass
class ApplyResult:
    """What an application changed.

    Attributes:
        patch: Ids of every added, updated and removed entity.
        created_nodes: Nodes minted by this application.
        created_edges: Edges minted by this application.
        current_node_id: Resolved player position hint, if any.
        warnings: Operations skipped or adjusted, in order.
    """

    patch: MapPatch = field(default_factory=MapPatch)
    created_nodes: list[MapNode] = field(default_factory=list)
    created_edges: list[MapEdge] = field(default_factory=list)
    current_node_id: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class CommitResult(ApplyResult):
    """ApplyResult plus the graph the delta was committed to."""

    graph: MapGraph | None = None


def sanitize_name(name: str) -> str:
    """Reduce a display name to an id-safe token."""
    return _SANITIZE_CHARS.sub("", _SANITIZE_SPACES.sub("_", name.strip()))


def _suffix() -> str:
    return uuid.uuid4().hex[:4]


def mint_node_id(graph: MapGraph, name: str) -> str:
    """Mint an unused ``node_<name>_<suffix>`` id."""
    base = f"node_{sanitize_name(name)}"
    while True:
        candidate = f"{base}_{_suffix()}"
        if graph.get_node(candidate) is None:
            return candidate


def mint_edge_id(graph: MapGraph, source_id: str, target_id: str) -> str:
    """Mint an unused ``edge_<source>_<target>_<suffix>`` id."""
    base = f"edge_{source_id}_{target_id}"
    while True:
        candidate = f"{base}_{_suffix()}"
        if graph.get_edge(candidate) is None:
            return candidate


class _Application:
    """State for applying one delta to one graph."""

    def __init__(self, graph: MapGraph, delta: MapDelta) -> None:
        self.graph = graph
        self.delta = delta
        self.result = ApplyResult()

    def warn(self, event: str, message: str, **context: object) -> None:
        log.warning(event, **context)
        self.result.warnings.append(message)

    # -- step 1 ------------------------------------------------------------

    def cancel_conflicting_ops(self) -> tuple[list[NodeAdd], list[NodeRemove]]:
        adds = list(self.delta.nodes_to_add)
        removes = list(self.delta.nodes_to_remove)

        kept_adds: list[NodeAdd] = []
        for op in adds:
            needle = op.name.strip().lower()
            match = next(
                (r for r in removes if r.node_name and r.node_name.strip().lower() == needle),
                None,
            )
            if match is not None:
                removes.remove(match)
                log.debug("node_add_remove_cancelled", name=op.name)
                continue
            kept_adds.append(op)

        updated_names = set()
        for upd in self.delta.nodes_to_update:
            updated_names.add(upd.name.strip().lower())
            if upd.new_name:
                updated_names.add(upd.new_name.strip().lower())
        kept_removes: list[NodeRemove] = []
        for r in removes:
            if r.node_name and r.node_name.strip().lower() in updated_names:
                log.debug("node_remove_dropped_for_update", name=r.node_name)
                continue
            kept_removes.append(r)

        return kept_adds, kept_removes

    # -- step 2 ------------------------------------------------------------

    def remove_nodes(self, removes: list[NodeRemove]) -> None:
        for op in removes:
            if is_root_reference(op.ref):
                self.warn("root_removal_ignored", "Ignored removal of the root", ref=op.ref)
                continue
            node = self.graph.find_node(op.node_id) if op.node_id else None
            if node is None and op.node_name:
                node = self.graph.find_node(op.node_name)
            if node is None:
                self.warn("node_remove_not_found", f"Node '{op.ref}' not found for removal", ref=op.ref)
                continue
            removed_edges = self.graph.delete_node(node.id, cascade=True)
            self.result.patch.nodes_removed.append(node.id)
            for edge_id in removed_edges:
                if edge_id not in self.result.patch.edges_removed:
                    self.result.patch.edges_removed.append(edge_id)
            log.debug("node_removed", node_id=node.id, cascaded_edges=len(removed_edges))

    # -- step 3 ------------------------------------------------------------

    def _resolve_parent(self, ref: str) -> str | None:
        """Return the parent id for *ref*, ROOT_NODE_ID for root, None if unknown."""
        if is_root_reference(ref):
            return ROOT_NODE_ID
        node = self.graph.find_node(ref)
        return node.id if node is not None else None

    def _reusable_node(self, op: NodeAdd, parent_id: str) -> MapNode | None:
        # Same-named places elsewhere on the map are distinct; only siblings count.
        siblings = [c for c in self.graph.children_of(parent_id) if c.matches_name(op.name)]
        needle = op.name.strip().lower()
        exact = next((c for c in siblings if c.name.lower() == needle), None)
        return exact or next(iter(siblings), None)

    def _add_node(self, op: NodeAdd, parent_id: str) -> None:
        existing = self._reusable_node(op, parent_id)
        if existing is not None:
            aliases = list(existing.aliases)
            for alias in op.aliases:
                if alias not in aliases and alias.lower() != existing.name.lower():
                    aliases.append(alias)
            updates: dict[str, object] = {"aliases": aliases}
            if not existing.description.strip():
                updates["description"] = op.description
            self.graph.update_node(existing.id, **updates)
            self.result.patch.mark_node_updated(existing.id)
            log.debug("node_add_reused_existing", node_id=existing.id, name=op.name)
            return

        node = MapNode(
            id=mint_node_id(self.graph, op.name),
            name=op.name,
            aliases=list(op.aliases),
            description=op.description,
            category=op.category,
            status=op.status,
            parent_id=parent_id,
            is_leaf=op.category in LEAF_CATEGORIES,
        )
        self.graph.create_node(node)
        self.result.created_nodes.append(node)
        self.result.patch.nodes_added.append(node.id)
        log.debug("node_created", node_id=node.id, parent_id=parent_id)

    def add_nodes(self, adds: list[NodeAdd]) -> None:
        queue: list[NodeAdd] = []
        for op in adds:
            if is_root_reference(op.name):
                self.warn("root_add_ignored", "Ignored attempt to add the root", name=op.name)
                continue
            queue.append(op)

        # Parents may be added later in the same batch; keep going while
        # each round resolves at least one more parent.
        while queue:
            pending: list[NodeAdd] = []
            for op in queue:
                parent_id = self._resolve_parent(op.parent)
                if parent_id is None:
                    pending.append(op)
                    continue
                self._add_node(op, parent_id)
            if len(pending) == len(queue):
                for op in pending:
                    self.warn(
                        "node_parent_unresolved",
                        f"Parent '{op.parent}' of '{op.name}' not found; attached to root",
                        name=op.name,
                        parent=op.parent,
                    )
                    self._add_node(op, ROOT_NODE_ID)
                break
            queue = pending

    # -- step 4 ------------------------------------------------------------

    def _update_node(self, op: NodeUpdate) -> None:
        node = self.graph.find_node(op.name)
        if node is None:
            self.warn("node_update_not_found", f"Node '{op.name}' not found for update", name=op.name)
            return

        updates: dict[str, object] = {}
        aliases = list(node.aliases)
        if op.aliases is not None:
            for alias in op.aliases:
                if alias not in aliases:
                    aliases.append(alias)
        name = node.name
        if op.new_name and op.new_name != node.name:
            if node.name not in aliases:
                aliases.append(node.name)
            name = op.new_name
            updates["name"] = name
        aliases = [a for a in aliases if a.lower() != name.lower()]
        if aliases != node.aliases:
            updates["aliases"] = aliases

        if op.description is not None:
            updates["description"] = op.description
        if op.status is not None:
            updates["status"] = op.status
        if op.category is not None:
            updates["category"] = op.category
            updates["is_leaf"] = op.category in LEAF_CATEGORIES
        if op.parent is not None:
            parent_id = self._resolve_parent(op.parent)
            if parent_id is None:
                self.warn(
                    "node_update_parent_not_found",
                    f"Parent '{op.parent}' of '{node.name}' not found; parent unchanged",
                    name=node.name,
                    parent=op.parent,
                )
            elif parent_id == node.id:
                self.warn("node_update_self_parent", f"'{node.name}' cannot contain itself", name=node.name)
            else:
                updates["parent_id"] = parent_id

        if not updates:
            return
        self.graph.update_node(node.id, **updates)
        self.result.patch.mark_node_updated(node.id)

    def update_nodes(self) -> None:
        for op in self.delta.nodes_to_update:
            self._update_node(op)

    # -- step 5 ------------------------------------------------------------

    def _find_edge_for_removal(self, op: EdgeRemove) -> MapEdge | None:
        if op.edge_id:
            edge = self.graph.get_edge(op.edge_id)
            if edge is not None:
                return edge
            needle = op.edge_id.strip().lower()
            for candidate in self.graph.edges:
                if candidate.id.lower().startswith(needle):
                    return candidate
        if op.source_id and op.target_id:
            source = self.graph.find_node(op.source_id)
            target = self.graph.find_node(op.target_id)
            if source is None or target is None:
                return None
            matches = self.graph.edges_between(source.id, target.id, op.category)
            return matches[0] if matches else None
        return None

    def remove_edges(self) -> None:
        for op in self.delta.edges_to_remove:
            edge = self._find_edge_for_removal(op)
            if edge is None:
                ref = op.edge_id or f"{op.source_id} - {op.target_id}"
                self.warn("edge_remove_not_found", f"Edge '{ref}' not found for removal", ref=ref)
                continue
            self.graph.remove_edge(edge.id)
            self.result.patch.edges_removed.append(edge.id)

    # -- step 6 ------------------------------------------------------------

    def _add_edge(self, op: EdgeAdd) -> None:
        source = self.graph.find_node(op.source)
        target = self.graph.find_node(op.target)
        if source is None or target is None:
            self.warn(
                "edge_add_endpoint_missing",
                f"Skipped edge '{op.source}' - '{op.target}': endpoint not found",
                source=op.source,
                target=op.target,
            )
            return
        if source.id == target.id:
            self.warn("edge_add_self_loop", f"Skipped edge from '{source.name}' to itself", node=source.id)
            return
        if self.graph.edges_between(source.id, target.id, op.category):
            log.debug("edge_add_already_exists", source=source.id, target=target.id, category=op.category)
            return

        status = op.status
        if status is None:
            rumored = NodeStatus.RUMORED in (source.status, target.status)
            status = EdgeStatus.RUMORED if rumored else EdgeStatus.OPEN
        edge = MapEdge(
            id=mint_edge_id(self.graph, source.id, target.id),
            source=source.id,
            target=target.id,
            category=op.category,
            status=status,
            description=op.description or "",
            travel_time=op.travel_time,
        )
        self.graph.add_edge(edge)
        self.result.created_edges.append(edge)
        self.result.patch.edges_added.append(edge.id)

    def add_edges(self) -> None:
        for op in self.delta.edges_to_add:
            self._add_edge(op)

    # -- step 7 ------------------------------------------------------------

    def _update_edge(self, op: EdgeUpdate) -> None:
        source = self.graph.find_node(op.source)
        target = self.graph.find_node(op.target)
        if source is None or target is None:
            self.warn(
                "edge_update_endpoint_missing",
                f"Skipped edge update '{op.source}' - '{op.target}': endpoint not found",
                source=op.source,
                target=op.target,
            )
            return
        candidates = self.graph.edges_between(source.id, target.id)
        if op.category is not None:
            same_category = [e for e in candidates if e.category == op.category]
            candidates = same_category or candidates
        if not candidates:
            self.warn(
                "edge_update_not_found",
                f"No edge between '{source.name}' and '{target.name}' to update",
                source=source.id,
                target=target.id,
            )
            return

        edge = candidates[0]
        updates = {
            key: value
            for key, value in (
                ("category", op.category),
                ("status", op.status),
                ("description", op.description),
                ("travel_time", op.travel_time),
            )
            if value is not None
        }
        if not updates:
            return
        self.graph.update_edge(edge.id, **updates)
        self.result.patch.mark_edge_updated(edge.id)

    def update_edges(self) -> None:
        for op in self.delta.edges_to_update:
            self._update_edge(op)

    # -- step 8 ------------------------------------------------------------

    def resolve_current_node(self) -> None:
        ref = self.delta.suggested_current_node
        if not ref:
            return
        node = self.graph.find_node(ref)
        if node is None:
            self.warn(
                "current_node_not_found",
                f"Suggested current node '{ref}' not found",
                ref=ref,
            )
            return
        self.result.current_node_id = node.id

    def run(self) -> ApplyResult:
        adds, removes = self.cancel_conflicting_ops()
        self.remove_nodes(removes)
        self.add_nodes(adds)
        self.update_nodes()
        self.remove_edges()
        self.add_edges()
        self.update_edges()
        self.resolve_current_node()
        return self.result


def apply_delta(graph: MapGraph, delta: MapDelta) -> ApplyResult:
    """Apply *delta* to *graph* in place.

    Unresolvable operations are skipped with a warning; they never abort
    the application. Use on copies; the live map goes through
    :func:`commit_delta`.

    Raises:
        GraphIntegrityError: If a graph primitive rejects a mutation.
    """
    return _Application(graph, delta).run()


def commit_delta(graph: MapGraph, delta: MapDelta) -> CommitResult:
    """Atomically apply *delta* to the live map.

    The delta is applied to a copy. The copy replaces the live contents
    only if it introduces no new invariant violation; otherwise *graph* is
    left untouched.

    Args:
        graph: The live map.
        delta: A validated and resolved delta.

    Returns:
        CommitResult describing the committed change.

    Raises:
        GraphIntegrityError: If a graph primitive rejects a mutation.
        GraphCorruptionError: If the staged map breaks an invariant.
    """
    baseline = set(graph.validate_invariants())
    staged = graph.copy()
    applied = apply_delta(staged, delta)

    introduced = [v for v in staged.validate_invariants() if v not in baseline]
    if introduced:
        log.error("commit_rejected", violations=introduced)
        raise GraphCorruptionError(introduced)

    graph.replace_with(staged)
    log.info(
        "delta_committed",
        nodes_added=len(applied.patch.nodes_added),
        nodes_updated=len(applied.patch.nodes_updated),
        nodes_removed=len(applied.patch.nodes_removed),
        edges_added=len(applied.patch.edges_added),
        edges_removed=len(applied.patch.edges_removed),
        warnings=len(applied.warnings),
    )
    return CommitResult(
        patch=applied.patch,
        created_nodes=applied.created_nodes,
        created_edges=applied.created_edges,
        current_node_id=applied.current_node_id,
        warnings=applied.warnings,
        graph=graph,
    )
