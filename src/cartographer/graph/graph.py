"""The canonical world map.

MapGraph is the single long-lived aggregate of places and routes for the
active setting. It enforces referential integrity similar to foreign keys
in databases:
- Node creation is explicit (create_node fails if the id exists)
- Node updates require the node to exist
- Edges validate that both endpoints exist
- The root sentinel is never stored and never a mutation target

Only the commit step writes to the live graph. Everything else works on
:meth:`MapGraph.copy` snapshots or reads through the query helpers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from cartographer.graph.errors import (
    EdgeEndpointError,
    EdgeNotFoundError,
    NodeExistsError,
    NodeNotFoundError,
    RootMutationError,
)
from cartographer.graph.hierarchy import find_hierarchy_conflicts
from cartographer.graph.models import ROOT_ALIASES, ROOT_NODE_ID, MapEdge, MapNode
from cartographer.graph.store import DictMapStore, MapStore

if TYPE_CHECKING:
    from cartographer.graph.models import EdgeCategory


def is_root_reference(ref: str | None) -> bool:
    """True if *ref* names the implicit root (or is empty)."""
    if ref is None:
        return True
    return ref.strip().lower() in ROOT_ALIASES


class MapGraph:
    """Hierarchical graph of map nodes and the edges between them.

    Storage is delegated to a MapStore backend (DictMapStore by default).

    Attributes:
        _store: The underlying storage backend.
    """

    def __init__(self, *, store: MapStore | None = None) -> None:
        """Initialize the graph.

        Args:
            store: Pre-built storage backend. Defaults to an empty DictMapStore.
        """
        self._store: MapStore = store if store is not None else DictMapStore()

    # -------------------------------------------------------------------------
    # Construction and snapshots
    # -------------------------------------------------------------------------

    @classmethod
    def empty(cls) -> MapGraph:
        """Create an empty map."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MapGraph:
        """Load a map from the dict form produced by :meth:`to_dict`."""
        return cls(store=DictMapStore.from_dict(data))

    def to_dict(self) -> dict[str, Any]:
        """Serialize the map to a JSON-shaped dict."""
        return self._store.to_dict()

    def copy(self) -> MapGraph:
        """Return an independent deep copy.

        Used to project a delta, or to stage a commit before swapping it in.
        """
        return MapGraph(store=self._store.copy())

    def replace_with(self, other: MapGraph) -> None:
        """Adopt the contents of *other* in a single step.

        The caller's reference to this graph stays valid; readers never
        observe a half-applied state.
        """
        self._store = other._store

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def nodes(self) -> list[MapNode]:
        return self._store.all_nodes()

    @property
    def edges(self) -> list[MapEdge]:
        return self._store.all_edges()

    def nodes_by_id(self) -> dict[str, MapNode]:
        """Return a fresh id -> node mapping."""
        return {n.id: n for n in self._store.all_nodes()}

    def get_node(self, node_id: str) -> MapNode | None:
        """Get a node by exact id."""
        return self._store.get_node(node_id)

    def get_edge(self, edge_id: str) -> MapEdge | None:
        """Get an edge by exact id."""
        return self._store.get_edge(edge_id)

    def find_node(self, ref: str | None) -> MapNode | None:
        """Resolve a soft reference to a node.

        Tries the exact id first, then a case-insensitive name match, then
        aliases. The root sentinel never resolves.

        Args:
            ref: Node id, display name, or alias.

        Returns:
            The matching node, or None.
        """
        if ref is None or is_root_reference(ref):
            return None
        node = self._store.get_node(ref)
        if node is not None:
            return node
        needle = ref.strip().lower()
        nodes = self._store.all_nodes()
        for candidate in nodes:
            if candidate.name.lower() == needle:
                return candidate
        for candidate in nodes:
            if any(alias.lower() == needle for alias in candidate.aliases):
                return candidate
        return None

    def require_node(self, ref: str, context: str = "") -> MapNode:
        """Resolve *ref* like :meth:`find_node` but raise when missing.

        Raises:
            NodeNotFoundError: If nothing matches.
        """
        node = self.find_node(ref)
        if node is None:
            raise NodeNotFoundError(
                ref,
                available=[n.name for n in self._store.all_nodes()],
                context=context,
            )
        return node

    def children_of(self, node_id: str) -> list[MapNode]:
        """Return the direct children of *node_id* (ROOT_NODE_ID for top level)."""
        return [n for n in self._store.all_nodes() if n.parent_id == node_id]

    def edges_touching(self, node_id: str) -> list[MapEdge]:
        """Return every edge with *node_id* as source or target."""
        return [e for e in self._store.all_edges() if e.touches(node_id)]

    def edges_between(
        self,
        a: str,
        b: str,
        category: EdgeCategory | str | None = None,
    ) -> list[MapEdge]:
        """Return edges joining *a* and *b* in either direction.

        Args:
            a: One endpoint id.
            b: The other endpoint id.
            category: Optional category filter.
        """
        return [
            e
            for e in self._store.all_edges()
            if e.connects(a, b) and (category is None or e.category == category)
        ]

    # -------------------------------------------------------------------------
    # Node mutations
    # -------------------------------------------------------------------------

    def create_node(self, node: MapNode) -> None:
        """Create a new node. Fails if the id already exists.

        Raises:
            RootMutationError: If the node claims the root id.
            NodeExistsError: If the id is taken.
        """
        if node.id == ROOT_NODE_ID:
            raise RootMutationError("create_node")
        if self._store.has_node(node.id):
            raise NodeExistsError(node.id)
        self._store.set_node(node)

    def update_node(self, node_id: str, **updates: Any) -> MapNode:
        """Replace fields of an existing node.

        Args:
            node_id: Exact id of the node.
            **updates: Field values to set.

        Returns:
            The updated node.

        Raises:
            RootMutationError: If *node_id* is the root.
            NodeNotFoundError: If the node does not exist.
        """
        if node_id == ROOT_NODE_ID:
            raise RootMutationError("update_node")
        node = self._store.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(
                node_id,
                available=[n.id for n in self._store.all_nodes()],
                context="update_node - node must exist before updating",
            )
        updated = MapNode.model_validate({**node.model_dump(), **updates})
        self._store.set_node(updated)
        return updated

    def delete_node(self, node_id: str, *, cascade: bool = True) -> list[str]:
        """Delete a node.

        Children of the deleted node move up to its parent so the hierarchy
        stays connected.

        Args:
            node_id: Exact id of the node.
            cascade: Also delete edges touching the node. When False, the
                call fails if any edge still references it.

        Returns:
            Ids of the edges removed by the cascade.

        Raises:
            RootMutationError: If *node_id* is the root.
            NodeNotFoundError: If the node does not exist.
            EdgeEndpointError: If edges reference the node and cascade is False.
        """
        if node_id == ROOT_NODE_ID:
            raise RootMutationError("delete_node")
        node = self._store.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id, context="delete_node")

        refs = self.edges_touching(node_id)
        if refs and not cascade:
            first = refs[0]
            raise EdgeEndpointError(
                edge_category=str(first.category),
                source=first.source,
                target=first.target,
                missing="source" if first.source == node_id else "target",
            )
        for edge in refs:
            self._store.delete_edge(edge.id)

        for child in self.children_of(node_id):
            self._store.set_node(child.model_copy(update={"parent_id": node.parent_id}))

        self._store.delete_node(node_id)
        return [e.id for e in refs]

    # -------------------------------------------------------------------------
    # Edge mutations
    # -------------------------------------------------------------------------

    def add_edge(self, edge: MapEdge) -> None:
        """Add an edge between two existing nodes.

        Raises:
            RootMutationError: If either endpoint is the root.
            EdgeEndpointError: If an endpoint does not exist.
        """
        if ROOT_NODE_ID in (edge.source, edge.target):
            raise RootMutationError("add_edge")
        source_ok = self._store.has_node(edge.source)
        target_ok = self._store.has_node(edge.target)
        if not (source_ok and target_ok):
            missing = "both" if not (source_ok or target_ok) else ("source" if not source_ok else "target")
            raise EdgeEndpointError(
                edge_category=str(edge.category),
                source=edge.source,
                target=edge.target,
                missing=missing,
                available=[n.id for n in self._store.all_nodes()],
            )
        self._store.set_edge(edge)

    def update_edge(self, edge_id: str, **updates: Any) -> MapEdge:
        """Replace fields of an existing edge.

        Raises:
            EdgeNotFoundError: If the edge does not exist.
        """
        edge = self._store.get_edge(edge_id)
        if edge is None:
            raise EdgeNotFoundError(edge_id)
        updated = MapEdge.model_validate({**edge.model_dump(), **updates})
        self._store.set_edge(updated)
        return updated

    def remove_edge(self, edge_id: str) -> None:
        """Remove an edge by id.

        Raises:
            EdgeNotFoundError: If the edge does not exist.
        """
        if self._store.get_edge(edge_id) is None:
            raise EdgeNotFoundError(edge_id)
        self._store.delete_edge(edge_id)

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def validate_invariants(self) -> list[str]:
        """Check structural invariants of the whole map.

        Returns:
            Human-readable violations; empty when the map is consistent.
        """
        violations: list[str] = []
        nodes = self.nodes_by_id()

        if ROOT_NODE_ID in nodes:
            violations.append("Root sentinel is stored as a node")

        for node in nodes.values():
            if node.parent_id != ROOT_NODE_ID and node.parent_id not in nodes:
                violations.append(f"Node '{node.id}' has missing parent '{node.parent_id}'")

        for edge in self._store.all_edges():
            for endpoint in (edge.source, edge.target):
                if endpoint not in nodes:
                    violations.append(f"Edge '{edge.id}' references missing node '{endpoint}'")

        for child_id, parent_id in find_hierarchy_conflicts(nodes):
            child, parent = nodes[child_id], nodes[parent_id]
            violations.append(
                f"{child.category} '{child.name}' cannot be a child of {parent.category} '{parent.name}'"
            )

        return violations
