"""Map storage backend protocol and dict-based implementation.

The MapStore protocol defines the low-level storage operations that
MapGraph delegates to. Implementations handle raw CRUD; MapGraph provides
the public API with name resolution, error messages, and invariants.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from cartographer.graph.models import MapEdge, MapNode


@runtime_checkable
class MapStore(Protocol):
    """Storage backend protocol for MapGraph.

    Methods raise no domain-specific errors; MapGraph is responsible for
    translating missing entries into NodeNotFoundError and friends.
    """

    # -- Nodes -----------------------------------------------------------------

    def get_node(self, node_id: str) -> MapNode | None:
        """Get a node by id, or None if not found."""
        ...

    def has_node(self, node_id: str) -> bool:
        """Check whether a node exists."""
        ...

    def set_node(self, node: MapNode) -> None:
        """Store a node (create or overwrite)."""
        ...

    def delete_node(self, node_id: str) -> None:
        """Delete a node by id. No cascade; the caller handles edges first."""
        ...

    def all_nodes(self) -> list[MapNode]:
        """Return all nodes in insertion order."""
        ...

    # -- Edges -----------------------------------------------------------------

    def get_edge(self, edge_id: str) -> MapEdge | None:
        """Get an edge by id, or None if not found."""
        ...

    def set_edge(self, edge: MapEdge) -> None:
        """Store an edge (create or overwrite)."""
        ...

    def delete_edge(self, edge_id: str) -> None:
        """Delete an edge by id."""
        ...

    def all_edges(self) -> list[MapEdge]:
        """Return all edges in insertion order."""
        ...

    # -- Whole-store -----------------------------------------------------------

    def copy(self) -> MapStore:
        """Return an independent deep copy of the store."""
        ...

    def to_dict(self) -> dict[str, Any]:
        """Serialize the entire store to a JSON-shaped dict."""
        ...


class DictMapStore:
    """In-memory dict-based map store."""

    VERSION = "1.0"

    def __init__(
        self,
        nodes: dict[str, MapNode] | None = None,
        edges: dict[str, MapEdge] | None = None,
    ) -> None:
        self._nodes: dict[str, MapNode] = nodes if nodes is not None else {}
        self._edges: dict[str, MapEdge] = edges if edges is not None else {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DictMapStore:
        """Create a DictMapStore from a dict produced by :meth:`to_dict`."""
        nodes = [MapNode.model_validate(n) for n in data.get("nodes", [])]
        edges = [MapEdge.model_validate(e) for e in data.get("edges", [])]
        return cls({n.id: n for n in nodes}, {e.id: e for e in edges})

    # -- Nodes -----------------------------------------------------------------

    def get_node(self, node_id: str) -> MapNode | None:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def set_node(self, node: MapNode) -> None:
        self._nodes[node.id] = node

    def delete_node(self, node_id: str) -> None:
        del self._nodes[node_id]

    def all_nodes(self) -> list[MapNode]:
        return list(self._nodes.values())

    # -- Edges -----------------------------------------------------------------

    def get_edge(self, edge_id: str) -> MapEdge | None:
        return self._edges.get(edge_id)

    def set_edge(self, edge: MapEdge) -> None:
        self._edges[edge.id] = edge

    def delete_edge(self, edge_id: str) -> None:
        del self._edges[edge_id]

    def all_edges(self) -> list[MapEdge]:
        return list(self._edges.values())

    # -- Whole-store -----------------------------------------------------------

    def copy(self) -> DictMapStore:
        return DictMapStore(
            {nid: n.model_copy(deep=True) for nid, n in self._nodes.items()},
            {eid: e.model_copy(deep=True) for eid, e in self._edges.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.VERSION,
            "nodes": [n.model_dump(mode="json") for n in self._nodes.values()],
            "edges": [e.model_dump(mode="json") for e in self._edges.values()],
        }
