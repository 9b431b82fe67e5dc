"""Graph package - the canonical world map.

Provides the node/edge models, the hierarchy rules that govern which
category may contain which, and the MapGraph aggregate.
"""

from cartographer.graph.errors import (
    EdgeEndpointError,
    EdgeNotFoundError,
    GraphCorruptionError,
    GraphIntegrityError,
    NodeExistsError,
    NodeNotFoundError,
    RootMutationError,
)
from cartographer.graph.graph import MapGraph, is_root_reference
from cartographer.graph.models import (
    ROOT_NODE_ID,
    EdgeCategory,
    EdgeStatus,
    MapEdge,
    MapNode,
    NodeCategory,
    NodeStatus,
    Position,
)
from cartographer.graph.store import DictMapStore, MapStore

__all__ = [
    "ROOT_NODE_ID",
    "DictMapStore",
    "EdgeCategory",
    "EdgeEndpointError",
    "EdgeNotFoundError",
    "EdgeStatus",
    "GraphCorruptionError",
    "GraphIntegrityError",
    "MapEdge",
    "MapGraph",
    "MapNode",
    "MapStore",
    "NodeCategory",
    "NodeExistsError",
    "NodeNotFoundError",
    "NodeStatus",
    "Position",
    "RootMutationError",
    "is_root_reference",
]
