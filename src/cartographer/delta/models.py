"""Typed map-delta models.

A delta is the turn-scoped bundle of proposed map operations. It starts
life as a plain JSON-shaped draft dict (parser output), and becomes a
MapDelta once the draft has passed normalization, validation and repair.

References inside a delta are soft: node names, aliases or ids, resolved
against the map only at commit time.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from cartographer.graph.models import EdgeCategory, EdgeStatus, NodeCategory, NodeStatus

NODE_OP_KEYS = ("nodes_to_add", "nodes_to_update", "nodes_to_remove")
EDGE_OP_KEYS = ("edges_to_add", "edges_to_update", "edges_to_remove")
OP_KEYS = NODE_OP_KEYS + EDGE_OP_KEYS


class NodeAdd(BaseModel):
    """Create a place."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    category: NodeCategory
    status: NodeStatus
    parent: str = Field(min_length=1)


class NodeUpdate(BaseModel):
    """Change fields of an existing place, identified by id, name or alias."""

    name: str = Field(min_length=1)
    new_name: str | None = None
    description: str | None = None
    aliases: list[str] | None = None
    category: NodeCategory | None = None
    status: NodeStatus | None = None
    parent: str | None = None


class NodeRemove(BaseModel):
    """Remove a place. At least one of the identifiers is set."""

    node_id: str | None = None
    node_name: str | None = None

    @property
    def ref(self) -> str:
        return self.node_id or self.node_name or ""


class EdgeAdd(BaseModel):
    """Create a route between two places.

    Backend drafts must carry a status. Routes the resolver builds, such as
    connector paths, leave it unset; they commit as "rumored" when either
    endpoint is rumored and "open" otherwise.
    """

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    category: EdgeCategory
    status: EdgeStatus | None = None
    description: str | None = None
    travel_time: str | None = None


class EdgeUpdate(BaseModel):
    """Change a route found by its endpoints (either direction)."""

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    category: EdgeCategory | None = None
    status: EdgeStatus | None = None
    description: str | None = None
    travel_time: str | None = None


class EdgeRemove(BaseModel):
    """Remove a route by id, or by both endpoints (optionally one category)."""

    edge_id: str | None = None
    source_id: str | None = None
    target_id: str | None = None
    category: EdgeCategory | None = None


class SplitFamily(BaseModel):
    """Describes one place being split into two.

    Children listed in neither list are orphans; the consistency resolver
    decides where they go.
    """

    original_node_id: str = Field(min_length=1)
    new_node_id: str = Field(min_length=1)
    new_node_type: NodeCategory
    original_children: list[str] = Field(default_factory=list)
    new_children: list[str] = Field(default_factory=list)
    new_connector_node_id: str | None = None


class MapDelta(BaseModel):
    """A validated bundle of proposed map operations for one turn.

    Attributes:
        observations: Backend's free-text notes, kept for traceability only.
        rationale: Backend's reasoning, kept for traceability only.
        suggested_current_node: Hint for the player's current place.
        split_family: Optional description of a node split.
    """

    nodes_to_add: list[NodeAdd] = Field(default_factory=list)
    nodes_to_update: list[NodeUpdate] = Field(default_factory=list)
    nodes_to_remove: list[NodeRemove] = Field(default_factory=list)
    edges_to_add: list[EdgeAdd] = Field(default_factory=list)
    edges_to_update: list[EdgeUpdate] = Field(default_factory=list)
    edges_to_remove: list[EdgeRemove] = Field(default_factory=list)
    observations: str | None = None
    rationale: str | None = None
    suggested_current_node: str | None = None
    split_family: SplitFamily | None = None

    @classmethod
    def from_draft(cls, draft: dict[str, Any]) -> MapDelta:
        """Build a MapDelta from a validated draft dict.

        Unknown keys and null values are dropped first.
        """
        known = {k: v for k, v in strip_null_values(draft).items() if k in cls.model_fields}
        return cls.model_validate(known)

    @property
    def is_empty(self) -> bool:
        """True if the delta proposes no operation at all."""
        return not any(getattr(self, key) for key in OP_KEYS) and self.split_family is None

    def operation_count(self) -> int:
        return sum(len(getattr(self, key)) for key in OP_KEYS)


def strip_null_values(data: Any) -> Any:
    """Recursively drop None values from dicts.

    Backends often send ``null`` for optional fields they do not use.
    """
    if isinstance(data, dict):
        return {k: strip_null_values(v) for k, v in data.items() if v is not None}
    if isinstance(data, list):
        return [strip_null_values(v) for v in data]
    return data
