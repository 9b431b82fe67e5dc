"""Map graph models and canonical vocabularies.

Node types:
- MapNode: A location in the world hierarchy (region down to feature)
- MapEdge: A route between two locations

Category and status values are closed vocabularies. Free-text values
proposed by the backend are mapped onto them by the synonym normalizer
before validation.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

# Reserved id and name of the implicit root every top-level node hangs from.
ROOT_NODE_ID = "Universe"

# Parent references that all mean "attach to the root".
ROOT_ALIASES = frozenset({"universe", "root", "none", "n/a", "null", ""})


class NodeCategory(StrEnum):
    """Hierarchy category of a map node, highest level first."""

    REGION = "region"
    LOCATION = "location"
    SETTLEMENT = "settlement"
    DISTRICT = "district"
    EXTERIOR = "exterior"
    INTERIOR = "interior"
    ROOM = "room"
    FEATURE = "feature"


class NodeStatus(StrEnum):
    """Discovery status of a map node."""

    UNDISCOVERED = "undiscovered"
    DISCOVERED = "discovered"
    RUMORED = "rumored"
    QUEST_TARGET = "quest_target"
    BLOCKED = "blocked"


class EdgeCategory(StrEnum):
    """Kind of route an edge represents."""

    PATH = "path"
    ROAD = "road"
    SEA_ROUTE = "sea route"
    DOOR = "door"
    TELEPORTER = "teleporter"
    SECRET_PASSAGE = "secret_passage"
    RIVER_CROSSING = "river_crossing"
    TEMPORARY_BRIDGE = "temporary_bridge"
    BOARDING_HOOK = "boarding_hook"
    SHORTCUT = "shortcut"


class EdgeStatus(StrEnum):
    """Traversability of an edge. ``one_way`` marks directed travel."""

    OPEN = "open"
    ACCESSIBLE = "accessible"
    CLOSED = "closed"
    LOCKED = "locked"
    BLOCKED = "blocked"
    HIDDEN = "hidden"
    RUMORED = "rumored"
    ONE_WAY = "one_way"
    COLLAPSED = "collapsed"
    REMOVED = "removed"
    ACTIVE = "active"
    INACTIVE = "inactive"


NODE_CATEGORY_VALUES: tuple[str, ...] = tuple(c.value for c in NodeCategory)
NODE_STATUS_VALUES: tuple[str, ...] = tuple(s.value for s in NodeStatus)
EDGE_CATEGORY_VALUES: tuple[str, ...] = tuple(c.value for c in EdgeCategory)
EDGE_STATUS_VALUES: tuple[str, ...] = tuple(s.value for s in EdgeStatus)

# Categories that never contain other places.
LEAF_CATEGORIES = frozenset({NodeCategory.ROOM, NodeCategory.FEATURE})


class Position(BaseModel):
    """Render position. Not authoritative; the pipeline never reads it."""

    x: float = 0.0
    y: float = 0.0


class MapNode(BaseModel):
    """A location in the world map hierarchy.

    Attributes:
        id: Stable identifier, minted at commit time and never changed.
        name: Display name, unique among siblings.
        aliases: Alternative names the node can be referenced by.
        description: Free-text description.
        category: Hierarchy category.
        status: Discovery status.
        parent_id: Id of the containing node, or ROOT_NODE_ID.
        is_leaf: True for categories that cannot contain other places.
        visited: Whether the player has been here.
        position: Non-authoritative render position.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    description: str = ""
    category: NodeCategory
    status: NodeStatus = NodeStatus.DISCOVERED
    parent_id: str = ROOT_NODE_ID
    is_leaf: bool = False
    visited: bool = False
    position: Position = Field(default_factory=Position)

    def matches_name(self, identifier: str) -> bool:
        """Check whether *identifier* equals the name or an alias (case-insensitive)."""
        needle = identifier.strip().lower()
        if self.name.lower() == needle:
            return True
        return any(alias.lower() == needle for alias in self.aliases)


class MapEdge(BaseModel):
    """A route between two map nodes.

    Edges are undirected for identity: the same category between the same
    pair of nodes is one edge regardless of direction.
    """

    id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    category: EdgeCategory = EdgeCategory.PATH
    status: EdgeStatus = EdgeStatus.OPEN
    description: str = ""
    travel_time: str | None = None

    def connects(self, a: str, b: str) -> bool:
        """True if the edge joins *a* and *b* in either direction."""
        return {self.source, self.target} == {a, b}

    def touches(self, node_id: str) -> bool:
        return node_id in (self.source, self.target)
