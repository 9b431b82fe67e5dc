"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from cartographer.graph import MapEdge, MapGraph, MapNode, NodeCategory, NodeStatus
from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory
from cartographer.prompts import PromptLoader

OLD_MILL_RESPONSE = """Here is the update:
```json
{
  "nodes_to_add": [
    {
      "name": "The Old Mill",
      "description": "A crumbling water mill at the edge of the village.",
      "aliases": [],
      "category": "building",
      "status": "found",
      "parent": "Universe"
    }
  ]
}
```"""


@pytest.fixture(autouse=True)
def clear_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment overrides out of test runs."""
    for var in (
        "CARTOGRAPHER_PROVIDER_PRIMARY",
        "CARTOGRAPHER_PROVIDER_CORRECTIVE",
        "CARTOGRAPHER_PROVIDER_RESOLVER",
        "CARTOGRAPHER_MAX_RETRIES",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def old_mill_response() -> str:
    """Fenced backend reply adding one top-level building with synonym values."""
    return OLD_MILL_RESPONSE


@pytest.fixture
def loader() -> PromptLoader:
    """Fresh prompt loader over the packaged templates."""
    return PromptLoader()


@pytest.fixture
def sample_graph() -> MapGraph:
    """A small village map.

    Westmarch (region)
      Millbrook (settlement)
        Tavern (exterior)
          Common Room (room)
        Well (feature)

    One path joins the Tavern and the Well.
    """
    graph = MapGraph.empty()
    for node in (
        MapNode(
            id="node_westmarch",
            name="Westmarch",
            description="Rolling farmland.",
            category=NodeCategory.REGION,
            parent_id=ROOT_NODE_ID,
        ),
        MapNode(
            id="node_millbrook",
            name="Millbrook",
            aliases=["the village"],
            description="A quiet village.",
            category=NodeCategory.SETTLEMENT,
            parent_id="node_westmarch",
        ),
        MapNode(
            id="node_tavern",
            name="Tavern",
            description="The Prancing Pony.",
            category=NodeCategory.EXTERIOR,
            parent_id="node_millbrook",
        ),
        MapNode(
            id="node_common_room",
            name="Common Room",
            description="Smoky and loud.",
            category=NodeCategory.ROOM,
            parent_id="node_tavern",
            is_leaf=True,
        ),
        MapNode(
            id="node_well",
            name="Well",
            description="An old stone well.",
            category=NodeCategory.FEATURE,
            status=NodeStatus.DISCOVERED,
            parent_id="node_millbrook",
            is_leaf=True,
        ),
    ):
        graph.create_node(node)
    graph.add_edge(
        MapEdge(
            id="edge_node_tavern_node_well_ab12",
            source="node_tavern",
            target="node_well",
            category=EdgeCategory.PATH,
        )
    )
    return graph


@pytest.fixture
def mock_backend() -> MagicMock:
    """Backend whose ``complete`` is an AsyncMock; set side_effect per test."""
    backend = MagicMock()
    backend.name = "fake/model"
    backend.complete = AsyncMock(return_value=OLD_MILL_RESPONSE)
    return backend


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records requested delays."""
    return AsyncMock()
