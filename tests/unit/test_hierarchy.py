"""Tests for hierarchy levels, promotion/demotion and route connection rules."""

from __future__ import annotations

import pytest

from cartographer.graph import MapGraph, MapNode, NodeCategory
from cartographer.graph.hierarchy import (
    closest_allowed_ancestor,
    find_hierarchy_conflicts,
    has_hierarchy_conflict,
    is_edge_connection_allowed,
    is_conflict,
    level_of,
    lowest_category_above,
    nearest_connection,
    suggest_downgrade,
    suggest_upgrade,
)
from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory


def _with(graph: MapGraph, node_id: str, name: str, category: NodeCategory, parent_id: str) -> MapNode:
    node = MapNode(id=node_id, name=name, category=category, parent_id=parent_id)
    graph.create_node(node)
    return node


class TestLevels:
    def test_region_is_highest_feature_lowest(self) -> None:
        assert level_of(NodeCategory.REGION) == 0
        assert level_of("feature") == 7

    @pytest.mark.parametrize(
        ("parent", "child", "expected"),
        [
            ("region", "settlement", False),
            ("settlement", "settlement", True),
            ("room", "interior", True),
            ("interior", "feature", False),
        ],
    )
    def test_is_conflict(self, parent: str, child: str, expected: bool) -> None:
        assert is_conflict(parent, child) is expected


class TestSuggestions:
    def test_downgrade_room_under_room(self, sample_graph: MapGraph) -> None:
        cellar = _with(sample_graph, "node_cellar", "Cellar", NodeCategory.ROOM, "node_common_room")

        result = suggest_downgrade(cellar, NodeCategory.ROOM, sample_graph.nodes)

        assert result is NodeCategory.FEATURE

    def test_no_downgrade_for_settlement(self, sample_graph: MapGraph) -> None:
        village = _with(sample_graph, "node_hamlet", "Hamlet", NodeCategory.SETTLEMENT, "node_millbrook")

        assert suggest_downgrade(village, NodeCategory.SETTLEMENT, sample_graph.nodes) is None

    def test_downgrade_blocked_by_children(self, sample_graph: MapGraph) -> None:
        hall = _with(sample_graph, "node_hall", "Hall", NodeCategory.INTERIOR, "node_common_room")
        _with(sample_graph, "node_closet", "Closet", NodeCategory.ROOM, "node_hall")

        assert suggest_downgrade(hall, NodeCategory.EXTERIOR, sample_graph.nodes) is None

    def test_upgrade_room_under_exterior(self, sample_graph: MapGraph) -> None:
        room = sample_graph.get_node("node_common_room")

        assert suggest_upgrade(room, sample_graph.nodes_by_id()) is NodeCategory.INTERIOR

    def test_upgrade_blocked_by_parent(self, sample_graph: MapGraph) -> None:
        sample_graph.update_node("node_millbrook", category=NodeCategory.DISTRICT)
        tavern = sample_graph.get_node("node_tavern")

        assert suggest_upgrade(tavern, sample_graph.nodes_by_id()) is None

    def test_lowest_category_above_for_feature_with_room(self, sample_graph: MapGraph) -> None:
        _with(sample_graph, "node_vault", "Vault", NodeCategory.ROOM, "node_well")
        well = sample_graph.get_node("node_well")

        assert lowest_category_above(well, sample_graph.nodes_by_id()) is NodeCategory.INTERIOR

    def test_lowest_category_above_without_children(self, sample_graph: MapGraph) -> None:
        well = sample_graph.get_node("node_well")
        assert lowest_category_above(well, sample_graph.nodes_by_id()) is None


class TestAncestors:
    def test_closest_allowed_ancestor(self, sample_graph: MapGraph) -> None:
        nodes = sample_graph.nodes_by_id()
        assert closest_allowed_ancestor("node_tavern", NodeCategory.EXTERIOR, nodes) == "node_millbrook"

    def test_falls_back_to_root(self, sample_graph: MapGraph) -> None:
        nodes = sample_graph.nodes_by_id()
        assert closest_allowed_ancestor("node_millbrook", NodeCategory.REGION, nodes) == ROOT_NODE_ID

    def test_find_conflicts(self, sample_graph: MapGraph) -> None:
        assert not has_hierarchy_conflict(sample_graph.nodes_by_id())
        _with(sample_graph, "node_cellar", "Cellar", NodeCategory.ROOM, "node_common_room")

        assert find_hierarchy_conflicts(sample_graph.nodes_by_id()) == [("node_cellar", "node_common_room")]


class TestEdgeConnections:
    @pytest.fixture
    def nodes(self, sample_graph: MapGraph) -> dict[str, MapNode]:
        _with(sample_graph, "node_bar", "Bar", NodeCategory.FEATURE, "node_tavern")
        _with(sample_graph, "node_sign", "Sign", NodeCategory.FEATURE, "node_tavern")
        _with(sample_graph, "node_hearth", "Hearth", NodeCategory.FEATURE, "node_common_room")
        return sample_graph.nodes_by_id()

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("node_bar", "node_sign", True),
            ("node_bar", "node_well", True),
            ("node_hearth", "node_bar", True),
            ("node_hearth", "node_well", False),
            ("node_tavern", "node_well", False),
        ],
    )
    def test_path_rules(self, nodes: dict[str, MapNode], a: str, b: str, expected: bool) -> None:
        assert is_edge_connection_allowed(nodes[a], nodes[b], EdgeCategory.PATH, nodes) is expected
        assert is_edge_connection_allowed(nodes[b], nodes[a], "path", nodes) is expected

    def test_shortcut_joins_any_features(self, nodes: dict[str, MapNode]) -> None:
        hearth, tavern, well = nodes["node_hearth"], nodes["node_tavern"], nodes["node_well"]

        assert is_edge_connection_allowed(hearth, well, EdgeCategory.SHORTCUT, nodes)
        assert not is_edge_connection_allowed(tavern, well, "shortcut", nodes)

    def test_top_level_features(self) -> None:
        graph = MapGraph.empty()
        dock = _with(graph, "node_dock", "Dock", NodeCategory.FEATURE, ROOT_NODE_ID)
        _with(graph, "node_isle", "Isle", NodeCategory.LOCATION, ROOT_NODE_ID)
        pier = _with(graph, "node_pier", "Pier", NodeCategory.FEATURE, "node_isle")

        assert is_edge_connection_allowed(dock, pier, "sea route", graph.nodes_by_id())

    def test_nearest_connection_climbs_to_features(self, nodes: dict[str, MapNode]) -> None:
        pair = nearest_connection(nodes["node_common_room"], nodes["node_well"], EdgeCategory.PATH, nodes)

        assert pair is not None
        assert [n.id for n in pair] == ["node_bar", "node_well"]

    def test_nearest_connection_keeps_allowed_pair(self, nodes: dict[str, MapNode]) -> None:
        pair = nearest_connection(nodes["node_bar"], nodes["node_sign"], EdgeCategory.PATH, nodes)

        assert [n.id for n in pair] == ["node_bar", "node_sign"]

    def test_no_connection_without_features(self, sample_graph: MapGraph) -> None:
        nodes = sample_graph.nodes_by_id()

        assert nearest_connection(nodes["node_tavern"], nodes["node_well"], EdgeCategory.PATH, nodes) is None
