"""Tests for MapGraph and its integrity errors."""

from __future__ import annotations

import pytest

from cartographer.graph import (
    EdgeEndpointError,
    EdgeNotFoundError,
    MapEdge,
    MapGraph,
    MapNode,
    NodeCategory,
    NodeExistsError,
    NodeNotFoundError,
    RootMutationError,
    is_root_reference,
)
from cartographer.graph.errors import GraphCorruptionError
from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory


def _node(node_id: str, name: str, category: NodeCategory, parent_id: str = ROOT_NODE_ID) -> MapNode:
    return MapNode(id=node_id, name=name, category=category, parent_id=parent_id)


class TestGraphBasics:
    """Construction, snapshots and serialization."""

    def test_empty_graph(self) -> None:
        graph = MapGraph.empty()
        assert graph.nodes == []
        assert graph.edges == []
        assert graph.validate_invariants() == []

    def test_to_dict_round_trip(self, sample_graph: MapGraph) -> None:
        data = sample_graph.to_dict()
        restored = MapGraph.from_dict(data)

        assert data["version"] == "1.0"
        assert restored.to_dict() == data

    def test_copy_is_independent(self, sample_graph: MapGraph) -> None:
        clone = sample_graph.copy()
        clone.update_node("node_tavern", name="Inn")

        assert sample_graph.get_node("node_tavern").name == "Tavern"
        assert clone.get_node("node_tavern").name == "Inn"

    def test_replace_with_swaps_contents(self, sample_graph: MapGraph) -> None:
        staged = sample_graph.copy()
        staged.delete_node("node_well")

        sample_graph.replace_with(staged)

        assert sample_graph.get_node("node_well") is None


class TestFindNode:
    """Soft reference resolution."""

    def test_by_id(self, sample_graph: MapGraph) -> None:
        assert sample_graph.find_node("node_tavern").name == "Tavern"

    def test_by_name_case_insensitive(self, sample_graph: MapGraph) -> None:
        assert sample_graph.find_node("  common room ").id == "node_common_room"

    def test_by_alias(self, sample_graph: MapGraph) -> None:
        assert sample_graph.find_node("The Village").id == "node_millbrook"

    @pytest.mark.parametrize("ref", ["Universe", "root", "none", "", None])
    def test_root_never_resolves(self, sample_graph: MapGraph, ref: str | None) -> None:
        assert sample_graph.find_node(ref) is None
        assert is_root_reference(ref)

    def test_require_node_raises_with_suggestions(self, sample_graph: MapGraph) -> None:
        with pytest.raises(NodeNotFoundError) as exc_info:
            sample_graph.require_node("Tavrn", context="edge source")

        feedback = exc_info.value.to_llm_feedback()
        assert "`Tavrn`" in feedback
        assert "`Tavern`" in feedback


class TestNodeMutations:
    """Node create/update/delete integrity."""

    def test_create_duplicate_id_fails(self, sample_graph: MapGraph) -> None:
        with pytest.raises(NodeExistsError):
            sample_graph.create_node(_node("node_tavern", "Other", NodeCategory.EXTERIOR))

    def test_create_root_fails(self) -> None:
        graph = MapGraph.empty()
        with pytest.raises(RootMutationError):
            graph.create_node(_node(ROOT_NODE_ID, "Universe", NodeCategory.REGION))

    def test_update_missing_node_fails(self, sample_graph: MapGraph) -> None:
        with pytest.raises(NodeNotFoundError):
            sample_graph.update_node("node_missing", name="X")

    def test_update_root_fails(self, sample_graph: MapGraph) -> None:
        with pytest.raises(RootMutationError):
            sample_graph.update_node(ROOT_NODE_ID, name="X")

    def test_delete_cascades_edges_and_lifts_children(self, sample_graph: MapGraph) -> None:
        removed = sample_graph.delete_node("node_tavern")

        assert removed == ["edge_node_tavern_node_well_ab12"]
        assert sample_graph.edges == []
        assert sample_graph.get_node("node_common_room").parent_id == "node_millbrook"

    def test_delete_without_cascade_refuses_referenced_node(self, sample_graph: MapGraph) -> None:
        with pytest.raises(EdgeEndpointError):
            sample_graph.delete_node("node_well", cascade=False)
        assert sample_graph.get_node("node_well") is not None


class TestEdgeMutations:
    """Edge endpoint integrity."""

    def test_add_edge_missing_endpoint(self, sample_graph: MapGraph) -> None:
        edge = MapEdge(id="edge_x", source="node_tavern", target="node_nowhere")
        with pytest.raises(EdgeEndpointError) as exc_info:
            sample_graph.add_edge(edge)

        assert exc_info.value.missing == "target"
        assert "node_nowhere" in exc_info.value.to_llm_feedback()

    def test_add_edge_to_root_fails(self, sample_graph: MapGraph) -> None:
        with pytest.raises(RootMutationError):
            sample_graph.add_edge(MapEdge(id="edge_x", source="node_tavern", target=ROOT_NODE_ID))

    def test_edges_between_ignores_direction(self, sample_graph: MapGraph) -> None:
        assert len(sample_graph.edges_between("node_well", "node_tavern")) == 1
        assert sample_graph.edges_between("node_well", "node_tavern", EdgeCategory.ROAD) == []

    def test_remove_missing_edge_fails(self, sample_graph: MapGraph) -> None:
        with pytest.raises(EdgeNotFoundError):
            sample_graph.remove_edge("edge_missing")


class TestInvariants:
    """validate_invariants reports structural problems."""

    def test_sample_graph_is_consistent(self, sample_graph: MapGraph) -> None:
        assert sample_graph.validate_invariants() == []

    def test_detects_hierarchy_conflict(self, sample_graph: MapGraph) -> None:
        sample_graph.create_node(_node("node_forest", "Forest", NodeCategory.REGION, "node_millbrook"))

        violations = sample_graph.validate_invariants()

        assert violations == ["region 'Forest' cannot be a child of settlement 'Millbrook'"]

    def test_detects_missing_parent(self) -> None:
        graph = MapGraph.from_dict(
            {"nodes": [{"id": "node_a", "name": "A", "category": "room", "parent_id": "node_gone"}]}
        )
        assert graph.validate_invariants() == ["Node 'node_a' has missing parent 'node_gone'"]

    def test_corruption_error_lists_violations(self) -> None:
        error = GraphCorruptionError([f"problem {i}" for i in range(7)])
        text = str(error)

        assert "problem 0" in text
        assert "... and 2 more" in text
