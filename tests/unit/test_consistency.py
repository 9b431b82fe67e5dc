"""Tests for the consistency resolver."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from cartographer.commit import commit_delta
from cartographer.consistency import (
    ConsistencyResolver,
    match_option,
    parse_orphan_choices,
    project,
)
from cartographer.delta.models import EdgeAdd, MapDelta, NodeAdd, SplitFamily
from cartographer.errors import BackendFailure
from cartographer.graph import MapGraph, NodeCategory, NodeStatus
from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory, EdgeStatus


def _add(name: str, category: NodeCategory, parent: str) -> NodeAdd:
    return NodeAdd(
        name=name,
        description=f"{name}.",
        aliases=[],
        category=category,
        status=NodeStatus.DISCOVERED,
        parent=parent,
    )


def _backend(*answers: object) -> MagicMock:
    backend = MagicMock()
    backend.name = "fake/resolver"
    backend.complete = AsyncMock(side_effect=list(answers))
    return backend


class TestHelpers:
    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ("2", 1),
            ("Option 3.", 2),
            ('"reparent_child"', 1),
            ("I would pick upgrade_parent here", 2),
            ("9", None),
            ("", None),
            ("no idea", None),
        ],
    )
    def test_match_option(self, answer: str, expected: int | None) -> None:
        options = ["downgrade_child", "reparent_child", "upgrade_parent"]
        assert match_option(answer, options) == expected

    def test_parse_orphan_choices_json(self) -> None:
        text = '```json\n{"Well": "new", "Tavern": "Original", "Barn": "both"}\n```'
        assert parse_orphan_choices(text) == {"well": "new", "tavern": "original"}

    def test_parse_orphan_choices_lines(self) -> None:
        text = "- Well: new\n- Tavern: original\nThanks!"
        assert parse_orphan_choices(text) == {"well": "new", "tavern": "original"}

    def test_project_leaves_graph_untouched(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Barn", NodeCategory.EXTERIOR, "Millbrook")])

        proj = project(sample_graph, delta)

        assert sample_graph.find_node("Barn") is None
        barn = proj.graph.find_node("Barn")
        assert proj.ref(barn.id) == "Barn"
        assert proj.key(barn.id) == "new:barn"
        assert proj.ref("node_well") == "node_well"


class TestCleanDeltas:
    @pytest.mark.asyncio
    async def test_consistent_delta_unchanged(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Barn", NodeCategory.EXTERIOR, "Millbrook")])
        backend = _backend()

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta)

        assert result.delta == delta
        assert result.records == []
        backend.complete.assert_not_awaited()


class TestDuplicateNames:
    @pytest.mark.asyncio
    async def test_heuristic_rename_uses_parent(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Watchtower", NodeCategory.EXTERIOR, "Millbrook"),
                _add("watchtower", NodeCategory.EXTERIOR, "Millbrook"),
            ]
        )

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert [op.name for op in result.delta.nodes_to_add] == ["Watchtower", "watchtower (Millbrook)"]
        assert result.records[0].kind == "duplicate_name"
        assert result.records[0].source == "heuristic"

    @pytest.mark.asyncio
    async def test_numbered_fallback_at_root(self) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Ruins", NodeCategory.LOCATION, "Universe"),
                _add("Ruins", NodeCategory.LOCATION, "Universe"),
                _add("Ruins", NodeCategory.LOCATION, "Universe"),
            ]
        )

        result = await ConsistencyResolver().resolve(MapGraph.empty(), delta)

        assert [op.name for op in result.delta.nodes_to_add] == ["Ruins", "Ruins 2", "Ruins 3"]

    @pytest.mark.asyncio
    async def test_model_rename(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Watchtower", NodeCategory.EXTERIOR, "Millbrook"),
                _add("Watchtower", NodeCategory.EXTERIOR, "Millbrook"),
            ]
        )
        backend = _backend('"North Watchtower"\n')

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta)

        assert result.delta.nodes_to_add[1].name == "North Watchtower"
        assert result.records[0].source == "model"

    @pytest.mark.asyncio
    async def test_colliding_model_rename_rejected(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Watchtower", NodeCategory.EXTERIOR, "Millbrook"),
                _add("Watchtower", NodeCategory.EXTERIOR, "Millbrook"),
            ]
        )
        backend = _backend("Tavern")

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta)

        assert result.delta.nodes_to_add[1].name == "Watchtower (Millbrook)"


class TestRouteEndpoints:
    def _route(self, source: str, target: str, category: EdgeCategory = EdgeCategory.PATH) -> EdgeAdd:
        return EdgeAdd(source=source, target=target, category=category, status=EdgeStatus.OPEN)

    @pytest.mark.asyncio
    async def test_route_between_features_kept(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[_add("Bar", NodeCategory.FEATURE, "Tavern")],
            edges_to_add=[self._route("Bar", "Well")],
        )

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert result.delta == delta
        assert result.records == []

    @pytest.mark.asyncio
    async def test_route_moved_to_nearest_features(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Hearth", NodeCategory.FEATURE, "Common Room"),
                _add("Bar", NodeCategory.FEATURE, "Tavern"),
            ],
            edges_to_add=[self._route("Common Room", "Well")],
        )

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        edge = result.delta.edges_to_add[0]
        assert (edge.source, edge.target) == ("Bar", "node_well")
        record = result.records[0]
        assert (record.kind, record.subject) == ("edge", "Common Room -> Well")
        assert record.action == "rerouted between 'Bar' and 'Well'"

        commit_delta(sample_graph, result.delta)
        bar = sample_graph.find_node("Bar")
        assert len(sample_graph.edges_between(bar.id, "node_well", EdgeCategory.PATH)) == 1
        assert sample_graph.edges_between("node_common_room", "node_well") == []

    @pytest.mark.asyncio
    async def test_route_without_features_dropped(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(edges_to_add=[self._route("Tavern", "Well", EdgeCategory.ROAD)])

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert result.delta.edges_to_add == []
        assert result.records[0].action == "dropped: no features can carry it"

    @pytest.mark.asyncio
    async def test_shortcut_skips_parent_rules(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[_add("Hearth", NodeCategory.FEATURE, "Common Room")],
            edges_to_add=[self._route("Hearth", "Well", EdgeCategory.SHORTCUT)],
        )

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert result.delta.edges_to_add == delta.edges_to_add


class TestHierarchy:
    @pytest.mark.asyncio
    async def test_single_valid_fix_applied(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Forest", NodeCategory.REGION, "Millbrook")])
        backend = _backend()

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta)

        assert result.delta.nodes_to_add[0].parent == ROOT_NODE_ID
        assert result.records[-1].action == "reparent_child"
        assert result.violations == []
        backend.complete.assert_not_awaited()
        commit_delta(sample_graph, result.delta)
        assert sample_graph.validate_invariants() == []

    @pytest.mark.asyncio
    async def test_first_valid_fix_without_backend(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Cellar", NodeCategory.ROOM, "Common Room")])

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert result.delta.nodes_to_add[0].category is NodeCategory.FEATURE
        assert result.records[-1].action == "downgrade_child"
        assert result.records[-1].source == "heuristic"

    @pytest.mark.asyncio
    async def test_backend_breaks_ties(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Cellar", NodeCategory.ROOM, "Common Room")])
        backend = _backend("3")

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta, scene="Down the stairs.")

        update = result.delta.nodes_to_update[-1]
        assert update.name == "node_common_room"
        assert update.category is NodeCategory.INTERIOR
        assert result.records[-1].source == "model"
        _, prompt = backend.complete.await_args.args
        assert "Down the stairs." in prompt
        commit_delta(sample_graph, result.delta)
        assert sample_graph.validate_invariants() == []

    @pytest.mark.asyncio
    async def test_backend_failure_falls_back(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Cellar", NodeCategory.ROOM, "Common Room")])
        backend = _backend(BackendFailure("fake/resolver", "down", transient=True))

        result = await ConsistencyResolver(backend).resolve(sample_graph, delta)

        assert result.records[-1].action == "downgrade_child"
        assert result.records[-1].source == "heuristic"

    @pytest.mark.asyncio
    async def test_unmatched_answer_falls_back(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Cellar", NodeCategory.ROOM, "Common Room")])

        result = await ConsistencyResolver(_backend("whatever works")).resolve(sample_graph, delta)

        assert result.records[-1].action == "downgrade_child"

    @pytest.mark.asyncio
    async def test_feature_parent_promoted_with_connector(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Secret Vault", NodeCategory.ROOM, "Well")])

        result = await ConsistencyResolver().resolve(sample_graph, delta)

        assert result.records[-1].action == "upgrade_parent"
        names = [op.name for op in result.delta.nodes_to_add]
        assert "Well Approach" in names

        commit_delta(sample_graph, result.delta)
        assert sample_graph.validate_invariants() == []
        well = sample_graph.get_node("node_well")
        connector = sample_graph.find_node("Well Approach")
        assert well.category is NodeCategory.INTERIOR
        assert connector.parent_id == "node_well"
        assert sample_graph.edges_between("node_tavern", "node_well") == []
        assert len(sample_graph.edges_between("node_tavern", connector.id)) == 1
        vault = sample_graph.find_node("Secret Vault")
        assert len(sample_graph.edges_between(connector.id, vault.id)) == 1

    @pytest.mark.asyncio
    async def test_connector_path_to_rumored_child_is_rumored(self, sample_graph: MapGraph) -> None:
        vault = _add("Secret Vault", NodeCategory.ROOM, "Well").model_copy(update={"status": NodeStatus.RUMORED})

        result = await ConsistencyResolver().resolve(sample_graph, MapDelta(nodes_to_add=[vault]))
        commit_delta(sample_graph, result.delta)

        connector = sample_graph.find_node("Well Approach")
        vault_node = sample_graph.find_node("Secret Vault")
        [path] = sample_graph.edges_between(connector.id, vault_node.id)
        assert path.status is EdgeStatus.RUMORED
        [moved] = sample_graph.edges_between("node_tavern", connector.id)
        assert moved.status is EdgeStatus.OPEN

    @pytest.mark.asyncio
    async def test_feature_child_moved_beside_parent(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(nodes_to_add=[_add("Secret Vault", NodeCategory.ROOM, "Well")])

        result = await ConsistencyResolver(_backend("2")).resolve(sample_graph, delta)

        assert result.records[-1].action == "convert_child"
        assert result.delta.nodes_to_add[0].parent == "node_millbrook"

    @pytest.mark.asyncio
    async def test_resolved_delta_always_commits(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            nodes_to_add=[
                _add("Forest", NodeCategory.REGION, "Millbrook"),
                _add("Cellar", NodeCategory.ROOM, "Common Room"),
                _add("Secret Vault", NodeCategory.ROOM, "Well"),
                _add("Keep", NodeCategory.SETTLEMENT, "Tavern"),
            ]
        )

        result = await ConsistencyResolver().resolve(sample_graph, delta)
        commit_delta(sample_graph, result.delta)

        assert sample_graph.validate_invariants() == []


class TestSplitFamily:
    def _split_delta(self, original_children: list[str], new_children: list[str]) -> MapDelta:
        return MapDelta(
            nodes_to_add=[_add("North Millbrook", NodeCategory.SETTLEMENT, "Westmarch")],
            split_family=SplitFamily(
                original_node_id="Millbrook",
                new_node_id="North Millbrook",
                new_node_type=NodeCategory.SETTLEMENT,
                original_children=original_children,
                new_children=new_children,
            ),
        )

    @pytest.mark.asyncio
    async def test_orphans_stay_with_original_by_default(self, sample_graph: MapGraph) -> None:
        result = await ConsistencyResolver().resolve(sample_graph, self._split_delta(["Tavern"], []))

        assert result.delta.nodes_to_update == []
        orphan = result.records[0]
        assert (orphan.kind, orphan.subject) == ("split_orphan", "Well")
        assert orphan.action == "kept in 'Millbrook'"

    @pytest.mark.asyncio
    async def test_listed_new_children_move(self, sample_graph: MapGraph) -> None:
        result = await ConsistencyResolver().resolve(sample_graph, self._split_delta(["Well"], ["Tavern"]))

        update = result.delta.nodes_to_update[0]
        assert (update.name, update.parent) == ("node_tavern", "North Millbrook")
        commit_delta(sample_graph, result.delta)
        north = sample_graph.find_node("North Millbrook")
        assert sample_graph.get_node("node_tavern").parent_id == north.id

    @pytest.mark.asyncio
    async def test_model_classifies_orphans(self, sample_graph: MapGraph) -> None:
        backend = _backend('{"Well": "new"}')

        result = await ConsistencyResolver(backend).resolve(sample_graph, self._split_delta(["Tavern"], []))

        update = result.delta.nodes_to_update[0]
        assert (update.name, update.parent) == ("node_well", "North Millbrook")
        assert result.records[0].source == "model"

    @pytest.mark.asyncio
    async def test_missing_split_node_ignored(self, sample_graph: MapGraph) -> None:
        delta = MapDelta(
            split_family=SplitFamily(
                original_node_id="Atlantis",
                new_node_id="New Atlantis",
                new_node_type=NodeCategory.SETTLEMENT,
            )
        )
        result = await ConsistencyResolver().resolve(sample_graph, delta)
        assert result.delta == delta
