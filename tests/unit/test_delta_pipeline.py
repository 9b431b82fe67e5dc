"""Tests for the ingestion chain."""

from __future__ import annotations

import json

from cartographer.commit import commit_delta
from cartographer.delta import build_delta, run_ingestion
from cartographer.errors import ParseFailure, StructuralValidationFailure, ValueValidationFailure
from cartographer.graph import MapGraph, NodeCategory, NodeStatus
from cartographer.graph.models import EdgeStatus


class TestRunIngestion:
    def test_old_mill_synonyms_normalized(self, old_mill_response: str) -> None:
        result = run_ingestion(old_mill_response)

        assert result.ok
        node = result.delta.nodes_to_add[0]
        assert node.name == "The Old Mill"
        assert node.category is NodeCategory.EXTERIOR
        assert node.status is NodeStatus.DISCOVERED
        assert node.parent == "Universe"

    def test_parse_failure_reported(self) -> None:
        result = run_ingestion("I could not decide what changed.")

        assert not result.ok
        assert result.parse_failed
        assert result.errors[0].field_path == "(response)"
        assert isinstance(result.to_exception(), ParseFailure)

    def test_structural_failure(self) -> None:
        result = run_ingestion(json.dumps({"nodes_to_add": [{"name": "Mill"}]}))

        assert not result.ok
        assert not result.parse_failed
        assert isinstance(result.to_exception(), StructuralValidationFailure)
        assert "nodes_to_add.0.category" in result.error_summary()

    def test_value_failure(self) -> None:
        text = json.dumps(
            {"edges_to_add": [{"source": "A", "target": "B", "category": "hyperlane", "status": "open"}]}
        )
        result = run_ingestion(text)

        exc = result.to_exception()
        assert isinstance(exc, ValueValidationFailure)
        assert "hyperlane" in exc.to_feedback()

    def test_structural_failure_outranks_value_failure(self) -> None:
        text = json.dumps(
            {
                "nodes_to_add": [
                    {
                        "name": "Mill",
                        "aliases": [],
                        "category": "spaceship",
                        "status": "found",
                        "parent": "Universe",
                    }
                ]
            }
        )
        result = run_ingestion(text)

        paths = {e.field_path for e in result.errors}
        assert paths == {"nodes_to_add.0.description", "nodes_to_add.0.category"}
        assert isinstance(result.to_exception(), StructuralValidationFailure)

    def test_removal_rewrite_applied(self) -> None:
        text = json.dumps({"edges_to_update": [{"source": "Mill", "target": "Bridge", "status": "cut"}]})

        result = run_ingestion(text)

        assert result.ok
        assert result.delta.edges_to_update == []
        removal = result.delta.edges_to_remove[0]
        assert (removal.source_id, removal.target_id) == ("Mill", "Bridge")

    def test_destroyed_node_leaves_map_despite_other_update(self, sample_graph: MapGraph) -> None:
        text = json.dumps(
            {
                "nodes_to_update": [
                    {"name": "Well", "status": "destroyed"},
                    {"name": "Well", "description": "Rubble fills the shaft."},
                ]
            }
        )

        result = run_ingestion(text)
        commit_delta(sample_graph, result.delta)

        assert result.delta.nodes_to_update == []
        assert sample_graph.find_node("Well") is None

    def test_null_optionals_dropped(self) -> None:
        text = json.dumps(
            {
                "edges_to_add": [
                    {
                        "source": "A",
                        "target": "B",
                        "category": "path",
                        "status": "One Way",
                        "description": None,
                        "travel_time": None,
                    }
                ],
                "split_family": None,
            }
        )
        result = run_ingestion(text)

        assert result.ok
        assert result.delta.edges_to_add[0].status is EdgeStatus.ONE_WAY
        assert result.delta.split_family is None

    def test_success_has_no_exception(self, old_mill_response: str) -> None:
        assert run_ingestion(old_mill_response).to_exception() is None


class TestBuildDelta:
    def test_unknown_top_level_keys_ignored(self) -> None:
        result = build_delta({"mood": "gloomy", "observations": "Rain."})

        assert result.ok
        assert result.delta.is_empty
        assert result.delta.observations == "Rain."

    def test_draft_kept_on_failure(self) -> None:
        result = build_delta({"nodes_to_add": [{"name": "Mill", "category": "building"}]})

        assert not result.ok
        assert result.draft["nodes_to_add"][0]["category"] == "exterior"
