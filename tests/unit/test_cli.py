"""Tests for the command-line interface."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from cartographer import __version__
from cartographer.cli import app
from cartographer.observability import close_file_logging

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


@pytest.fixture
def response_file(tmp_path: Path, old_mill_response: str) -> Path:
    path = tmp_path / "response.txt"
    path.write_text(old_mill_response)
    return path


def _node_names(map_path: Path) -> set[str]:
    data = json.loads(map_path.read_text())
    return {node["name"] for node in data["nodes"]}


class TestBasics:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "Usage" in result.output

    def test_log_dir_creates_event_log(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"

        result = runner.invoke(app, ["--log-dir", str(log_dir), "version"])
        close_file_logging()

        assert result.exit_code == 0
        assert (log_dir / "cartographer.jsonl").exists()


class TestValidate:
    def test_valid_response(self, response_file: Path) -> None:
        result = runner.invoke(app, ["validate", str(response_file)])

        assert result.exit_code == 0
        assert "1 operation(s)" in result.output

    def test_unparseable_response(self, tmp_path: Path) -> None:
        path = tmp_path / "prose.txt"
        path.write_text("The party rests by the fire.")

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "No JSON structure" in result.output

    def test_invalid_response(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"nodes_to_add": [{"name": "Mill"}]}))

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Map update problems" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", str(tmp_path / "missing.txt")])

        assert result.exit_code == 1
        assert "File not found" in result.output


class TestApply:
    def test_creates_map(self, tmp_path: Path, response_file: Path) -> None:
        map_path = tmp_path / "map.json"

        result = runner.invoke(app, ["apply", str(map_path), str(response_file)])

        assert result.exit_code == 0, result.output
        assert "Map written to" in result.output
        assert "The Old Mill" in _node_names(map_path)

    def test_output_option(self, tmp_path: Path, response_file: Path) -> None:
        map_path = tmp_path / "map.json"
        out_path = tmp_path / "out" / "map.json"

        result = runner.invoke(app, ["apply", str(map_path), str(response_file), "-o", str(out_path)])

        assert result.exit_code == 0, result.output
        assert not map_path.exists()
        assert "The Old Mill" in _node_names(out_path)

    def test_corrupt_map_file(self, tmp_path: Path, response_file: Path) -> None:
        map_path = tmp_path / "map.json"
        map_path.write_text("{not json")

        result = runner.invoke(app, ["apply", str(map_path), str(response_file)])

        assert result.exit_code == 1
        assert "Could not load map" in result.output

    def test_invalid_response_leaves_map_alone(self, tmp_path: Path) -> None:
        map_path = tmp_path / "map.json"
        bad = tmp_path / "bad.txt"
        bad.write_text("no json here")

        result = runner.invoke(app, ["apply", str(map_path), str(bad)])

        assert result.exit_code == 1
        assert not map_path.exists()


class TestTurn:
    @staticmethod
    def _backend(reply: str) -> MagicMock:
        backend = MagicMock()
        backend.name = "fake/model"
        backend.complete = AsyncMock(return_value=reply)
        return backend

    def test_turn_writes_map(self, tmp_path: Path, old_mill_response: str) -> None:
        map_path = tmp_path / "map.json"
        scene = tmp_path / "scene.txt"
        scene.write_text("You follow the river to an old mill.")
        backend = self._backend(old_mill_response)

        with patch("cartographer.providers.create_backend", return_value=backend) as create:
            result = runner.invoke(
                app, ["turn", str(map_path), str(scene), "--provider", "openai/gpt-5-mini"]
            )

        assert result.exit_code == 0, result.output
        assert create.call_args_list[0].args == ("openai/gpt-5-mini",)
        assert "The Old Mill" in _node_names(map_path)
        _system, prompt = backend.complete.await_args_list[0].args
        assert "old mill" in prompt

    def test_degraded_turn_keeps_map(self, tmp_path: Path) -> None:
        map_path = tmp_path / "map.json"
        scene = tmp_path / "scene.txt"
        scene.write_text("Nothing changes.")
        config = tmp_path / "cartographer.yaml"
        config.write_text("retry:\n  max_retries: 0\n  use_corrective: false\n")

        with patch("cartographer.providers.create_backend", return_value=self._backend("???")):
            result = runner.invoke(app, ["turn", str(map_path), str(scene), "-c", str(config)])

        assert result.exit_code == 1
        assert "Map left unchanged" in result.output
        assert not map_path.exists()

    def test_bad_config(self, tmp_path: Path) -> None:
        scene = tmp_path / "scene.txt"
        scene.write_text("x")

        result = runner.invoke(
            app, ["turn", str(tmp_path / "map.json"), str(scene), "-c", str(tmp_path / "missing.yaml")]
        )

        assert result.exit_code == 1
        assert "Failed to load config" in result.output
