"""Tests for logging configuration."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
import structlog

from cartographer.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logs_dir,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    yield
    close_file_logging()
    configure_logging()


class TestConfigureLogging:
    def test_file_logging_requires_dir(self) -> None:
        with pytest.raises(ValueError, match="log_dir"):
            configure_logging(log_to_file=True)

    def test_events_written_as_json_lines(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"
        configure_logging(log_to_file=True, log_dir=log_dir)

        structlog.get_logger("cartographer.test").warning("map_committed", nodes=2)
        close_file_logging()

        lines = (log_dir / "cartographer.jsonl").read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "map_committed"
        assert entry["nodes"] == 2
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "cartographer.test"
        assert get_logs_dir() == log_dir

    def test_close_is_idempotent(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, log_dir=tmp_path)
        close_file_logging()
        close_file_logging()
