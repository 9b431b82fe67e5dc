"""Observability module for Cartographer.

Provides structured logging for the map-delta pipeline.
"""

from cartographer.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
