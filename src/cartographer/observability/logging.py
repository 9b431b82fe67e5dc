"""Structured logging for the map-delta pipeline.

Console output goes through rich at a level picked by ``-v`` flags. When a
log directory is given, every event (DEBUG included) is also appended to
``cartographer.jsonl`` there, one JSON object per line, so failed turns can
be replayed from the recorded parse and validation events.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

EVENT_LOG_NAME = "cartographer.jsonl"

_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}

# Dependencies whose DEBUG chatter would bury pipeline events
_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "langchain", "langchain_core", "asyncio")

_configured = False
_event_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None


def _record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if not isinstance(record.msg, dict):
        entry["message"] = record.getMessage()
        return entry

    # wrap_for_formatter hands the structlog event dict over as record.msg
    fields = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
    entry["message"] = fields.pop("event", str(record.msg))
    entry.update(fields)
    return entry


class EventLogHandler(logging.FileHandler):
    """Append each record to the event log as a single JSON line."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_record_to_entry(record), default=str)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def _console_handler(verbosity: int) -> RichHandler:
    return RichHandler(
        console=Console(stderr=True),
        level=_VERBOSITY_LEVELS.get(verbosity, logging.DEBUG),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
    )


def _open_event_log(log_dir: Path) -> EventLogHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = EventLogHandler(str(log_dir / EVENT_LOG_NAME), mode="a")
    handler.setLevel(logging.DEBUG)
    return handler


def _configure_structlog(level: int) -> None:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Configure console and event-log output.

    Safe to call repeatedly; a previously opened event log is closed first.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG.
        log_to_file: Also append every event to ``{log_dir}/cartographer.jsonl``.
        log_dir: Directory for the event log. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but log_dir is not provided.
    """
    global _configured, _event_handler, _logs_dir

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and log_dir is not None:
        _event_handler = _open_event_log(log_dir)
        _logs_dir = log_dir
        handlers.append(_event_handler)
    else:
        _logs_dir = None

    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configure_structlog(root_level)
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Logger name (typically __name__).
    """
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Directory holding the event log, or None when file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    """Flush and close the event log, if one is open."""
    global _event_handler
    if _event_handler is not None:
        _event_handler.close()
        _event_handler = None
