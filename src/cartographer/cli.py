"""Cartographer CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from cartographer.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from cartographer.commit import MapPatch
    from cartographer.consistency import ResolutionRecord
    from cartographer.errors import DeltaValidationError
    from cartographer.graph import MapGraph

# Load environment variables (API keys, provider overrides) from .env
load_dotenv()

app = typer.Typer(
    name="cartographer",
    help="Cartographer: validate and apply backend map updates.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_dir: Path | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log-dir",
            help="Also write every event to LOG_DIR/cartographer.jsonl.",
        ),
    ] = None,
) -> None:
    """Cartographer: validate and apply backend map updates."""
    global _verbose, _log_dir
    _verbose = verbose
    _log_dir = log_dir
    if log_dir is not None:
        configure_logging(verbosity=verbose, log_to_file=True, log_dir=log_dir)
        atexit.register(close_file_logging)
    else:
        configure_logging(verbosity=verbose)


def _read_text(path: Path) -> str:
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _load_map(path: Path) -> MapGraph:
    from cartographer.graph import MapGraph

    if not path.exists():
        console.print(f"[dim]{path} does not exist; starting from an empty map.[/dim]")
        return MapGraph.empty()
    try:
        return MapGraph.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValueError) as e:
        console.print(f"[red]Error:[/red] Could not load map from {path}: {e}")
        raise typer.Exit(1) from None


def _write_map(graph: MapGraph, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(graph.to_dict(), indent=2) + "\n", encoding="utf-8")


def _print_errors(errors: list[DeltaValidationError]) -> None:
    from cartographer.errors import format_suggestion

    table = Table(title="Map update problems")
    table.add_column("Field", style="cyan")
    table.add_column("Kind", style="bold")
    table.add_column("Issue")
    table.add_column("Suggestion", style="dim")
    for error in errors:
        suggestion = format_suggestion(error.provided, error.available) or ""
        issue = error.issue if not error.provided else f"{error.issue} (got '{error.provided}')"
        table.add_row(error.field_path, error.category.name.lower(), issue, suggestion)
    console.print(table)


def _print_operations(counts: dict[str, Any]) -> None:
    table = Table(title="Operations")
    table.add_column("Operation", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


def _print_patch(patch: MapPatch) -> None:
    table = Table(title="Committed changes")
    table.add_column("Change", style="cyan")
    table.add_column("Ids")
    for label, ids in (
        ("nodes added", patch.nodes_added),
        ("nodes updated", patch.nodes_updated),
        ("nodes removed", patch.nodes_removed),
        ("edges added", patch.edges_added),
        ("edges updated", patch.edges_updated),
        ("edges removed", patch.edges_removed),
    ):
        if ids:
            table.add_row(label, "\n".join(ids))
    console.print(table)


def _print_records(records: list[ResolutionRecord]) -> None:
    if not records:
        return
    table = Table(title="Consistency fixes")
    table.add_column("Kind", style="cyan")
    table.add_column("Node")
    table.add_column("Action")
    table.add_column("Decided by", style="dim")
    for record in records:
        table.add_row(record.kind, record.subject, record.action, record.source)
    console.print(table)


def _print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


@app.command()
def version() -> None:
    """Show version information."""
    from cartographer import __version__

    console.print(f"Cartographer v{__version__}")


@app.command()
def validate(
    response_file: Annotated[Path, typer.Argument(help="File holding a raw backend response.")],
) -> None:
    """Run a backend response through parsing, normalization and validation."""
    from cartographer.delta import run_ingestion
    from cartographer.delta.models import OP_KEYS

    ingestion = run_ingestion(_read_text(response_file))
    if ingestion.delta is None:
        if ingestion.parse_failed:
            console.print("[red]✗[/red] No JSON structure could be recovered.")
        _print_errors(ingestion.errors)
        raise typer.Exit(1)

    delta = ingestion.delta
    console.print(f"[green]✓[/green] Valid map update with {delta.operation_count()} operation(s).")
    _print_operations({key: len(getattr(delta, key)) for key in OP_KEYS})


@app.command()
def apply(
    map_file: Annotated[Path, typer.Argument(help="JSON map file (created if missing).")],
    response_file: Annotated[Path, typer.Argument(help="File holding a raw backend response.")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the updated map here instead of MAP_FILE."),
    ] = None,
) -> None:
    """Apply an offline backend response to a map file.

    Consistency problems are resolved deterministically; no backend is called.
    """
    from cartographer.commit import commit_delta
    from cartographer.consistency import ConsistencyResolver
    from cartographer.delta import run_ingestion
    from cartographer.graph import GraphCorruptionError, GraphIntegrityError

    graph = _load_map(map_file)
    ingestion = run_ingestion(_read_text(response_file))
    if ingestion.delta is None:
        _print_errors(ingestion.errors)
        raise typer.Exit(1)

    resolution = asyncio.run(ConsistencyResolver().resolve(graph, ingestion.delta))
    try:
        result = commit_delta(graph, resolution.delta)
    except (GraphIntegrityError, GraphCorruptionError) as e:
        console.print(f"[red]Error:[/red] Commit rejected: {e}")
        raise typer.Exit(1) from None

    _print_records(resolution.records)
    _print_patch(result.patch)
    _print_warnings([v.to_feedback() for v in resolution.violations] + result.warnings)
    if result.current_node_id:
        console.print(f"Current node: [bold]{result.current_node_id}[/bold]")

    target = output or map_file
    _write_map(graph, target)
    console.print(f"[green]✓[/green] Map written to {target}")


@app.command()
def turn(
    map_file: Annotated[Path, typer.Argument(help="JSON map file (created if missing).")],
    scene_file: Annotated[Path, typer.Argument(help="File holding the scene description.")],
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML configuration file."),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option("--provider", help="Primary provider override (e.g., openai/gpt-5-mini)."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the updated map here instead of MAP_FILE."),
    ] = None,
) -> None:
    """Run one live map-update turn against the configured backends."""
    from cartographer.config import ConfigError, load_config
    from cartographer.consistency import ConsistencyResolver
    from cartographer.orchestrator import DeltaOrchestrator
    from cartographer.providers import ProviderError, create_backend
    from cartographer.turn import run_turn

    try:
        cfg = load_config(config)
        providers = cfg.providers
        primary_name = provider or providers.get_primary_provider()
        primary = create_backend(primary_name, timeout=providers.timeout)
        corrective = create_backend(providers.get_corrective_provider(), timeout=providers.timeout)
        resolver_backend = create_backend(providers.get_resolver_provider(), timeout=providers.timeout)
        orchestrator = DeltaOrchestrator(primary, corrective, retry=cfg.retry)
    except (ConfigError, ProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    # CLI flags win; the config file can only raise verbosity or add file logging
    logging_cfg = cfg.logging
    file_log_dir = _log_dir
    if file_log_dir is None and logging_cfg.log_to_file and logging_cfg.log_dir:
        file_log_dir = Path(logging_cfg.log_dir)
    if logging_cfg.verbosity > _verbose or file_log_dir != _log_dir:
        configure_logging(
            verbosity=max(_verbose, logging_cfg.verbosity),
            log_to_file=file_log_dir is not None,
            log_dir=file_log_dir,
        )
        if file_log_dir is not None:
            atexit.register(close_file_logging)

    graph = _load_map(map_file)
    scene = _read_text(scene_file)
    log.info("turn_started", primary=primary.name, map_file=str(map_file))

    result = asyncio.run(run_turn(graph, scene, orchestrator, ConsistencyResolver(resolver_backend)))

    if result.resolution is not None:
        _print_records(result.resolution.records)
    _print_patch(result.commit.patch)
    _print_warnings(result.warnings)
    if result.degraded:
        console.print("[yellow]Map left unchanged.[/yellow]")
        raise typer.Exit(1)

    target = output or map_file
    _write_map(graph, target)
    console.print(f"[green]✓[/green] Map written to {target}")
