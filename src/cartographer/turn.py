"""One map-update turn: fetch, resolve, commit.

:func:`run_turn` is the outer boundary of the pipeline. It never raises
(cancellation and keyboard interrupts aside): any failure degrades to an
empty commit with a turn-level warning, and the map stays as it was.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cartographer.commit import CommitResult, commit_delta
from cartographer.consistency import ConsistencyResolver, ResolutionResult
from cartographer.graph.models import ROOT_NODE_ID
from cartographer.observability.logging import get_logger
from cartographer.prompts import render_operation_schema

if TYPE_CHECKING:
    from cartographer.graph.graph import MapGraph
    from cartographer.orchestrator import DeltaOrchestrator, OrchestratorOutcome
    from cartographer.prompts import PromptLoader

log = get_logger(__name__)

_MAX_SUMMARY_NODES = 200


@dataclass
class TurnResult:
    """Everything that happened during one turn.

    Attributes:
        commit: The committed change (empty when the turn degraded).
        outcome: Orchestrator outcome, if the backend was reached.
        resolution: Consistency fixes, if the resolver ran.
        warnings: Turn-level warnings, oldest first.
        degraded: True when the turn was abandoned and nothing committed.
    """

    commit: CommitResult
    outcome: OrchestratorOutcome | None = None
    resolution: ResolutionResult | None = None
    warnings: list[str] = field(default_factory=list)
    degraded: bool = False


def summarize_map(graph: MapGraph, *, max_nodes: int = _MAX_SUMMARY_NODES) -> str:
    """Render the map as prompt context, one line per node and edge."""
    nodes = graph.nodes_by_id()
    if not nodes:
        return f"(empty map; only the root '{ROOT_NODE_ID}' exists)"

    lines = ["Places:"]
    for node in list(nodes.values())[:max_nodes]:
        parent = nodes.get(node.parent_id)
        parent_name = parent.name if parent is not None else ROOT_NODE_ID
        aliases = f" aka {', '.join(node.aliases)}" if node.aliases else ""
        lines.append(f"- {node.name}{aliases} [{node.category}, {node.status}] in {parent_name}")
    if len(nodes) > max_nodes:
        lines.append(f"- ... and {len(nodes) - max_nodes} more")

    edges = graph.edges
    if edges:
        lines.append("Routes:")
        for edge in edges[:max_nodes]:
            source = nodes.get(edge.source)
            target = nodes.get(edge.target)
            if source is None or target is None:
                continue
            lines.append(f"- {source.name} <-> {target.name} [{edge.category}, {edge.status}]")
    return "\n".join(lines)


def build_map_update_request(graph: MapGraph, scene: str, loader: PromptLoader) -> tuple[str, str]:
    """Render the map-update system and user prompts for *scene*."""
    template = loader.load("map_update")
    return template.render(
        schema=render_operation_schema(),
        map_summary=summarize_map(graph),
        scene=scene,
    )


def _degraded(
    graph: MapGraph,
    warnings: list[str],
    outcome: OrchestratorOutcome | None = None,
    resolution: ResolutionResult | None = None,
) -> TurnResult:
    return TurnResult(
        commit=CommitResult(graph=graph, warnings=list(warnings)),
        outcome=outcome,
        resolution=resolution,
        warnings=warnings,
        degraded=True,
    )


async def run_turn(
    graph: MapGraph,
    scene: str,
    orchestrator: DeltaOrchestrator,
    resolver: ConsistencyResolver | None = None,
) -> TurnResult:
    """Run one map-update turn against the live map.

    Args:
        graph: The live map; replaced atomically on a successful commit.
        scene: Narrative context for the backend.
        orchestrator: Fetches and validates the delta.
        resolver: Consistency resolver. Defaults to a deterministic one.

    Returns:
        TurnResult. On any failure, an empty commit with a warning.
    """
    resolver = resolver or ConsistencyResolver()
    outcome: OrchestratorOutcome | None = None
    resolution: ResolutionResult | None = None
    warnings: list[str] = []

    try:
        system, prompt = build_map_update_request(graph, scene, orchestrator.loader)
        outcome = await orchestrator.fetch_delta(system, prompt)
        warnings.extend(outcome.warnings)
        if not outcome.succeeded:
            return _degraded(graph, warnings, outcome=outcome)

        resolution = await resolver.resolve(graph, outcome.delta, scene=scene)
        warnings.extend(v.to_feedback() for v in resolution.violations)

        commit = commit_delta(graph, resolution.delta)
    except (KeyboardInterrupt, asyncio.CancelledError):
        raise
    except Exception as e:  # noqa: BLE001 - turn boundary degrades instead of raising
        log.error("turn_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
        warnings.append(f"Map update skipped: {e}")
        return _degraded(graph, warnings, outcome=outcome, resolution=resolution)

    warnings.extend(commit.warnings)
    commit.warnings = list(warnings)
    log.info("turn_completed", warnings=len(warnings), current_node=commit.current_node_id)
    return TurnResult(commit=commit, outcome=outcome, resolution=resolution, warnings=warnings)
