"""Deterministic, model-free repairs of validated drafts.

Each repair is a pure ``draft -> draft`` function. They run after
validation, in the order of :data:`REPAIR_STEPS`:

1. Updates whose new status means "gone" become explicit removals.
2. Removals filed under the wrong entity kind (judged by id prefix) move
   to the right list.
3. Logically identical edge operations are collapsed, treating edges as
   undirected.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from cartographer.delta.synonyms import EDGE_REMOVAL_SYNONYMS, NODE_REMOVAL_SYNONYMS
from cartographer.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

log = get_logger(__name__)

NODE_ID_PREFIX = "node_"
EDGE_ID_PREFIX = "edge_"


def _is_removal(status: Any, synonyms: frozenset[str]) -> bool:
    return isinstance(status, str) and status.strip().lower() in synonyms


def _names_removed(op: dict[str, Any], removed_names: set[str]) -> bool:
    names = {str(op.get(key) or "").strip().lower() for key in ("name", "new_name")}
    if names & removed_names:
        log.debug("node_update_dropped_for_removal", node=op.get("name"))
        return True
    return False


def rewrite_removal_updates(draft: dict[str, Any]) -> dict[str, Any]:
    """Turn "status: destroyed"-style updates into remove operations.

    A node update becomes ``{"node_id": name, "node_name": name}``; an edge
    update becomes ``{"source_id": source, "target_id": target}``. Other
    fields of the rewritten update are discarded, and so are other updates
    of a node removed this way.
    """
    result = copy.deepcopy(draft)

    kept_nodes: list[Any] = []
    removed_names: set[str] = set()
    node_removals = list(result.get("nodes_to_remove") or [])
    for op in result.get("nodes_to_update") or []:
        if _is_removal(op.get("status"), NODE_REMOVAL_SYNONYMS):
            node_removals.append({"node_id": op["name"], "node_name": op["name"]})
            removed_names.add(op["name"].strip().lower())
            log.debug("node_update_rewritten_as_removal", node=op["name"], status=op["status"])
        else:
            kept_nodes.append(op)
    if removed_names:
        kept_nodes = [op for op in kept_nodes if not _names_removed(op, removed_names)]

    kept_edges: list[Any] = []
    edge_removals = list(result.get("edges_to_remove") or [])
    for op in result.get("edges_to_update") or []:
        if _is_removal(op.get("status"), EDGE_REMOVAL_SYNONYMS):
            entry = {"source_id": op["source"], "target_id": op["target"]}
            if op.get("category"):
                entry["category"] = op["category"]
            edge_removals.append(entry)
            log.debug(
                "edge_update_rewritten_as_removal",
                source=op["source"],
                target=op["target"],
                status=op["status"],
            )
        else:
            kept_edges.append(op)

    result["nodes_to_update"] = kept_nodes
    result["nodes_to_remove"] = node_removals
    result["edges_to_update"] = kept_edges
    result["edges_to_remove"] = edge_removals
    return result


def fix_delete_id_mixups(draft: dict[str, Any]) -> dict[str, Any]:
    """Move removals whose id prefix names the other entity kind."""
    result = copy.deepcopy(draft)

    nodes: list[Any] = []
    edges: list[Any] = []
    for op in result.get("nodes_to_remove") or []:
        node_id = op.get("node_id") or ""
        if node_id.startswith(EDGE_ID_PREFIX):
            edges.append({"edge_id": node_id})
            log.debug("removal_moved_to_edges", edge_id=node_id)
        else:
            nodes.append(op)

    for op in result.get("edges_to_remove") or []:
        edge_id = op.get("edge_id") or ""
        if edge_id.startswith(NODE_ID_PREFIX):
            nodes.append({"node_id": edge_id})
            log.debug("removal_moved_to_nodes", node_id=edge_id)
        else:
            edges.append(op)

    result["nodes_to_remove"] = nodes
    result["edges_to_remove"] = edges
    return result


def edge_key(source: str, target: str, category: str | None) -> str:
    """Order-independent identity of an edge operation."""
    a, b = sorted((source.strip().lower(), target.strip().lower()))
    return f"{a}|{b}|{category or 'any'}"


def _dedupe(ops: list[Any], key_fn: Callable[[dict[str, Any]], str]) -> list[Any]:
    seen: set[str] = set()
    kept: list[Any] = []
    for op in ops:
        key = key_fn(op)
        if key in seen:
            continue
        seen.add(key)
        kept.append(op)
    return kept


def _removal_key(op: dict[str, Any]) -> str:
    if op.get("edge_id"):
        return f"id:{op['edge_id'].strip().lower()}"
    return edge_key(op.get("source_id") or "", op.get("target_id") or "", op.get("category"))


def dedupe_edge_ops(draft: dict[str, Any]) -> dict[str, Any]:
    """Collapse duplicate edge operations; the first occurrence wins."""
    result = copy.deepcopy(draft)
    before = sum(len(result.get(k) or []) for k in ("edges_to_add", "edges_to_update", "edges_to_remove"))

    result["edges_to_add"] = _dedupe(
        result.get("edges_to_add") or [],
        lambda op: edge_key(op["source"], op["target"], op.get("category")),
    )
    result["edges_to_update"] = _dedupe(
        result.get("edges_to_update") or [],
        lambda op: edge_key(op["source"], op["target"], op.get("category")),
    )
    result["edges_to_remove"] = _dedupe(result.get("edges_to_remove") or [], _removal_key)

    after = sum(len(result[k]) for k in ("edges_to_add", "edges_to_update", "edges_to_remove"))
    if after < before:
        log.debug("edge_ops_deduplicated", dropped=before - after)
    return result


REPAIR_STEPS: tuple[Callable[[dict[str, Any]], dict[str, Any]], ...] = (
    rewrite_removal_updates,
    fix_delete_id_mixups,
    dedupe_edge_ops,
)


def repair_draft(draft: dict[str, Any]) -> dict[str, Any]:
    """Apply every repair step in order."""
    for step in REPAIR_STEPS:
        draft = step(draft)
    return draft
