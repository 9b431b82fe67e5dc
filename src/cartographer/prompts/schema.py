"""Human-readable operation schema embedded in the map-update prompt.

Enumerations are rendered from the canonical enums so the prompt can never
drift from what the validator accepts.
"""

from __future__ import annotations

from cartographer.graph.models import (
    EDGE_CATEGORY_VALUES,
    EDGE_STATUS_VALUES,
    NODE_CATEGORY_VALUES,
    NODE_STATUS_VALUES,
    ROOT_NODE_ID,
)


def _choices(values: tuple[str, ...]) -> str:
    return " | ".join(f'"{v}"' for v in values)


def render_operation_schema() -> str:
    """Describe every operation kind and its allowed values."""
    return "\n".join(
        [
            "Respond with one JSON object with these optional keys:",
            "",
            "nodes_to_add: list of {name, description, aliases: [string], category, status, parent}",
            "nodes_to_update: list of {name, new_name?, description?, aliases?, category?, status?, parent?}",
            "nodes_to_remove: list of {node_id?, node_name?} (one of them is required)",
            "edges_to_add: list of {source, target, category, status, description?, travel_time?}",
            "edges_to_update: list of {source, target, category?, status?, description?, travel_time?}",
            "edges_to_remove: list of {edge_id?, source_id?, target_id?} (edge_id or both endpoints)",
            "split_family: {original_node_id, new_node_id, new_node_type, original_children: [string],"
            " new_children: [string], new_connector_node_id?} (only when one place splits in two)",
            "observations: string",
            "rationale: string",
            "suggested_current_node: string (where the player is now)",
            "",
            f"node category: {_choices(NODE_CATEGORY_VALUES)}",
            "  (listed from largest to smallest; a parent must be larger than its children)",
            f"node status: {_choices(NODE_STATUS_VALUES)}",
            f"edge category: {_choices(EDGE_CATEGORY_VALUES)}",
            f"edge status: {_choices(EDGE_STATUS_VALUES)}",
            "",
            f'Use "{ROOT_NODE_ID}" as parent for top-level places. Never add, update or remove "{ROOT_NODE_ID}".',
            "Refer to existing places by their exact name.",
        ]
    )
