"""Structural and value validation of draft deltas.

Validation is read-only and never fails fast: every operation is checked
and all problems are collected as DeltaValidationError records, so a
single retry prompt can report everything that was wrong.

Field requirements per operation kind:
- node add: name, description, aliases (list, may be empty), category,
  status, parent
- node update: name; other fields optional but typed
- node remove: node_id or node_name
- edge add: source, target, category, status; description/travel_time
  optional strings
- edge update: source, target; other fields optional but typed
- edge remove: edge_id, or both source_id and target_id
"""

from __future__ import annotations

from typing import Any

from cartographer.delta.models import OP_KEYS
from cartographer.delta.synonyms import EDGE_REMOVAL_SYNONYMS, NODE_REMOVAL_SYNONYMS
from cartographer.errors import DeltaErrorCategory, DeltaValidationError
from cartographer.graph.models import (
    EDGE_CATEGORY_VALUES,
    EDGE_STATUS_VALUES,
    NODE_CATEGORY_VALUES,
    NODE_STATUS_VALUES,
)

_MAX_PROVIDED_CHARS = 80


def _render(value: Any) -> str:
    text = repr(value) if not isinstance(value, str) else value
    if len(text) > _MAX_PROVIDED_CHARS:
        return text[: _MAX_PROVIDED_CHARS - 3] + "..."
    return text


class _Checker:
    """Accumulates diagnostics for one draft."""

    def __init__(self) -> None:
        self.errors: list[DeltaValidationError] = []

    def structural(self, path: str, issue: str, provided: Any = None) -> None:
        self.errors.append(
            DeltaValidationError(
                field_path=path,
                issue=issue,
                provided="" if provided is None else _render(provided),
                category=DeltaErrorCategory.STRUCTURAL,
            )
        )

    def value(self, path: str, provided: Any, allowed: tuple[str, ...], what: str) -> None:
        self.errors.append(
            DeltaValidationError(
                field_path=path,
                issue=f"'{provided}' is not a valid {what}",
                provided=_render(provided),
                available=list(allowed),
                category=DeltaErrorCategory.VALUE,
            )
        )

    # -- field checks ------------------------------------------------------

    def required_string(self, op: dict[str, Any], key: str, path: str) -> bool:
        value = op.get(key)
        if value is None:
            self.structural(f"{path}.{key}", "is required")
            return False
        if not isinstance(value, str):
            self.structural(f"{path}.{key}", "must be a string", value)
            return False
        if not value.strip():
            self.structural(f"{path}.{key}", "must not be empty")
            return False
        return True

    def optional_string(self, op: dict[str, Any], key: str, path: str, *, non_empty: bool = False) -> None:
        if key not in op or op[key] is None:
            return
        value = op[key]
        if not isinstance(value, str):
            self.structural(f"{path}.{key}", "must be a string", value)
        elif non_empty and not value.strip():
            self.structural(f"{path}.{key}", "must not be empty if provided")

    def string_list(self, op: dict[str, Any], key: str, path: str, *, required: bool) -> None:
        if key not in op or op[key] is None:
            if required:
                self.structural(f"{path}.{key}", "is required (use [] for none)")
            return
        value = op[key]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.structural(f"{path}.{key}", "must be a list of strings", value)

    def enum(
        self,
        op: dict[str, Any],
        key: str,
        path: str,
        allowed: tuple[str, ...],
        what: str,
        *,
        required: bool,
        removal_ok: frozenset[str] = frozenset(),
    ) -> None:
        if key not in op or op[key] is None:
            if required:
                self.structural(f"{path}.{key}", "is required")
            return
        value = op[key]
        if not isinstance(value, str):
            self.structural(f"{path}.{key}", "must be a string", value)
            return
        if value in allowed:
            return
        if value.strip().lower() in removal_ok:
            return
        self.value(f"{path}.{key}", value, allowed, what)


def _check_node_add(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.required_string(op, "name", path)
    c.required_string(op, "description", path)
    c.string_list(op, "aliases", path, required=True)
    c.enum(op, "category", path, NODE_CATEGORY_VALUES, "node category", required=True)
    c.enum(op, "status", path, NODE_STATUS_VALUES, "node status", required=True)
    c.required_string(op, "parent", path)


def _check_node_update(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.required_string(op, "name", path)
    c.optional_string(op, "new_name", path, non_empty=True)
    c.optional_string(op, "description", path)
    c.optional_string(op, "parent", path, non_empty=True)
    c.string_list(op, "aliases", path, required=False)
    c.enum(op, "category", path, NODE_CATEGORY_VALUES, "node category", required=False)
    c.enum(
        op,
        "status",
        path,
        NODE_STATUS_VALUES,
        "node status",
        required=False,
        removal_ok=NODE_REMOVAL_SYNONYMS,
    )


def _check_node_remove(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.optional_string(op, "node_id", path, non_empty=True)
    c.optional_string(op, "node_name", path, non_empty=True)
    if not (op.get("node_id") or op.get("node_name")):
        c.structural(f"{path}.node_id", "node_id or node_name is required")


def _check_edge_add(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.required_string(op, "source", path)
    c.required_string(op, "target", path)
    c.enum(op, "category", path, EDGE_CATEGORY_VALUES, "edge category", required=True)
    c.enum(op, "status", path, EDGE_STATUS_VALUES, "edge status", required=True)
    c.optional_string(op, "description", path)
    c.optional_string(op, "travel_time", path)


def _check_edge_update(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.required_string(op, "source", path)
    c.required_string(op, "target", path)
    c.enum(op, "category", path, EDGE_CATEGORY_VALUES, "edge category", required=False)
    c.enum(
        op,
        "status",
        path,
        EDGE_STATUS_VALUES,
        "edge status",
        required=False,
        removal_ok=EDGE_REMOVAL_SYNONYMS,
    )
    c.optional_string(op, "description", path)
    c.optional_string(op, "travel_time", path)


def _check_edge_remove(c: _Checker, op: dict[str, Any], path: str) -> None:
    c.optional_string(op, "edge_id", path)
    c.optional_string(op, "source_id", path, non_empty=True)
    c.optional_string(op, "target_id", path, non_empty=True)
    c.enum(op, "category", path, EDGE_CATEGORY_VALUES, "edge category", required=False)
    if op.get("edge_id"):
        return
    if not (op.get("source_id") and op.get("target_id")):
        c.structural(f"{path}.edge_id", "edge_id, or both source_id and target_id, is required")


_OP_CHECKS = {
    "nodes_to_add": _check_node_add,
    "nodes_to_update": _check_node_update,
    "nodes_to_remove": _check_node_remove,
    "edges_to_add": _check_edge_add,
    "edges_to_update": _check_edge_update,
    "edges_to_remove": _check_edge_remove,
}


def _check_split_family(c: _Checker, split: Any) -> None:
    path = "split_family"
    if not isinstance(split, dict):
        c.structural(path, "must be an object", split)
        return
    c.required_string(split, "original_node_id", path)
    c.required_string(split, "new_node_id", path)
    c.optional_string(split, "new_connector_node_id", path, non_empty=True)
    c.enum(split, "new_node_type", path, NODE_CATEGORY_VALUES, "node category", required=True)
    c.string_list(split, "original_children", path, required=True)
    c.string_list(split, "new_children", path, required=True)


def validate_draft(draft: Any) -> tuple[bool, list[DeltaValidationError]]:
    """Validate a normalized draft delta.

    Update operations whose status is a removal synonym are accepted; the
    repair step turns them into removals.

    Args:
        draft: Draft delta produced by the parser and normalizer.

    Returns:
        Tuple of (is_valid, errors). The draft is never modified.
    """
    c = _Checker()

    if not isinstance(draft, dict):
        c.structural("(root)", "payload must be a JSON object", draft)
        return False, c.errors

    for key in OP_KEYS:
        ops = draft.get(key)
        if ops is None:
            continue
        if not isinstance(ops, list):
            c.structural(key, "must be a list", ops)
            continue
        check = _OP_CHECKS[key]
        for index, op in enumerate(ops):
            path = f"{key}.{index}"
            if not isinstance(op, dict):
                c.structural(path, "must be an object", op)
                continue
            check(c, op, path)

    for key in ("observations", "rationale", "suggested_current_node"):
        value = draft.get(key)
        if value is not None and not isinstance(value, str):
            c.structural(key, "must be a string", value)

    if draft.get("split_family") is not None:
        _check_split_family(c, draft["split_family"])

    return not c.errors, c.errors
