"""Tolerant parsing of backend text into a draft delta.

The backend is asked for one JSON object but in practice returns fenced
JSON, JSON wrapped in prose, arrays of partial fragments, camelCase keys,
or a minimal single-node/edge shape. This module recovers a draft delta
(a plain dict with canonical snake_case keys) from all of those, and only
gives up when no JSON object or array can be found at all.
"""

from __future__ import annotations

import json
import re
from typing import Any

from cartographer.delta.models import OP_KEYS
from cartographer.errors import ParseFailure
from cartographer.graph.models import ROOT_NODE_ID
from cartographer.observability.logging import get_logger

log = get_logger(__name__)

_WHOLE_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL | re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

_SCALAR_KEYS = ("observations", "rationale", "suggested_current_node")

_TOP_LEVEL_ALIASES = {
    "suggested_current_map_node_id": "suggested_current_node",
    "suggested_current_location": "suggested_current_node",
    "current_map_node_id": "suggested_current_node",
}

_WRAPPER_KEYS = ("map_update", "map_update_payload", "delta", "payload", "update")
_SINGLE_NODE_KEYS = ("node", "node_to_add", "new_node")
_SINGLE_EDGE_KEYS = ("edge", "edge_to_add", "new_edge")

_NODE_FIELD_ALIASES = {
    "place_name": "name",
    "node_type": "category",
    "type": "category",
    "parent_node_id": "parent",
    "parent_id": "parent",
    "parent_place_name": "parent",
    "parent_name": "parent",
    "new_place_name": "new_name",
}

_EDGE_FIELD_ALIASES = {
    "source_place_name": "source",
    "target_place_name": "target",
    "source_id": "source",
    "target_id": "target",
    "source_node_id": "source",
    "target_node_id": "target",
    "type": "category",
    "edge_type": "category",
}

_EDGE_REMOVE_ALIASES = {
    "id": "edge_id",
    "source_place_name": "source_id",
    "target_place_name": "target_id",
    "source": "source_id",
    "target": "target_id",
}

_NODE_REMOVE_ALIASES = {
    "id": "node_id",
    "place_name": "node_name",
    "name": "node_name",
}

_SPLIT_ALIASES = {"new_node_category": "new_node_type"}

_OP_ALIASES: dict[str, dict[str, str]] = {
    "nodes_to_add": _NODE_FIELD_ALIASES,
    "nodes_to_update": _NODE_FIELD_ALIASES,
    "nodes_to_remove": _NODE_REMOVE_ALIASES,
    "edges_to_add": _EDGE_FIELD_ALIASES,
    "edges_to_update": _EDGE_FIELD_ALIASES,
    "edges_to_remove": _EDGE_REMOVE_ALIASES,
}


def to_snake_case(key: str) -> str:
    """Convert camelCase / kebab-case / spaced keys to snake_case."""
    key = _CAMEL_RE.sub(r"_\1", key.strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


def extract_json_text(text: str) -> str:
    """Strip code fences and surrounding prose from backend text.

    Tries, in order: a fence wrapping the whole text, the first fenced
    block anywhere, then the outermost ``{...}`` or ``[...]`` span.
    """
    stripped = text.strip()
    whole = _WHOLE_FENCE_RE.match(stripped)
    if whole:
        return whole.group(1).strip()
    if stripped.startswith(("{", "[")):
        return stripped
    fenced = _ANY_FENCE_RE.search(stripped)
    if fenced:
        return fenced.group(1).strip()

    starts = [i for i in (stripped.find("{"), stripped.find("[")) if i != -1]
    if not starts:
        return stripped
    start = min(starts)
    closer = "}" if stripped[start] == "{" else "]"
    end = stripped.rfind(closer)
    if end <= start:
        return stripped[start:]
    return stripped[start : end + 1]


def _load_json(text: str) -> Any:
    candidate = extract_json_text(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"invalid JSON at line {e.lineno} column {e.colno}", text) from e


def _rename_keys(obj: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for raw_key, value in obj.items():
        key = to_snake_case(str(raw_key))
        key = aliases.get(key, key)
        # Canonical keys win over aliases that map onto them
        if key in result and to_snake_case(str(raw_key)) != key:
            continue
        result[key] = value
    return result


def _canonicalize_op(op: Any, aliases: dict[str, str]) -> Any:
    if not isinstance(op, dict):
        return op
    renamed = _rename_keys(op, aliases)
    # Legacy shape nests the changed fields under "new_data"
    nested = renamed.pop("new_data", None)
    if isinstance(nested, dict):
        for key, value in _rename_keys(nested, aliases).items():
            renamed.setdefault(key, value)
    return renamed


def _canonicalize_payload(obj: dict[str, Any]) -> dict[str, Any]:
    payload = _rename_keys(obj, _TOP_LEVEL_ALIASES)
    for key, aliases in _OP_ALIASES.items():
        ops = payload.get(key)
        if isinstance(ops, list):
            payload[key] = [_canonicalize_op(op, aliases) for op in ops]
        elif isinstance(ops, dict):
            payload[key] = [_canonicalize_op(ops, aliases)]
    split = payload.get("split_family")
    if isinstance(split, dict):
        payload["split_family"] = _rename_keys(split, _SPLIT_ALIASES)
    return payload


def _looks_like_edge(obj: dict[str, Any]) -> bool:
    keys = {to_snake_case(str(k)) for k in obj}
    has_source = bool(keys & {"source", "source_place_name", "source_id", "source_node_id"})
    has_target = bool(keys & {"target", "target_place_name", "target_id", "target_node_id"})
    return has_source and has_target


def _looks_like_node(obj: dict[str, Any]) -> bool:
    keys = {to_snake_case(str(k)) for k in obj}
    return bool(keys & {"name", "place_name"}) and bool(keys & {"category", "node_type", "type", "parent", "parent_node_id", "parent_id"})


def _unwrap(obj: dict[str, Any]) -> dict[str, Any]:
    """Turn wrapper and minimal shapes into a payload dict."""
    keys = {to_snake_case(str(k)): k for k in obj}

    if not (set(keys) & set(OP_KEYS)):
        for wrapper in _WRAPPER_KEYS:
            inner = obj.get(keys.get(wrapper, ""))
            if isinstance(inner, dict):
                return _unwrap(inner)
        for single in _SINGLE_NODE_KEYS:
            inner = obj.get(keys.get(single, ""))
            if isinstance(inner, dict):
                return {"nodes_to_add": [inner]}
        for single in _SINGLE_EDGE_KEYS:
            inner = obj.get(keys.get(single, ""))
            if isinstance(inner, dict):
                return {"edges_to_add": [inner]}
        if _looks_like_edge(obj):
            return {"edges_to_add": [obj]}
        if _looks_like_node(obj):
            return {"nodes_to_add": [obj]}
    return obj


def merge_fragments(fragments: list[Any]) -> dict[str, Any]:
    """Merge an array of partial payloads into one draft.

    Operation lists are concatenated in order; for scalar fields and
    ``split_family`` the first non-empty value wins.
    """
    merged: dict[str, Any] = {}
    for fragment in fragments:
        if not isinstance(fragment, dict):
            continue
        payload = _canonicalize_payload(_unwrap(fragment))
        for key in OP_KEYS:
            ops = payload.get(key)
            if isinstance(ops, list):
                merged.setdefault(key, []).extend(ops)
        for key in (*_SCALAR_KEYS, "split_family"):
            if payload.get(key) and not merged.get(key):
                merged[key] = payload[key]
    return merged


def _is_root_name(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == ROOT_NODE_ID.lower()


def drop_root_operations(draft: dict[str, Any]) -> tuple[dict[str, Any], int]:
    """Remove operations that target the root node.

    Returns:
        Tuple of (filtered draft, number of operations dropped).
    """
    result = dict(draft)
    dropped = 0
    node_keys = ("name", "node_id", "node_name")
    edge_keys = ("source", "target", "source_id", "target_id")
    for key in OP_KEYS:
        ops = result.get(key)
        if not isinstance(ops, list):
            continue
        fields = node_keys if key.startswith("nodes") else edge_keys
        kept = [
            op
            for op in ops
            if not (isinstance(op, dict) and any(_is_root_name(op.get(f)) for f in fields))
        ]
        dropped += len(ops) - len(kept)
        result[key] = kept
    return result, dropped


def parse_delta_text(text: str) -> dict[str, Any]:
    """Recover a draft delta from raw backend text.

    Args:
        text: Raw response text.

    Returns:
        Draft delta dict with canonical keys. Operation lists are only
        guaranteed to be lists when they were lists (or single objects) in
        the input; other shapes are left for the validator to reject.

    Raises:
        ParseFailure: If no JSON object or array can be recovered.
    """
    if not text or not text.strip():
        raise ParseFailure("empty response", text)

    parsed = _load_json(text)

    if isinstance(parsed, list):
        draft = merge_fragments(parsed)
        if not any(isinstance(item, dict) for item in parsed):
            raise ParseFailure("array contains no JSON objects", text)
    elif isinstance(parsed, dict):
        draft = _canonicalize_payload(_unwrap(parsed))
    else:
        raise ParseFailure(f"expected an object or array, got {type(parsed).__name__}", text)

    draft, dropped = drop_root_operations(draft)
    if dropped:
        log.info("root_operations_dropped", count=dropped)
    return draft
