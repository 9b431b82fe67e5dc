"""Synonym normalization for category and status values.

Backends describe the same small vocabularies in many ways ("building",
"found", "one-way"). Before validation, every category/status value in a
draft delta is looked up in a static synonym table and rewritten to its
canonical form. Unknown values are left untouched so the validator can
report them.

The tables live in ``resources/synonyms.yaml`` and are loaded once, at
import time, into read-only mappings.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from ruamel.yaml import YAML

from cartographer.graph.models import (
    EDGE_CATEGORY_VALUES,
    EDGE_STATUS_VALUES,
    NODE_CATEGORY_VALUES,
    NODE_STATUS_VALUES,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

SYNONYMS_PATH = Path(__file__).parent.parent / "resources" / "synonyms.yaml"

_TABLE_TARGETS: dict[str, tuple[str, ...]] = {
    "node_status": NODE_STATUS_VALUES,
    "node_category": NODE_CATEGORY_VALUES,
    "edge_status": EDGE_STATUS_VALUES,
    "edge_category": EDGE_CATEGORY_VALUES,
}


class SynonymTableError(Exception):
    """Raised when the synonym resource is missing or inconsistent."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid synonym tables at {path}: {reason}")


@dataclass(frozen=True)
class SynonymTables:
    """Immutable synonym lookups for one vocabulary version."""

    version: int
    node_status: Mapping[str, str]
    node_category: Mapping[str, str]
    edge_status: Mapping[str, str]
    edge_category: Mapping[str, str]
    node_removal: frozenset[str]
    edge_removal: frozenset[str]


def load_synonym_tables(path: Path = SYNONYMS_PATH) -> SynonymTables:
    """Load and check the synonym tables.

    Every synonym must map to a canonical value of its vocabulary.

    Args:
        path: YAML file to load.

    Returns:
        The loaded tables.

    Raises:
        SynonymTableError: If the file is missing, empty, or maps a synonym
            to a non-canonical value.
    """
    if not path.exists():
        raise SynonymTableError(path, "File not found")

    yaml = YAML(typ="safe")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.load(f)
    if not data:
        raise SynonymTableError(path, "Empty file")

    tables: dict[str, Mapping[str, str]] = {}
    for name, canonical in _TABLE_TARGETS.items():
        raw = {str(k).strip().lower(): str(v) for k, v in (data.get(name) or {}).items()}
        bad = sorted(k for k, v in raw.items() if v not in canonical)
        if bad:
            raise SynonymTableError(path, f"{name} maps to unknown values: {', '.join(bad)}")
        tables[name] = MappingProxyType(raw)

    return SynonymTables(
        version=int(data.get("version", 0)),
        node_status=tables["node_status"],
        node_category=tables["node_category"],
        edge_status=tables["edge_status"],
        edge_category=tables["edge_category"],
        node_removal=frozenset(str(v).lower() for v in data.get("node_removal") or []),
        edge_removal=frozenset(str(v).lower() for v in data.get("edge_removal") or []),
    )


SYNONYMS = load_synonym_tables()

NODE_STATUS_SYNONYMS = SYNONYMS.node_status
NODE_CATEGORY_SYNONYMS = SYNONYMS.node_category
EDGE_STATUS_SYNONYMS = SYNONYMS.edge_status
EDGE_CATEGORY_SYNONYMS = SYNONYMS.edge_category
NODE_REMOVAL_SYNONYMS = SYNONYMS.node_removal
EDGE_REMOVAL_SYNONYMS = SYNONYMS.edge_removal


def canonicalize(value: Any, canonical: tuple[str, ...], table: Mapping[str, str]) -> Any:
    """Map a single value onto its canonical form.

    Non-string values and misses are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    key = value.strip().lower()
    if key in canonical:
        return key
    return table.get(key, value)


def _normalize_ops(
    ops: Any,
    fields: dict[str, tuple[tuple[str, ...], Mapping[str, str]]],
) -> None:
    if not isinstance(ops, list):
        return
    for op in ops:
        if not isinstance(op, dict):
            continue
        for field_name, (canonical, table) in fields.items():
            if field_name in op:
                op[field_name] = canonicalize(op[field_name], canonical, table)


def normalize_synonyms(draft: dict[str, Any], tables: SynonymTables = SYNONYMS) -> dict[str, Any]:
    """Rewrite every category/status value of a draft to canonical form.

    Args:
        draft: Parsed draft delta. Not modified.
        tables: Synonym tables to use.

    Returns:
        A normalized copy of the draft.
    """
    result = copy.deepcopy(draft)

    node_fields = {
        "category": (NODE_CATEGORY_VALUES, tables.node_category),
        "status": (NODE_STATUS_VALUES, tables.node_status),
    }
    edge_fields = {
        "category": (EDGE_CATEGORY_VALUES, tables.edge_category),
        "status": (EDGE_STATUS_VALUES, tables.edge_status),
    }

    for key in ("nodes_to_add", "nodes_to_update"):
        _normalize_ops(result.get(key), node_fields)
    for key in ("edges_to_add", "edges_to_update", "edges_to_remove"):
        _normalize_ops(result.get(key), edge_fields)

    split = result.get("split_family")
    if isinstance(split, dict) and "new_node_type" in split:
        split["new_node_type"] = canonicalize(
            split["new_node_type"], NODE_CATEGORY_VALUES, tables.node_category
        )

    return result
