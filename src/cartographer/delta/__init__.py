"""Delta package - turning backend text into validated map operations.

Leaves first: parser, synonym normalizer, validator, heuristic repair,
and the ingestion chain that strings them together.
"""

from cartographer.delta.models import (
    EdgeAdd,
    EdgeRemove,
    EdgeUpdate,
    MapDelta,
    NodeAdd,
    NodeRemove,
    NodeUpdate,
    SplitFamily,
)
from cartographer.delta.parser import parse_delta_text
from cartographer.delta.pipeline import IngestionResult, build_delta, run_ingestion
from cartographer.delta.repair import repair_draft
from cartographer.delta.synonyms import normalize_synonyms
from cartographer.delta.validation import validate_draft

__all__ = [
    "EdgeAdd",
    "EdgeRemove",
    "EdgeUpdate",
    "IngestionResult",
    "MapDelta",
    "NodeAdd",
    "NodeRemove",
    "NodeUpdate",
    "SplitFamily",
    "build_delta",
    "normalize_synonyms",
    "parse_delta_text",
    "repair_draft",
    "run_ingestion",
    "validate_draft",
]
