"""Ingestion chain: backend text to a validated MapDelta.

The chain is parse → normalize → validate → repair → build. Normalization
must run before validation (validation rejects non-canonical values), and
repair only runs on drafts that validated cleanly. Each step is a pure
function; diagnostics travel alongside in the returned IngestionResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from cartographer.delta.models import MapDelta
from cartographer.delta.parser import parse_delta_text
from cartographer.delta.repair import repair_draft
from cartographer.delta.synonyms import normalize_synonyms
from cartographer.delta.validation import validate_draft
from cartographer.errors import (
    DeltaErrorCategory,
    DeltaValidationError,
    ParseFailure,
    StructuralValidationFailure,
    ValueValidationFailure,
    format_error_lines,
)
from cartographer.observability.logging import get_logger

log = get_logger(__name__)


@dataclass
class IngestionResult:
    """Outcome of running backend text through the ingestion chain.

    Attributes:
        delta: The validated delta, or None if ingestion failed.
        errors: Diagnostics explaining the failure (empty on success).
        draft: Last draft produced before failure or building.
        parse_failed: True when no structure could be recovered at all.
    """

    delta: MapDelta | None = None
    errors: list[DeltaValidationError] = field(default_factory=list)
    draft: dict[str, Any] | None = None
    parse_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.delta is not None

    def to_exception(self) -> ParseFailure | StructuralValidationFailure | ValueValidationFailure | None:
        """Return the taxonomy error matching this failure, if any."""
        if self.ok:
            return None
        if self.parse_failed:
            reason = self.errors[0].issue if self.errors else "no structure"
            return ParseFailure(reason)
        if any(e.category is DeltaErrorCategory.STRUCTURAL for e in self.errors):
            return StructuralValidationFailure(self.errors)
        return ValueValidationFailure(self.errors)

    def error_summary(self) -> str:
        """Render the diagnostics for a retry prompt."""
        return "\n".join(format_error_lines(self.errors))


def _pydantic_errors(error: ValidationError) -> list[DeltaValidationError]:
    errors: list[DeltaValidationError] = []
    for e in error.errors():
        loc = ".".join(str(part) for part in e["loc"]) or "(root)"
        errors.append(DeltaValidationError(field_path=loc, issue=e["msg"]))
    return errors


def build_delta(draft: dict[str, Any]) -> IngestionResult:
    """Validate, repair and build a delta from an already-parsed draft.

    Args:
        draft: Parsed (not yet normalized) draft delta.

    Returns:
        IngestionResult with either a delta or diagnostics.
    """
    normalized = normalize_synonyms(draft)
    valid, errors = validate_draft(normalized)
    if not valid:
        log.debug("draft_validation_failed", errors=[e.summary() for e in errors])
        return IngestionResult(errors=errors, draft=normalized)

    repaired = repair_draft(normalized)
    try:
        delta = MapDelta.from_draft(repaired)
    except ValidationError as e:
        # Validator and models disagree; report rather than crash the turn.
        errors = _pydantic_errors(e)
        log.warning("delta_build_failed", errors=[err.summary() for err in errors])
        return IngestionResult(errors=errors, draft=repaired)

    return IngestionResult(delta=delta, draft=repaired)


def run_ingestion(text: str) -> IngestionResult:
    """Run raw backend text through the full ingestion chain.

    Never raises for bad input; failures are reported in the result.
    """
    try:
        draft = parse_delta_text(text)
    except ParseFailure as e:
        log.debug("parse_failed", reason=e.reason)
        return IngestionResult(
            errors=[DeltaValidationError(field_path="(response)", issue=e.reason)],
            parse_failed=True,
        )
    return build_delta(draft)
