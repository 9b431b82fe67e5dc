"""Error taxonomy for map-delta ingestion.

Every failure the pipeline can meet while turning backend text into a
committed map change is one of:

- ParseFailure: no recoverable JSON structure in the text
- StructuralValidationFailure: a required field is missing or mistyped
- ValueValidationFailure: a category/status is outside the canonical set
  even after synonym normalization
- ConsistencyViolation: a well-formed delta would break a graph invariant
- BackendFailure: the model call itself failed (network, timeout, transport)

All of them render actionable feedback for the next retry prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum, auto

_MAX_ERRORS_DISPLAY = 8
_MAX_AVAILABLE_DISPLAY = 6
_MAX_SIMILARITY_SUGGESTIONS = 3

# A near-certain match warrants a single prescriptive suggestion; a moderate
# one gets a short ranked list; anything lower just lists the options.
_HIGH_CONFIDENCE_THRESHOLD = 0.85
_MEDIUM_CONFIDENCE_THRESHOLD = 0.6


class DeltaErrorCategory(Enum):
    """Categories of delta validation errors.

    - STRUCTURAL: missing or mistyped field
    - VALUE: enumeration value outside the canonical set
    """

    STRUCTURAL = auto()
    VALUE = auto()


@dataclass
class DeltaValidationError:
    """One diagnostic produced by a validation pass.

    Attributes:
        field_path: Location of the problem (e.g., "nodes_to_add.0.category").
        issue: Description of what's wrong.
        provided: The offending value, rendered as text.
        available: Valid values that could be used instead.
        category: Whether the problem is structural or a bad value.
    """

    field_path: str
    issue: str
    provided: str = ""
    available: list[str] = field(default_factory=list)
    category: DeltaErrorCategory = DeltaErrorCategory.STRUCTURAL

    def summary(self) -> str:
        """One-line rendering used in retry prompts and logs."""
        text = f"{self.field_path}: {self.issue}"
        if self.provided:
            text += f" (got '{self.provided}')"
        return text


def _sort_by_similarity(provided: str, available: list[str]) -> list[tuple[str, float]]:
    matcher = SequenceMatcher(a=provided.lower())
    scored = []
    for candidate in available:
        matcher.set_seq2(candidate.lower())
        scored.append((candidate, matcher.ratio()))
    return sorted(scored, key=lambda x: x[1], reverse=True)


def format_suggestion(provided: str, available: list[str]) -> str | None:
    """Suggest replacements for an invalid value, gated by similarity.

    Args:
        provided: The invalid value (may be empty).
        available: Valid values.

    Returns:
        A suggestion line, or None if there is nothing to suggest.
    """
    if not available:
        return None

    if provided:
        ranked = _sort_by_similarity(provided, available)
        best, score = ranked[0]
        if score >= _HIGH_CONFIDENCE_THRESHOLD:
            return f"Use '{best}' instead."
        if score >= _MEDIUM_CONFIDENCE_THRESHOLD:
            options = ", ".join(f"'{c}'" for c, _ in ranked[:_MAX_SIMILARITY_SUGGESTIONS])
            return f"Did you mean one of: {options}?"

    shown = available[:_MAX_AVAILABLE_DISPLAY]
    suffix = ", ..." if len(available) > _MAX_AVAILABLE_DISPLAY else ""
    return f"Allowed values: {', '.join(shown)}{suffix}"


def format_error_lines(errors: list[DeltaValidationError]) -> list[str]:
    """Render diagnostics as indented bullet lines with suggestions."""
    lines: list[str] = []
    for e in errors[:_MAX_ERRORS_DISPLAY]:
        lines.append(f"  - {e.summary()}")
        suggestion = format_suggestion(e.provided, e.available)
        if suggestion:
            lines.append(f"    {suggestion}")
    if len(errors) > _MAX_ERRORS_DISPLAY:
        lines.append(f"  ... and {len(errors) - _MAX_ERRORS_DISPLAY} more errors")
    return lines


class MapUpdateError(ValueError):
    """Base class for failures while ingesting a map delta."""

    def to_feedback(self) -> str:
        """Format for retry feedback."""
        return str(self)


class ParseFailure(MapUpdateError):
    """No JSON object or array could be recovered from the backend text."""

    def __init__(self, reason: str, text: str = "") -> None:
        self.reason = reason
        self.text = text
        super().__init__(f"Could not parse map update: {reason}")

    def to_feedback(self) -> str:
        return (
            f"Your response could not be parsed as JSON ({self.reason}). "
            "Respond with a single JSON object describing the map update."
        )


class _ValidationFailure(MapUpdateError):
    """Shared rendering for validation failures that carry diagnostics."""

    _headline = "Map update is invalid:"
    _footer = ""

    def __init__(self, errors: list[DeltaValidationError]) -> None:
        self.errors = errors
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self._headline, *format_error_lines(self.errors)]
        if self._footer:
            lines.append(self._footer)
        return "\n".join(lines)

    def to_feedback(self) -> str:
        return self._format_message()


class StructuralValidationFailure(_ValidationFailure):
    """A required field is missing, empty, or of the wrong type."""

    _headline = "Map update has missing or malformed fields:"
    _footer = "Include every required field with the correct type."


class ValueValidationFailure(_ValidationFailure):
    """A category or status value is not in the canonical vocabulary."""

    _headline = "Map update uses values outside the allowed vocabulary:"
    _footer = "Use only the listed category and status values."


@dataclass
class ConsistencyViolation(MapUpdateError):
    """A structurally valid delta would break a map invariant.

    Attributes:
        child: Name of the offending child node.
        parent: Name of the parent it cannot live under.
        detail: What invariant is broken.
    """

    child: str
    parent: str
    detail: str

    def __post_init__(self) -> None:
        super().__init__(f"'{self.child}' under '{self.parent}': {self.detail}")

    def to_feedback(self) -> str:
        return (
            f"Hierarchy problem: '{self.child}' cannot be placed under '{self.parent}' "
            f"({self.detail}). Parents must be a larger kind of place than their children."
        )


class BackendFailure(MapUpdateError):
    """The generative backend call failed before producing text.

    Attributes:
        backend: Name of the backend that failed.
        transient: True for rate limits, timeouts, and connection errors
            that deserve a longer wait before the next attempt.
    """

    def __init__(self, backend: str, message: str, *, transient: bool = False) -> None:
        self.backend = backend
        self.transient = transient
        super().__init__(f"[{backend}] {message}")

    def to_feedback(self) -> str:
        return "The previous request failed before a response was received. Please answer again."
