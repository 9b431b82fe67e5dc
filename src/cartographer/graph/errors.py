"""Map graph integrity errors with LLM-actionable feedback.

Raised when a graph operation would break referential integrity: a missing
node, a duplicate id, a dangling edge endpoint, or an attempt to touch the
root sentinel. Each error can render itself as feedback for a retry prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches

_MAX_LISTED = 10


def _list_block(title: str, values: list[str]) -> list[str]:
    lines = [title]
    for v in sorted(values)[:_MAX_LISTED]:
        lines.append(f"  - `{v}`")
    if len(values) > _MAX_LISTED:
        lines.append(f"  - ... and {len(values) - _MAX_LISTED} more")
    return lines


class GraphIntegrityError(Exception):
    """Base class for map graph integrity violations.

    Subclasses must implement to_llm_feedback() to provide actionable
    error messages for retry prompts.
    """

    def to_llm_feedback(self) -> str:
        """Format error as actionable feedback for a retry prompt."""
        raise NotImplementedError


@dataclass
class NodeNotFoundError(GraphIntegrityError):
    """Raised when referencing a node that does not exist.

    Attributes:
        node_ref: The id, name or alias that failed to resolve.
        available: Names of nodes that could be used instead.
        context: Description of where the reference occurred.
    """

    node_ref: str
    available: list[str] = field(default_factory=list)
    context: str = ""

    def __post_init__(self) -> None:
        msg = f"Node '{self.node_ref}' not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)

    def to_llm_feedback(self) -> str:
        lines = ["## Reference Error: Node Not Found", "", f"**You referenced**: `{self.node_ref}`"]
        if self.context:
            lines.append(f"**Context**: {self.context}")
        suggestions = get_close_matches(self.node_ref, self.available, n=3, cutoff=0.6)
        if suggestions:
            lines.append("")
            lines.append("**Did you mean one of these?**")
            lines.extend(f"  - `{s}`" for s in suggestions)
        if self.available:
            lines.append("")
            lines.extend(_list_block("**Known places**:", self.available))
        return "\n".join(lines)


@dataclass
class NodeExistsError(GraphIntegrityError):
    """Raised when creating a node whose id is already taken.

    Attributes:
        node_id: The id that already exists.
    """

    node_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Node '{self.node_id}' already exists")

    def to_llm_feedback(self) -> str:
        return f"""## Error: Node Already Exists

**You tried to create**: `{self.node_id}`

**Problem**: A node with this ID already exists in the map.

**Solutions**:
1. Use nodes_to_update to change the existing node
2. Pick a distinct name if this is meant to be a new place
"""


@dataclass
class RootMutationError(GraphIntegrityError):
    """Raised when an operation targets the reserved root node.

    Attributes:
        operation: The operation that was attempted.
    """

    operation: str

    def __post_init__(self) -> None:
        super().__init__(f"The root node cannot be the target of {self.operation}")

    def to_llm_feedback(self) -> str:
        return (
            "## Error: Root Node Is Reserved\n\n"
            f"**Operation**: {self.operation}\n\n"
            "**Problem**: 'Universe' is the implicit root of the map and cannot be "
            "added, updated, removed or connected.\n\n"
            "**Solution**: Use 'Universe' only as a parent reference for top-level regions."
        )


@dataclass
class EdgeNotFoundError(GraphIntegrityError):
    """Raised when referencing an edge that does not exist.

    Attributes:
        edge_ref: Edge id or endpoint description that failed to resolve.
    """

    edge_ref: str

    def __post_init__(self) -> None:
        super().__init__(f"Edge '{self.edge_ref}' not found")

    def to_llm_feedback(self) -> str:
        return (
            "## Reference Error: Edge Not Found\n\n"
            f"**You referenced**: `{self.edge_ref}`\n\n"
            "**Solution**: Reference edges by their exact id, or by the names of "
            "both places they connect."
        )


@dataclass
class EdgeEndpointError(GraphIntegrityError):
    """Raised when an edge references non-existent endpoints.

    Attributes:
        edge_category: Category of the edge being created.
        source: Source node id.
        target: Target node id.
        missing: Which endpoint is missing ("source", "target", or "both").
        available: Valid node ids.
    """

    edge_category: str
    source: str
    target: str
    missing: str
    available: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.missing == "both":
            msg = f"Edge '{self.edge_category}' endpoints not found: '{self.source}' and '{self.target}'"
        elif self.missing == "source":
            msg = f"Edge '{self.edge_category}' source not found: '{self.source}'"
        else:
            msg = f"Edge '{self.edge_category}' target not found: '{self.target}'"
        super().__init__(msg)

    def to_llm_feedback(self) -> str:
        lines = [
            "## Error: Edge Endpoint Not Found",
            "",
            f"**Edge category**: `{self.edge_category}`",
            f"**Source**: `{self.source}`",
            f"**Target**: `{self.target}`",
            "",
        ]
        if self.missing in ("source", "both"):
            lines.append(f"**Problem**: Source `{self.source}` does not exist.")
        if self.missing in ("target", "both"):
            lines.append(f"**Problem**: Target `{self.target}` does not exist.")
        if self.available:
            lines.append("")
            lines.extend(_list_block("**Valid node IDs**:", self.available))
        lines.extend(["", "**Solution**: Connect places that exist, or add them first."])
        return "\n".join(lines)


@dataclass
class GraphCorruptionError(Exception):
    """Raised when post-commit invariant checks detect a broken map.

    Unlike GraphIntegrityError, this indicates a code bug rather than
    invalid backend output. The commit is abandoned and the previous map
    stays in place.

    Attributes:
        violations: Invariant violations found.
    """

    violations: list[str]

    def __post_init__(self) -> None:
        super().__init__(f"Map corruption detected: {len(self.violations)} violation(s)")

    def __str__(self) -> str:
        lines = ["Map corruption detected:"]
        for v in self.violations[:5]:
            lines.append(f"  - {v}")
        if len(self.violations) > 5:
            lines.append(f"  - ... and {len(self.violations) - 5} more")
        return "\n".join(lines)
