"""Graph-consistency resolution for validated deltas.

A delta can be well-formed and still break the map: two new places with
the same name, children stranded by a split, a route between places that
cannot carry one, or a parent that is not a larger kind of place than its
child. The resolver projects the delta onto a copy of the map, finds these
problems, and rewrites the delta so that committing it keeps the map
consistent.

Deterministic heuristics are authoritative. The optional backend is only
asked to break ties between fixes that are already known to be valid, to
name duplicates, and to classify split orphans; any backend failure falls
back to the deterministic default.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from cartographer.commit import apply_delta
from cartographer.delta.models import EdgeAdd, EdgeRemove, MapDelta, NodeAdd, NodeUpdate
from cartographer.delta.parser import extract_json_text
from cartographer.errors import BackendFailure, ConsistencyViolation
from cartographer.graph.errors import GraphIntegrityError
from cartographer.graph.graph import is_root_reference
from cartographer.graph.hierarchy import (
    closest_allowed_ancestor,
    find_hierarchy_conflicts,
    is_edge_connection_allowed,
    lowest_category_above,
    nearest_connection,
    suggest_downgrade,
    suggest_upgrade,
)
from cartographer.graph.models import ROOT_NODE_ID, EdgeCategory, NodeCategory
from cartographer.observability.logging import get_logger
from cartographer.prompts import get_loader

if TYPE_CHECKING:
    from cartographer.graph.graph import MapGraph
    from cartographer.graph.models import MapNode
    from cartographer.prompts import PromptLoader
    from cartographer.providers.base import Backend

log = get_logger(__name__)

ResolutionSource = Literal["heuristic", "model"]

_CONNECTOR_SUFFIX = "Approach"
_ORPHAN_SIDES = frozenset({"original", "new"})
_QUOTES = "'\"`"


@dataclass(frozen=True)
class ResolutionRecord:
    """One fix applied by the resolver.

    Attributes:
        kind: Problem class ("duplicate_name", "split_orphan", "edge",
            "hierarchy").
        subject: Name of the node the fix is about.
        action: What was done.
        source: Whether a heuristic or the backend decided.
    """

    kind: str
    subject: str
    action: str
    source: ResolutionSource = "heuristic"


@dataclass
class ResolutionResult:
    """Rewritten delta plus an account of every fix."""

    delta: MapDelta
    records: list[ResolutionRecord] = field(default_factory=list)
    violations: list[ConsistencyViolation] = field(default_factory=list)


@dataclass
class _Projection:
    """A delta applied to a copy of the map."""

    graph: MapGraph
    created_nodes: set[str]
    created_edges: set[str]

    def ref(self, node_id: str) -> str:
        """Soft reference usable inside the delta.

        Ids of nodes created by the projection are throwaway, so those are
        referenced by name.
        """
        if node_id == ROOT_NODE_ID:
            return ROOT_NODE_ID
        if node_id in self.created_nodes:
            node = self.graph.get_node(node_id)
            return node.name if node is not None else node_id
        return node_id

    def key(self, node_id: str) -> str:
        """Identity of a node that is stable across projections."""
        if node_id in self.created_nodes:
            node = self.graph.get_node(node_id)
            if node is not None:
                return f"new:{node.name.strip().lower()}"
        return node_id

    def conflict_keys(self) -> set[tuple[str, str]]:
        return {
            (self.key(child), self.key(parent))
            for child, parent in find_hierarchy_conflicts(self.graph.nodes_by_id())
        }


@dataclass
class _Candidate:
    name: str
    description: str
    delta: MapDelta


def project(graph: MapGraph, delta: MapDelta) -> _Projection:
    """Apply *delta* to a copy of *graph*."""
    projected = graph.copy()
    applied = apply_delta(projected, delta)
    return _Projection(
        graph=projected,
        created_nodes={n.id for n in applied.created_nodes},
        created_edges={e.id for e in applied.created_edges},
    )


def with_node_fields(
    delta: MapDelta,
    proj: _Projection,
    node: MapNode,
    *,
    category: NodeCategory | None = None,
    parent_id: str | None = None,
) -> MapDelta:
    """Return *delta* changed so that *node* commits with the given fields.

    New nodes get their NodeAdd rewritten; existing nodes get an appended
    NodeUpdate addressed by id.
    """
    fields: dict[str, object] = {}
    if category is not None:
        fields["category"] = category
    if parent_id is not None:
        fields["parent"] = proj.ref(parent_id)

    if node.id in proj.created_nodes:
        needle = node.name.strip().lower()
        adds = list(delta.nodes_to_add)
        for index, op in enumerate(adds):
            if op.name.strip().lower() == needle:
                adds[index] = op.model_copy(update=fields)
                return delta.model_copy(update={"nodes_to_add": adds})
        # Renamed within the same delta; address it by its final name.
        update = NodeUpdate(name=node.name, **fields)
    else:
        update = NodeUpdate(name=node.id, **fields)
    return delta.model_copy(update={"nodes_to_update": [*delta.nodes_to_update, update]})


def match_option(response: str, options: list[str]) -> int | None:
    """Match a backend answer to one of *options*.

    Accepts a 1-based number or an option name, case-insensitively.

    Returns:
        The 0-based index of the chosen option, or None.
    """
    text = response.strip().splitlines()[0] if response.strip() else ""
    text = text.strip().strip(_QUOTES).strip().rstrip(".").lower()
    if not text:
        return None
    number = re.match(r"^(?:option\s*)?(\d+)\b", text)
    if number:
        index = int(number.group(1)) - 1
        return index if 0 <= index < len(options) else None
    lowered = [o.lower() for o in options]
    if text in lowered:
        return lowered.index(text)
    for index, option in enumerate(lowered):
        if re.search(rf"\b{re.escape(option)}\b", text):
            return index
    return None


def parse_orphan_choices(text: str) -> dict[str, str]:
    """Read ``{child name: "original" | "new"}`` from a backend answer.

    Falls back to ``name: choice`` lines when the answer is not JSON.
    Entries with any other choice are dropped.
    """
    choices: dict[str, str] = {}
    try:
        data = json.loads(extract_json_text(text))
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        pairs = [(str(k), v) for k, v in data.items()]
    else:
        pairs = []
        for line in text.splitlines():
            name, sep, value = line.strip().lstrip("-* ").rpartition(":")
            if sep:
                pairs.append((name, value))

    for name, value in pairs:
        if not isinstance(value, str):
            continue
        side = value.strip().strip(_QUOTES).strip().lower()
        if side in _ORPHAN_SIDES:
            choices[name.strip().strip(_QUOTES).strip().lower()] = side
    return choices


class ConsistencyResolver:
    """Rewrites deltas so that committing them keeps the map consistent.

    Attributes:
        backend: Optional secondary backend for tie-breaking and naming.
    """

    def __init__(self, backend: Backend | None = None, *, loader: PromptLoader | None = None) -> None:
        self.backend = backend
        self._loader = loader

    @property
    def loader(self) -> PromptLoader:
        if self._loader is None:
            self._loader = get_loader()
        return self._loader

    async def _ask(self, template_name: str, **context: object) -> str | None:
        if self.backend is None:
            return None
        system, user = self.loader.load(template_name).render(**context)
        try:
            return await self.backend.complete(system, user)
        except BackendFailure as e:
            log.warning("resolver_backend_failed", template=template_name, error=str(e))
            return None

    async def resolve(self, graph: MapGraph, delta: MapDelta, *, scene: str = "") -> ResolutionResult:
        """Resolve every consistency problem the delta would introduce.

        Args:
            graph: The committed map. Never modified.
            delta: A validated, repaired delta.
            scene: Narrative context passed to the backend.

        Returns:
            The rewritten delta and a record of each fix.
        """
        result = ResolutionResult(delta=delta)
        result.delta = await self._resolve_duplicates(graph, result.delta, result)
        result.delta = await self._resolve_split(graph, result.delta, result)
        result.delta = self._resolve_edges(graph, result.delta, result)
        result.delta = await self._resolve_hierarchy(graph, result.delta, result, scene)
        return result

    def _record(self, result: ResolutionResult, record: ResolutionRecord) -> None:
        log.info(
            "consistency_fix_applied",
            kind=record.kind,
            subject=record.subject,
            action=record.action,
            source=record.source,
        )
        result.records.append(record)

    # -------------------------------------------------------------------------
    # Duplicate names
    # -------------------------------------------------------------------------

    def _fallback_name(self, graph: MapGraph, op: NodeAdd, taken: set[str]) -> str:
        if not is_root_reference(op.parent):
            parent = graph.find_node(op.parent)
            parent_name = parent.name if parent is not None else op.parent
            candidate = f"{op.name} ({parent_name})"
            if candidate.lower() not in taken:
                return candidate
        number = 2
        while f"{op.name} {number}".lower() in taken:
            number += 1
        return f"{op.name} {number}"

    async def _rename(self, graph: MapGraph, op: NodeAdd, taken: set[str]) -> tuple[str, ResolutionSource]:
        parent = graph.find_node(op.parent)
        answer = await self._ask(
            "rename_duplicate",
            name=op.name,
            category=op.category,
            parent_name=parent.name if parent is not None else op.parent,
            aliases=", ".join(op.aliases) or "None",
            description=op.description,
        )
        if answer:
            lines = answer.strip().splitlines()
            cleaned = lines[0].strip().strip(_QUOTES).strip() if lines else ""
            if cleaned and cleaned.lower() not in taken:
                return cleaned, "model"
            log.debug("rename_answer_rejected", name=op.name, answer=cleaned)
        return self._fallback_name(graph, op, taken), "heuristic"

    async def _resolve_duplicates(
        self,
        graph: MapGraph,
        delta: MapDelta,
        result: ResolutionResult,
    ) -> MapDelta:
        taken = {n.name.lower() for n in graph.nodes}
        taken.update(op.name.strip().lower() for op in delta.nodes_to_add)
        seen: set[str] = set()
        adds: list[NodeAdd] = []
        changed = False
        for op in delta.nodes_to_add:
            key = op.name.strip().lower()
            if key not in seen:
                seen.add(key)
                adds.append(op)
                continue
            new_name, source = await self._rename(graph, op, taken)
            taken.add(new_name.lower())
            seen.add(new_name.lower())
            adds.append(op.model_copy(update={"name": new_name}))
            changed = True
            self._record(result, ResolutionRecord("duplicate_name", op.name, f"renamed to '{new_name}'", source))
        if not changed:
            return delta
        return delta.model_copy(update={"nodes_to_add": adds})

    # -------------------------------------------------------------------------
    # Split family
    # -------------------------------------------------------------------------

    async def _classify_orphans(
        self,
        original: MapNode,
        new: MapNode,
        orphans: list[MapNode],
    ) -> tuple[dict[str, str], ResolutionSource]:
        answer = await self._ask(
            "classify_orphans",
            original_name=original.name,
            new_name=new.name,
            new_category=new.category,
            orphans="\n".join(f"- {o.name} ({o.category}): {o.description}" for o in orphans),
        )
        if not answer:
            return {}, "heuristic"
        choices = parse_orphan_choices(answer)
        return choices, "model" if choices else "heuristic"

    async def _resolve_split(
        self,
        graph: MapGraph,
        delta: MapDelta,
        result: ResolutionResult,
    ) -> MapDelta:
        split = delta.split_family
        if split is None:
            return delta

        proj = project(graph, delta)
        original = proj.graph.find_node(split.original_node_id)
        new = proj.graph.find_node(split.new_node_id)
        if original is None or new is None:
            log.warning(
                "split_family_node_missing",
                original=split.original_node_id,
                new=split.new_node_id,
            )
            return delta

        excluded = {new.id}
        if split.new_connector_node_id:
            connector = proj.graph.find_node(split.new_connector_node_id)
            if connector is not None:
                excluded.add(connector.id)
        children = [c for c in proj.graph.children_of(original.id) if c.id not in excluded]
        under_new = proj.graph.children_of(new.id)

        def lookup(ref: str, pool: list[MapNode]) -> MapNode | None:
            return next((c for c in pool if c.id == ref or c.matches_name(ref)), None)

        listed: set[str] = set()
        for ref in split.original_children:
            child = lookup(ref, children)
            if child is None:
                log.warning("split_child_unknown", ref=ref, side="original")
                continue
            listed.add(child.id)

        move: list[MapNode] = []
        for ref in split.new_children:
            child = lookup(ref, children)
            if child is None:
                if lookup(ref, under_new) is None:
                    log.warning("split_child_unknown", ref=ref, side="new")
                continue
            listed.add(child.id)
            move.append(child)

        orphans = [c for c in children if c.id not in listed]
        if orphans:
            choices, source = await self._classify_orphans(original, new, orphans)
            for orphan in orphans:
                side = choices.get(orphan.name.lower(), "original")
                if side == "new":
                    move.append(orphan)
                    action = f"moved to '{new.name}'"
                else:
                    action = f"kept in '{original.name}'"
                self._record(result, ResolutionRecord("split_orphan", orphan.name, action, source))

        for child in move:
            delta = with_node_fields(delta, proj, child, parent_id=new.id)
        return delta

    # -------------------------------------------------------------------------
    # Route endpoints
    # -------------------------------------------------------------------------

    def _resolve_edges(
        self,
        graph: MapGraph,
        delta: MapDelta,
        result: ResolutionResult,
    ) -> MapDelta:
        """Move each new route onto features allowed to carry it, or drop it.

        Routes added later by feature promotion join a connector to its
        neighbours and are not checked.
        """
        if not delta.edges_to_add:
            return delta
        proj = project(graph, delta)
        nodes = proj.graph.nodes_by_id()
        edge_adds: list[EdgeAdd] = []
        changed = False
        for op in delta.edges_to_add:
            source = proj.graph.find_node(op.source)
            target = proj.graph.find_node(op.target)
            if source is None or target is None:
                edge_adds.append(op)
                continue
            if is_edge_connection_allowed(source, target, op.category, nodes):
                edge_adds.append(op)
                continue
            changed = True
            subject = f"{source.name} -> {target.name}"
            pair = nearest_connection(source, target, op.category, nodes)
            if pair is None:
                self._record(result, ResolutionRecord("edge", subject, "dropped: no features can carry it"))
                continue
            new_source, new_target = pair
            edge_adds.append(
                op.model_copy(update={"source": proj.ref(new_source.id), "target": proj.ref(new_target.id)})
            )
            action = f"rerouted between '{new_source.name}' and '{new_target.name}'"
            self._record(result, ResolutionRecord("edge", subject, action))
        if not changed:
            return delta
        return delta.model_copy(update={"edges_to_add": edge_adds})

    # -------------------------------------------------------------------------
    # Hierarchy conflicts
    # -------------------------------------------------------------------------

    def _promote_feature(
        self,
        delta: MapDelta,
        proj: _Projection,
        feature: MapNode,
        category: NodeCategory,
    ) -> MapDelta:
        """Promote *feature* and move its routes onto a connector feature."""
        delta = with_node_fields(delta, proj, feature, category=category)
        feature_ref = proj.ref(feature.id)
        connector_name = f"{feature.name} {_CONNECTOR_SUFFIX}"
        existing = proj.graph.find_node(connector_name)

        adds = list(delta.nodes_to_add)
        if existing is None:
            adds.append(
                NodeAdd(
                    name=connector_name,
                    description=f"The way into {feature.name}.",
                    aliases=[],
                    category=NodeCategory.FEATURE,
                    status=feature.status,
                    parent=feature_ref,
                )
            )
            connector_ref = connector_name
            connector_id = None
        else:
            connector_ref = proj.ref(existing.id)
            connector_id = existing.id

        def points_at_feature(ref: str) -> bool:
            node = proj.graph.find_node(ref)
            return node is not None and node.id == feature.id

        edge_adds: list[EdgeAdd] = []
        for op in delta.edges_to_add:
            if points_at_feature(op.source):
                op = op.model_copy(update={"source": connector_ref})
            elif points_at_feature(op.target):
                op = op.model_copy(update={"target": connector_ref})
            edge_adds.append(op)

        edge_removes = list(delta.edges_to_remove)
        for edge in proj.graph.edges_touching(feature.id):
            other = edge.target if edge.source == feature.id else edge.source
            if edge.id in proj.created_edges or other == connector_id:
                continue
            edge_removes.append(EdgeRemove(edge_id=edge.id))
            edge_adds.append(
                EdgeAdd(
                    source=connector_ref,
                    target=proj.ref(other),
                    category=edge.category,
                    status=edge.status,
                    description=edge.description or None,
                    travel_time=edge.travel_time,
                )
            )

        for child in proj.graph.children_of(feature.id):
            if child.id == connector_id:
                continue
            edge_adds.append(
                EdgeAdd(
                    source=connector_ref,
                    target=proj.ref(child.id),
                    category=EdgeCategory.PATH,
                    description=f"Path between {connector_name} and {child.name}",
                )
            )

        return delta.model_copy(
            update={"nodes_to_add": adds, "edges_to_add": edge_adds, "edges_to_remove": edge_removes}
        )

    def _candidates(
        self,
        delta: MapDelta,
        proj: _Projection,
        child: MapNode,
        parent: MapNode,
    ) -> list[_Candidate]:
        nodes = proj.graph.nodes_by_id()
        candidates: list[_Candidate] = []

        if parent.category is NodeCategory.FEATURE:
            promoted = lowest_category_above(parent, nodes)
            if promoted is not None:
                candidates.append(
                    _Candidate(
                        "upgrade_parent",
                        f"Turn '{parent.name}' into a {promoted} reached through '{parent.name} {_CONNECTOR_SUFFIX}'",
                        self._promote_feature(delta, proj, parent, promoted),
                    )
                )
            candidates.append(
                _Candidate(
                    "convert_child",
                    f"Make '{child.name}' a sibling of '{parent.name}'",
                    with_node_fields(delta, proj, child, parent_id=parent.parent_id),
                )
            )
            return candidates

        downgraded = suggest_downgrade(child, parent.category, nodes.values())
        if downgraded is not None:
            candidates.append(
                _Candidate(
                    "downgrade_child",
                    f"Change '{child.name}' from {child.category} to {downgraded}",
                    with_node_fields(delta, proj, child, category=downgraded),
                )
            )
        ancestor_id = closest_allowed_ancestor(parent.parent_id, child.category, nodes)
        ancestor_name = nodes[ancestor_id].name if ancestor_id in nodes else ROOT_NODE_ID
        candidates.append(
            _Candidate(
                "reparent_child",
                f"Move '{child.name}' under '{ancestor_name}'",
                with_node_fields(delta, proj, child, parent_id=ancestor_id),
            )
        )
        upgraded = suggest_upgrade(parent, nodes)
        if upgraded is not None:
            candidates.append(
                _Candidate(
                    "upgrade_parent",
                    f"Change '{parent.name}' from {parent.category} to {upgraded}",
                    with_node_fields(delta, proj, parent, category=upgraded),
                )
            )
        return candidates

    def _is_valid(
        self,
        graph: MapGraph,
        candidate: _Candidate,
        pair: tuple[str, str],
        before: set[tuple[str, str]],
    ) -> bool:
        """True if the fix clears *pair* without creating any new conflict."""
        try:
            after = project(graph, candidate.delta).conflict_keys()
        except GraphIntegrityError as e:
            log.debug("candidate_projection_failed", candidate=candidate.name, error=str(e))
            return False
        return pair not in after and after <= before

    async def _choose(
        self,
        valid: list[_Candidate],
        child: MapNode,
        parent: MapNode,
        scene: str,
    ) -> tuple[_Candidate, ResolutionSource]:
        options = "\n".join(f"{i}. {c.name}: {c.description}" for i, c in enumerate(valid, start=1))
        answer = await self._ask(
            "choose_resolution",
            scene=scene or "(none)",
            parent_name=parent.name,
            parent_category=parent.category,
            parent_description=parent.description,
            child_name=child.name,
            child_category=child.category,
            child_description=child.description,
            options=options,
        )
        if answer is not None:
            index = match_option(answer, [c.name for c in valid])
            if index is not None:
                return valid[index], "model"
            log.warning("resolution_choice_unmatched", answer=answer[:80])
        return valid[0], "heuristic"

    def _fallback_to_root(
        self,
        delta: MapDelta,
        proj: _Projection,
        child: MapNode,
        parent: MapNode,
        result: ResolutionResult,
        detail: str,
    ) -> MapDelta:
        violation = ConsistencyViolation(child=child.name, parent=parent.name, detail=detail)
        log.warning("hierarchy_conflict_unresolved", child=child.name, parent=parent.name, detail=detail)
        result.violations.append(violation)
        self._record(result, ResolutionRecord("hierarchy", child.name, "moved to root"))
        return with_node_fields(delta, proj, child, parent_id=ROOT_NODE_ID)

    async def _resolve_hierarchy(
        self,
        graph: MapGraph,
        delta: MapDelta,
        result: ResolutionResult,
        scene: str,
    ) -> MapDelta:
        attempted: set[str] = set()
        max_passes = 2 * (len(graph.nodes) + len(delta.nodes_to_add)) + 2

        for _ in range(max_passes):
            proj = project(graph, delta)
            nodes = proj.graph.nodes_by_id()
            conflicts = find_hierarchy_conflicts(nodes)
            if not conflicts:
                return delta

            child_id, parent_id = conflicts[0]
            child, parent = nodes[child_id], nodes[parent_id]
            child_key = proj.key(child_id)
            if child_key in attempted:
                delta = self._fallback_to_root(
                    delta, proj, child, parent, result, "conflict persisted after a fix"
                )
                continue
            attempted.add(child_key)

            pair = (child_key, proj.key(parent_id))
            before = proj.conflict_keys()
            candidates = self._candidates(delta, proj, child, parent)
            valid = [c for c in candidates if self._is_valid(graph, c, pair, before)]
            log.debug(
                "hierarchy_conflict_found",
                child=child.name,
                parent=parent.name,
                candidates=[c.name for c in candidates],
                valid=[c.name for c in valid],
            )

            if not valid:
                delta = self._fallback_to_root(delta, proj, child, parent, result, "no valid fix")
                continue
            if len(valid) == 1:
                chosen, source = valid[0], "heuristic"
            else:
                chosen, source = await self._choose(valid, child, parent, scene)
            self._record(result, ResolutionRecord("hierarchy", child.name, chosen.name, source))
            delta = chosen.delta

        # Pass budget spent: force every remaining offender to the root.
        proj = project(graph, delta)
        nodes = proj.graph.nodes_by_id()
        for child_id, parent_id in find_hierarchy_conflicts(nodes):
            delta = self._fallback_to_root(
                delta, proj, nodes[child_id], nodes[parent_id], result, "unresolved after all passes"
            )
        return delta
