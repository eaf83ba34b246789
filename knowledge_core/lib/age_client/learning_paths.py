"""
Learning-path mixin: shortest path, related-concept neighborhood, and
deepest prerequisite chain.

Every operation here degrades instead of raising: a name that does not
resolve, a missing path, or any backend failure (including timeouts and
pool exhaustion) comes back as None / []. Failures are logged at ERROR.

Shortest path uses bidirectional breadth-first search instead of a
variable-length Cypher pattern. AGE has no shortestPath(), and
-[*1..N]- enumerates every path (O(b^d)); expanding both endpoints one
level at a time costs O(b^(d/2)) batched neighbor lookups, all on the one
connection checked out for the call.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from ...constants import (
    MAX_DEPTH,
    MIN_DEPTH,
    PATH_RELATIONSHIP_TYPES,
    PREREQUISITE_CHAIN_MAX_HOPS,
    SHORTEST_PATH_MAX_HOPS,
    clamp,
)
from ...models.retrieval import ConceptSummary, PathResult
from .agtype import parse_agtype_array, parse_agtype_scalar, unwrap

logger = logging.getLogger(__name__)

# Valid Cypher relationship type: uppercase letters, digits, underscores
_VALID_REL_TYPE_RE = re.compile(r'^[A-Z][A-Z0-9_]*$')


def _validate_rel_types(types: List[str]) -> None:
    """Validate relationship type names for safe Cypher interpolation."""
    for t in types:
        if not _VALID_REL_TYPE_RE.match(t):
            raise ValueError(f"Invalid relationship type name: {t!r}")


def concept_from_element(element: Any) -> Optional[ConceptSummary]:
    """
    Build a ConceptSummary from an array element.

    Elements are either projected maps ({id, name, type}) or whole
    vertices ({id, label, properties: {...}}).
    """
    if not isinstance(element, dict):
        return None
    props = element.get("properties") if isinstance(element.get("properties"), dict) else element
    concept_id = props.get("id")
    if concept_id is None:
        return None
    return ConceptSummary(
        id=concept_id,
        name=props.get("name") or "",
        type=props.get("type"),
    )


def concepts_from_array(raw: Any) -> List[ConceptSummary]:
    """Parse an agtype array column into concept summaries."""
    concepts = []
    for element in parse_agtype_array(raw).items:
        concept = concept_from_element(element)
        if concept is not None:
            concepts.append(concept)
    return concepts


def _scalar(row: Dict[str, Any], column: str) -> Any:
    return unwrap(parse_agtype_scalar(row.get(column)))


class LearningPathMixin:
    """Path queries over RELATED_TO / PREREQUISITE_OF edges."""

    def shortest_path(
        self,
        from_name: str,
        to_name: str,
        tenant_id: str
    ) -> Optional[PathResult]:
        """
        Find the shortest path between two named concepts.

        Names match case-insensitively. Edges of either path type are
        followed in either direction, for 1 to 10 hops.

        Args:
            from_name: Starting concept name
            to_name: Target concept name
            tenant_id: Tenant scope

        Returns:
            PathResult ordered from start to target, or None if either name
            does not resolve, both resolve to the same concept, or no path
            exists within the hop bound
        """
        try:
            with self.session(tenant_id) as session:
                start = self._resolve_concept(session, from_name)
                end = self._resolve_concept(session, to_name)
                if start is None or end is None:
                    logger.debug(
                        f"shortest_path: unresolved concept name(s) "
                        f"({from_name!r} -> {to_name!r}, tenant={tenant_id})"
                    )
                    return None
                if start.id == end.id:
                    return None

                node_ids = self._bidirectional_search(
                    session, start.id, end.id, SHORTEST_PATH_MAX_HOPS
                )
                if node_ids is None:
                    return None

                concepts = self._load_concepts(session, node_ids)
                return PathResult(concepts=concepts, steps=len(concepts) - 1)

        except Exception as e:
            logger.error(
                f"shortest_path failed ({from_name!r} -> {to_name!r}, "
                f"tenant={tenant_id}): {e}"
            )
            return None

    def collect_related(
        self,
        concept_name: str,
        depth: int,
        tenant_id: str
    ) -> List[ConceptSummary]:
        """
        Collect distinct concepts reachable over RELATED_TO edges.

        Args:
            concept_name: Concept name (case-insensitive)
            depth: Traversal depth, clamped to [1, 5]
            tenant_id: Tenant scope

        Returns:
            Distinct related concepts; order is whatever the backend's
            DISTINCT collection produces
        """
        safe_depth = clamp(depth, MIN_DEPTH, MAX_DEPTH)

        # safe_depth is a clamped int; variable-length bounds can't be parameters
        query = f"""
            MATCH (c:Concept {{tenant_id: $tenantId}})
            WHERE toLower(c.name) = toLower($conceptName)
            MATCH (c)-[:RELATED_TO*1..{safe_depth}]-(related:Concept {{tenant_id: $tenantId}})
            WHERE related.id <> c.id
            RETURN COLLECT(DISTINCT {{id: related.id, name: related.name, type: related.type}}) AS related
        """

        try:
            with self.session(tenant_id) as session:
                rows = session.run(
                    query,
                    params={"conceptName": concept_name, "tenantId": tenant_id},
                    columns=["related"],
                )
        except Exception as e:
            logger.error(
                f"collect_related failed ({concept_name!r}, depth={safe_depth}, "
                f"tenant={tenant_id}): {e}"
            )
            return []

        if not rows:
            return []
        return concepts_from_array(rows[0].get("related"))

    def prerequisite_chain(
        self,
        concept_name: str,
        tenant_id: str
    ) -> List[ConceptSummary]:
        """
        Deepest chain of PREREQUISITE_OF edges leading into a concept.

        Example:
            Algebra -PREREQUISITE_OF-> Calculus
            prerequisite_chain("Calculus", tenant) -> [Algebra, Calculus]

        Args:
            concept_name: Target concept name (case-insensitive)
            tenant_id: Tenant scope

        Returns:
            The single longest chain (up to 5 hops), ordered root to
            target; ties are broken by the backend. Empty if none.
        """
        query = f"""
            MATCH (c:Concept {{tenant_id: $tenantId}})
            WHERE toLower(c.name) = toLower($conceptName)
            MATCH path = (prereq:Concept {{tenant_id: $tenantId}})-[:PREREQUISITE_OF*1..{PREREQUISITE_CHAIN_MAX_HOPS}]->(c)
            RETURN [node IN nodes(path) | {{id: node.id, name: node.name, type: node.type}}] AS chain
            ORDER BY length(path) DESC
            LIMIT 1
        """

        try:
            with self.session(tenant_id) as session:
                rows = session.run(
                    query,
                    params={"conceptName": concept_name, "tenantId": tenant_id},
                    columns=["chain"],
                )
        except Exception as e:
            logger.error(
                f"prerequisite_chain failed ({concept_name!r}, tenant={tenant_id}): {e}"
            )
            return []

        if not rows:
            return []
        return concepts_from_array(rows[0].get("chain"))

    # ------------------------------------------------------------------
    # Shortest-path internals
    # ------------------------------------------------------------------

    def _resolve_concept(self, session, name: str) -> Optional[ConceptSummary]:
        """Case-insensitive name lookup within the session's tenant."""
        query = """
            MATCH (c:Concept {tenant_id: $tenantId})
            WHERE toLower(c.name) = toLower($name)
            RETURN c.id AS id, c.name AS name, c.type AS type
            LIMIT 1
        """
        rows = session.run(
            query,
            params={"name": name, "tenantId": session.tenant_id},
            columns=["id", "name", "type"],
        )
        if not rows:
            return None
        row = rows[0]
        concept_id = _scalar(row, "id")
        if concept_id is None:
            return None
        return ConceptSummary(
            id=concept_id,
            name=_scalar(row, "name") or "",
            type=_scalar(row, "type"),
        )

    def _bidirectional_search(
        self,
        session,
        start_id: str,
        end_id: str,
        max_hops: int
    ) -> Optional[List[str]]:
        """
        Bidirectional BFS between two concept IDs.

        Each iteration expands the smaller frontier by one level and keeps
        the shortest meeting edge seen in that level.

        Returns:
            Node IDs from start to end, or None if no path within max_hops
        """
        parents_forward: Dict[str, Optional[str]] = {start_id: None}
        parents_backward: Dict[str, Optional[str]] = {end_id: None}
        depths_forward: Dict[str, int] = {start_id: 0}
        depths_backward: Dict[str, int] = {end_id: 0}
        frontier_forward: Set[str] = {start_id}
        frontier_backward: Set[str] = {end_id}

        for _ in range(max_hops):
            if not frontier_forward or not frontier_backward:
                break

            expand_forward = len(frontier_forward) <= len(frontier_backward)
            if expand_forward:
                frontier_forward, meeting = self._expand_frontier(
                    session, frontier_forward,
                    parents_forward, depths_forward, depths_backward
                )
            else:
                frontier_backward, meeting = self._expand_frontier(
                    session, frontier_backward,
                    parents_backward, depths_backward, depths_forward
                )

            if meeting is not None:
                near, far = meeting
                if expand_forward:
                    return _chain_to_root(parents_forward, near)[::-1] + \
                        _chain_to_root(parents_backward, far)
                return _chain_to_root(parents_forward, far)[::-1] + \
                    _chain_to_root(parents_backward, near)

        return None

    def _expand_frontier(
        self,
        session,
        frontier: Set[str],
        parents: Dict[str, Optional[str]],
        depths: Dict[str, int],
        other_depths: Dict[str, int]
    ) -> Tuple[Set[str], Optional[Tuple[str, str]]]:
        """
        Expand one frontier by one hop.

        Returns:
            (next frontier, best meeting edge as (this-side node, other-side node) or None)
        """
        next_frontier: Set[str] = set()
        best: Optional[Tuple[str, str]] = None
        best_length: Optional[int] = None

        for parent_id, neighbor_id in self._get_neighbors_batch(session, sorted(frontier)):
            if neighbor_id in other_depths:
                length = depths[parent_id] + 1 + other_depths[neighbor_id]
                if best_length is None or length < best_length:
                    best, best_length = (parent_id, neighbor_id), length
            elif neighbor_id not in parents:
                parents[neighbor_id] = parent_id
                depths[neighbor_id] = depths[parent_id] + 1
                next_frontier.add(neighbor_id)

        return next_frontier, best

    def _get_neighbors_batch(self, session, node_ids: List[str]) -> List[Tuple[str, str]]:
        """
        Batch query for all path-type neighbors of a set of concepts.

        Both directions are followed; the edge types come from constants
        and are validated before interpolation.

        Returns:
            List of (node_id, neighbor_id) tuples
        """
        if not node_ids:
            return []

        _validate_rel_types(PATH_RELATIONSHIP_TYPES)
        type_list = ", ".join(f"'{t}'" for t in PATH_RELATIONSHIP_TYPES)

        query = f"""
            MATCH (current:Concept {{tenant_id: $tenantId}})-[r]-(neighbor:Concept {{tenant_id: $tenantId}})
            WHERE current.id IN $ids AND type(r) IN [{type_list}]
            RETURN current.id AS parent, neighbor.id AS child
        """
        rows = session.run(
            query,
            params={"ids": node_ids, "tenantId": session.tenant_id},
            columns=["parent", "child"],
        )

        neighbors = []
        for row in rows:
            parent_id = _scalar(row, "parent")
            child_id = _scalar(row, "child")
            if parent_id is None or child_id is None:
                continue
            neighbors.append((str(parent_id), str(child_id)))
        return neighbors

    def _load_concepts(self, session, node_ids: List[str]) -> List[ConceptSummary]:
        """Fetch summaries for path nodes, preserving path order."""
        query = """
            MATCH (c:Concept {tenant_id: $tenantId})
            WHERE c.id IN $ids
            RETURN c.id AS id, c.name AS name, c.type AS type
        """
        rows = session.run(
            query,
            params={"ids": node_ids, "tenantId": session.tenant_id},
            columns=["id", "name", "type"],
        )

        by_id: Dict[str, ConceptSummary] = {}
        for row in rows:
            concept_id = _scalar(row, "id")
            if concept_id is None:
                continue
            by_id[str(concept_id)] = ConceptSummary(
                id=concept_id,
                name=_scalar(row, "name") or "",
                type=_scalar(row, "type"),
            )

        # Fallback for nodes removed mid-traversal
        return [by_id.get(nid) or ConceptSummary(id=nid, name="") for nid in node_ids]


def _chain_to_root(parents: Dict[str, Optional[str]], node: str) -> List[str]:
    """Follow parent links from node back to the search root (node first)."""
    chain = []
    current: Optional[str] = node
    while current is not None:
        chain.append(current)
        current = parents.get(current)
    return chain
