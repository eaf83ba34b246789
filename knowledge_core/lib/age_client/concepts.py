"""
Concept listing for the retrieval facade's text match.
"""

import logging
from typing import List

import psycopg2

from ...constants import MAX_LIMIT, MIN_LIMIT, clamp
from ...errors import BackendUnavailableError
from ...models.retrieval import ConceptNode
from .agtype import parse_agtype_scalar, unwrap

logger = logging.getLogger(__name__)


class ConceptMixin:
    """Concept reads."""

    def find_all_concepts(self, tenant_id: str, limit: int) -> List[ConceptNode]:
        """
        List a tenant's concepts.

        Args:
            tenant_id: Tenant scope
            limit: Maximum rows, clamped to [1, 200]

        Returns:
            Concepts in backend order

        Raises:
            BackendUnavailableError: If the graph query fails
        """
        safe_limit = clamp(limit, MIN_LIMIT, MAX_LIMIT)

        # safe_limit is a clamped int
        query = f"""
            MATCH (c:Concept {{tenant_id: $tenantId}})
            RETURN c.id AS id, c.name AS name, c.definition AS definition, c.type AS type
            LIMIT {safe_limit}
        """

        try:
            with self.session(tenant_id) as session:
                rows = session.run(query, params={"tenantId": tenant_id})
        except psycopg2.Error as e:
            raise BackendUnavailableError(f"Concept listing failed: {e}") from e

        concepts = []
        for row in rows:
            concept_id = unwrap(parse_agtype_scalar(row.get("id")))
            if concept_id is None:
                continue
            concepts.append(ConceptNode(
                id=concept_id,
                name=unwrap(parse_agtype_scalar(row.get("name"))) or "",
                definition=unwrap(parse_agtype_scalar(row.get("definition"))),
                type=unwrap(parse_agtype_scalar(row.get("type"))),
            ))

        logger.debug(f"Listed {len(concepts)} concepts (tenant={tenant_id}, limit={safe_limit})")
        return concepts
