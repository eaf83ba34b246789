"""
Retrieval facade: the single entry point for callers.

Owns every fallback decision. Lower layers either degrade on their own
(graph path-finding returns None/[]) or raise; only this facade turns an
unavailable embedding provider into a keyword search.

Lifecycle:
    with create_retrieval_service() as service:
        service.semantic_search("derivatives", tenant_id="t-1", limit=10)
"""

import logging
from typing import List, Optional

from ..config import Settings
from ..constants import (
    CONCEPT_RESULT_FRACTION,
    CONCEPT_SCAN_MULTIPLIER,
    KEYWORD_FALLBACK_SIMILARITY,
    MAX_LIMIT,
    MIN_LIMIT,
    clamp,
)
from ..errors import KnowledgeCoreError, ProviderUnavailableError
from ..lib.age_client import AGEClient
from ..lib.ai_providers import get_embedding_provider
from ..lib.db_pool import DatabasePool
from ..lib.embedding_cache import CachedEmbeddings
from ..lib.text_similarity import compute_text_similarity
from ..models.retrieval import (
    ConceptSummary,
    HybridSearchOptions,
    PathResult,
    RankedDocument,
    ScoredDocument,
    SimilarityResult,
)
from .hybrid_search import HybridSearchEngine

logger = logging.getLogger(__name__)


class KnowledgeRetrievalService:
    """Facade over the graph client, hybrid search and embedding cache."""

    def __init__(
        self,
        graph: AGEClient,
        search_engine: HybridSearchEngine,
        embeddings: CachedEmbeddings,
        db: Optional[DatabasePool] = None
    ):
        """
        Args:
            graph: Graph client (path-finding, concept listing)
            search_engine: Hybrid search engine
            embeddings: Embedding cache/provider front
            db: Pool closed by close(), when this service owns it
        """
        self.graph = graph
        self.search_engine = search_engine
        self.embeddings = embeddings
        self.db = db

    # ------------------------------------------------------------------
    # Learning paths
    # ------------------------------------------------------------------

    def shortest_path(self, from_name: str, to_name: str, tenant_id: str) -> Optional[PathResult]:
        return self.graph.shortest_path(from_name, to_name, tenant_id)

    def collect_related(self, concept_name: str, depth: int, tenant_id: str) -> List[ConceptSummary]:
        return self.graph.collect_related(concept_name, depth, tenant_id)

    def prerequisite_chain(self, concept_name: str, tenant_id: str) -> List[ConceptSummary]:
        return self.graph.prerequisite_chain(concept_name, tenant_id)

    # ------------------------------------------------------------------
    # Document retrieval
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        tenant_id: str,
        options: Optional[HybridSearchOptions] = None
    ) -> List[RankedDocument]:
        return self.search_engine.search(query, tenant_id, options)

    def search_with_graph_traversal(
        self,
        query: str,
        tenant_id: str,
        options: Optional[HybridSearchOptions] = None
    ) -> List[RankedDocument]:
        return self.search_engine.search_with_graph_traversal(query, tenant_id, options)

    def semantic_search(self, query: str, tenant_id: str, limit: int = 10) -> List[SimilarityResult]:
        """
        Vector search with keyword fallback, blended with concept text matches.

        When no embedding provider is configured, or the provider fails,
        documents are matched by case-insensitive substring instead and
        every such match gets a fixed similarity of 0.75. Concept
        name/definition matches fill up to a quarter of the limit. The
        combined list is sorted by similarity and cut to limit; no rank is
        assigned.

        Raises:
            BackendUnavailableError: Document queries failed
        """
        limit = clamp(limit, MIN_LIMIT, MAX_LIMIT)

        document_results = self._vector_or_keyword_results(query, tenant_id, limit)
        concept_results = self._search_concepts_by_text(
            query, tenant_id, max(1, limit // CONCEPT_RESULT_FRACTION)
        )

        combined = document_results + concept_results
        combined.sort(key=lambda r: r.similarity, reverse=True)
        return combined[:limit]

    def _vector_or_keyword_results(self, query: str, tenant_id: str, limit: int) -> List[SimilarityResult]:
        if self.embeddings.has_provider():
            try:
                embedding = self.embeddings.embed_query(query)
                docs = self.search_engine.vector_search(embedding, tenant_id, limit)
                logger.debug(f"Vector search: {len(docs)} hits (tenant={tenant_id})")
                return [_document_result(doc, doc.semantic_score) for doc in docs]
            except ProviderUnavailableError as e:
                logger.warning(f"Embedding provider unavailable ({e}); using keyword fallback")
        else:
            logger.warning("No embedding provider configured; using keyword fallback")

        docs = self.search_engine.ilike_search(query, tenant_id, limit)
        return [_document_result(doc, KEYWORD_FALLBACK_SIMILARITY) for doc in docs]

    def _search_concepts_by_text(self, query: str, tenant_id: str, limit: int) -> List[SimilarityResult]:
        try:
            concepts = self.graph.find_all_concepts(tenant_id, limit * CONCEPT_SCAN_MULTIPLIER)
        except KnowledgeCoreError as e:
            logger.warning(f"Concept search failed during semantic_search: {e}")
            return []

        needle = query.lower()
        results = []
        for concept in concepts:
            name = concept.name or ""
            definition = concept.definition or ""
            if needle not in name.lower() and needle not in definition.lower():
                continue
            results.append(SimilarityResult(
                id=concept.id,
                text=concept.definition or name,
                similarity=compute_text_similarity(f"{name} {definition}", query),
                entity_type="concept",
                entity_id=concept.id,
            ))
            if len(results) >= limit:
                break
        return results

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def has_provider(self) -> bool:
        return self.embeddings.has_provider()

    def embed_query(self, text: str) -> List[float]:
        return self.embeddings.embed_query(text)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embeddings.embed_documents(texts)

    def clear_cache(self) -> int:
        return self.embeddings.clear_cache()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Close the Redis client and, when owned, the database pool."""
        self.embeddings.close()
        if self.db is not None:
            self.db.close()
            logger.info("Retrieval service closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _document_result(doc: ScoredDocument, similarity: float) -> SimilarityResult:
    entity_id = doc.metadata.get("entity_id") if doc.metadata else None
    return SimilarityResult(
        id=doc.id,
        text=doc.content,
        similarity=similarity,
        entity_type="document",
        entity_id=str(entity_id) if entity_id is not None else doc.id,
    )


def create_retrieval_service(settings: Optional[Settings] = None) -> KnowledgeRetrievalService:
    """
    Build the retrieval service and all of its dependencies.

    Order: pool -> graph client -> embedding provider -> cache -> hybrid
    engine -> facade. The returned service owns the pool and the Redis
    client; close it (or use it as a context manager) on shutdown.

    Args:
        settings: Settings; read from the environment when omitted

    Raises:
        psycopg2.OperationalError: If PostgreSQL is unreachable
        ValueError: Invalid configuration
    """
    settings = settings or Settings.from_env()

    db = DatabasePool.from_settings(settings)
    try:
        graph = AGEClient.from_settings(db, settings)
        provider = get_embedding_provider(settings)
        embeddings = CachedEmbeddings.from_settings(provider, settings)
        search_engine = HybridSearchEngine(
            db,
            embeddings,
            table_name=settings.vector_table,
            graph=graph,
            text_search_config=settings.text_search_config,
        )
    except Exception:
        db.close()
        raise

    logger.info(
        f"Retrieval service ready (graph={settings.graph_name}, table={settings.vector_table}, "
        f"provider={provider.get_provider_name() if provider else 'none'}, "
        f"cache={'on' if embeddings.caching else 'off'})"
    )
    return KnowledgeRetrievalService(graph, search_engine, embeddings, db=db)
