"""
Hybrid multi-signal document retrieval.

Fuses two independent relevance channels over a tenant's document corpus:

- Semantic: pgvector cosine distance, semantic_score = 1 - distance
- Keyword: PostgreSQL full-text rank (ts_rank over plainto_tsquery)

combined_score = semantic_score * semantic_weight + keyword_score * keyword_weight,
evaluated once per document over the union of both channels (a document
missing from a channel scores 0 there). Results are sorted, cut to top_k,
and ranked 1..n.

search_with_graph_traversal() additionally pulls in documents tagged with
concepts related (in the knowledge graph) to the concepts of the top hits.
Those enter at half their own score and never replace an existing id.

Errors: embedding failures propagate unchanged (ProviderUnavailableError);
database failures raise BackendUnavailableError.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import psycopg2
from psycopg2 import extras

from ..constants import (
    GRAPH_RESULT_WEIGHT,
    GRAPH_SEED_RESULTS,
    MAX_LIMIT,
    MIN_DEPTH,
    MIN_LIMIT,
    clamp,
)
from ..errors import BackendUnavailableError
from ..lib.age_client.base import validate_identifier
from ..models.retrieval import HybridSearchOptions, RankedDocument, ScoredDocument

logger = logging.getLogger(__name__)


def to_vector_literal(embedding: Sequence[float]) -> str:
    """
    Render an embedding as a pgvector text literal ("[0.1,0.2,...]").

    Raises:
        ValueError: If the embedding is empty, not one-dimensional, or not finite
    """
    vector = np.asarray(embedding, dtype=float)
    if vector.ndim != 1 or vector.size == 0:
        raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {vector.shape}")
    if not np.all(np.isfinite(vector)):
        raise ValueError("Embedding contains non-finite values")
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def fuse_results(
    semantic_results: List[ScoredDocument],
    keyword_results: List[ScoredDocument],
    semantic_weight: float,
    keyword_weight: float
) -> List[ScoredDocument]:
    """
    Merge both channels by document id and compute combined scores.

    Each id appears once. Content and metadata come from whichever channel
    saw the document first (semantic, then keyword).

    Returns:
        Unsorted fused documents
    """
    merged: Dict[str, ScoredDocument] = {}

    for doc in semantic_results:
        if doc.id not in merged:
            merged[doc.id] = ScoredDocument(
                id=doc.id,
                content=doc.content,
                metadata=doc.metadata,
                semantic_score=doc.semantic_score,
            )

    for doc in keyword_results:
        existing = merged.get(doc.id)
        if existing is None:
            merged[doc.id] = ScoredDocument(
                id=doc.id,
                content=doc.content,
                metadata=doc.metadata,
                keyword_score=doc.keyword_score,
            )
        else:
            existing.keyword_score = doc.keyword_score

    for doc in merged.values():
        doc.combined_score = (
            doc.semantic_score * semantic_weight
            + doc.keyword_score * keyword_weight
        )

    return list(merged.values())


def rank_documents(documents: List[ScoredDocument], top_k: Optional[int] = None) -> List[RankedDocument]:
    """Sort by combined score (descending), optionally truncate, assign rank 1..n."""
    ordered = sorted(documents, key=lambda d: d.combined_score, reverse=True)
    if top_k is not None:
        ordered = ordered[:top_k]
    return [
        RankedDocument(**doc.model_dump(exclude={"rank"}), rank=index + 1)
        for index, doc in enumerate(ordered)
    ]


def merge_with_graph_results(
    hybrid_results: List[RankedDocument],
    graph_results: List[ScoredDocument],
    graph_weight: float = GRAPH_RESULT_WEIGHT
) -> List[RankedDocument]:
    """
    Merge graph-derived documents into hybrid results and re-rank everything.

    Graph documents whose id is already present are dropped; the rest
    enter with combined_score * graph_weight.
    """
    merged: Dict[str, ScoredDocument] = {}

    for doc in hybrid_results:
        merged[doc.id] = ScoredDocument(**doc.model_dump(exclude={"rank"}))

    for doc in graph_results:
        if doc.id in merged:
            continue
        weighted = doc.model_copy()
        weighted.combined_score = doc.combined_score * graph_weight
        merged[doc.id] = weighted

    return rank_documents(list(merged.values()))


def _concept_names(metadata: Dict[str, Any]) -> List[str]:
    concepts = (metadata or {}).get("concepts") or []
    if isinstance(concepts, str):
        concepts = [concepts]
    if not isinstance(concepts, list):
        return []
    return [c for c in concepts if isinstance(c, str) and c]


class HybridSearchEngine:
    """
    Hybrid semantic + keyword search over one document table.

    Expected table shape: id, tenant_id, content (text), metadata (jsonb),
    embedding (vector).
    """

    def __init__(
        self,
        db,
        embeddings,
        table_name: str = "vector_documents",
        graph=None,
        text_search_config: str = "english"
    ):
        """
        Args:
            db: DatabasePool
            embeddings: CachedEmbeddings
            table_name: Document table (validated identifier)
            graph: AGEClient used for graph augmentation (optional)
            text_search_config: PostgreSQL text search configuration name
        """
        self.db = db
        self.embeddings = embeddings
        self.table_name = validate_identifier(table_name, "table name")
        self.graph = graph
        self.text_search_config = validate_identifier(text_search_config, "text search config")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        tenant_id: str,
        options: Optional[HybridSearchOptions] = None
    ) -> List[RankedDocument]:
        """
        Rank a tenant's documents against a free-text query.

        Args:
            query: Query text
            tenant_id: Tenant scope
            options: top_k, weights and per-channel candidate count (rerank_top_k)

        Returns:
            Up to top_k documents, unique by id, rank contiguous from 1

        Raises:
            ProviderUnavailableError: Query embedding failed
            BackendUnavailableError: Database or cache failed
        """
        results, _ = self._search(query, tenant_id, options or HybridSearchOptions())
        return results

    def search_with_graph_traversal(
        self,
        query: str,
        tenant_id: str,
        options: Optional[HybridSearchOptions] = None
    ) -> List[RankedDocument]:
        """
        Hybrid search plus documents reached through related concepts.

        Concepts listed in metadata["concepts"] of the top hybrid hits are
        expanded one RELATED_TO hop in the graph; documents tagged with a
        related concept are merged at half weight and the full set is
        re-ranked.
        """
        options = options or HybridSearchOptions()
        hybrid_results, embedding = self._search(query, tenant_id, options)

        if self.graph is None or not hybrid_results:
            return hybrid_results

        related_names = self._find_related_concepts(hybrid_results, tenant_id)
        if not related_names:
            return hybrid_results

        graph_results = self.concept_document_search(
            embedding,
            related_names,
            tenant_id,
            exclude_ids=[doc.id for doc in hybrid_results],
            limit=clamp(options.rerank_top_k, MIN_LIMIT, MAX_LIMIT),
            semantic_weight=options.semantic_weight,
        )
        logger.debug(
            f"Graph augmentation: {len(related_names)} related concepts, "
            f"{len(graph_results)} extra documents"
        )

        return merge_with_graph_results(hybrid_results, graph_results)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def vector_search(
        self,
        embedding: Sequence[float],
        tenant_id: str,
        limit: int
    ) -> List[ScoredDocument]:
        """Cosine-distance ordering; semantic_score = 1 - distance."""
        vector = to_vector_literal(embedding)
        sql = f"""
            SELECT id, content, metadata,
                   1 - (embedding <=> %s::vector) AS semantic_score
            FROM {self.table_name}
            WHERE tenant_id = %s
            ORDER BY embedding <=> %s::vector
            LIMIT %s
        """
        rows = self._fetch(sql, (vector, tenant_id, vector, limit), tenant_id)
        return [
            ScoredDocument(
                id=str(row["id"]),
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
                semantic_score=float(row["semantic_score"]),
            )
            for row in rows
        ]

    def keyword_search(self, query: str, tenant_id: str, limit: int) -> List[ScoredDocument]:
        """Full-text match ranked by ts_rank."""
        sql = f"""
            SELECT id, content, metadata,
                   ts_rank(to_tsvector(%s::regconfig, content),
                           plainto_tsquery(%s::regconfig, %s)) AS keyword_score
            FROM {self.table_name}
            WHERE tenant_id = %s
              AND to_tsvector(%s::regconfig, content) @@ plainto_tsquery(%s::regconfig, %s)
            ORDER BY keyword_score DESC
            LIMIT %s
        """
        cfg = self.text_search_config
        params = (cfg, cfg, query, tenant_id, cfg, cfg, query, limit)
        rows = self._fetch(sql, params, tenant_id)
        return [
            ScoredDocument(
                id=str(row["id"]),
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
                keyword_score=float(row["keyword_score"]),
            )
            for row in rows
        ]

    def ilike_search(self, query: str, tenant_id: str, limit: int) -> List[ScoredDocument]:
        """Case-insensitive substring match (no scores); used when embeddings are unavailable."""
        escaped = (
            query.replace("\\", "\\\\")
            .replace("%", "\\%")
            .replace("_", "\\_")
        )
        sql = f"""
            SELECT id, content, metadata
            FROM {self.table_name}
            WHERE tenant_id = %s
              AND content ILIKE %s
            LIMIT %s
        """
        rows = self._fetch(sql, (tenant_id, f"%{escaped}%", limit), tenant_id)
        return [
            ScoredDocument(
                id=str(row["id"]),
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
            )
            for row in rows
        ]

    def concept_document_search(
        self,
        embedding: Sequence[float],
        concept_names: List[str],
        tenant_id: str,
        exclude_ids: List[str],
        limit: int,
        semantic_weight: float
    ) -> List[ScoredDocument]:
        """
        Documents tagged with any of the given concept names.

        combined_score is the semantic channel alone (semantic_score * semantic_weight).
        """
        vector = to_vector_literal(embedding)
        sql = f"""
            SELECT id, content, metadata,
                   1 - (embedding <=> %s::vector) AS semantic_score
            FROM {self.table_name}
            WHERE tenant_id = %s
              AND metadata->'concepts' ?| %s::text[]
              AND NOT (id::text = ANY(%s::text[]))
            ORDER BY embedding <=> %s::vector
            LIMIT %s
        """
        params = (vector, tenant_id, list(concept_names), list(exclude_ids), vector, limit)
        rows = self._fetch(sql, params, tenant_id)

        documents = []
        for row in rows:
            semantic_score = float(row["semantic_score"])
            documents.append(ScoredDocument(
                id=str(row["id"]),
                content=row.get("content") or "",
                metadata=row.get("metadata") or {},
                semantic_score=semantic_score,
                combined_score=semantic_score * semantic_weight,
            ))
        return documents

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _search(
        self,
        query: str,
        tenant_id: str,
        options: HybridSearchOptions
    ) -> Tuple[List[RankedDocument], List[float]]:
        top_k = clamp(options.top_k, MIN_LIMIT, MAX_LIMIT)
        candidates = clamp(options.rerank_top_k, MIN_LIMIT, MAX_LIMIT)

        embedding = self.embeddings.embed_query(query)

        semantic_results = self.vector_search(embedding, tenant_id, candidates)
        keyword_results = self.keyword_search(query, tenant_id, candidates)

        fused = fuse_results(
            semantic_results,
            keyword_results,
            options.semantic_weight,
            options.keyword_weight,
        )
        logger.debug(
            f"Hybrid search: {len(semantic_results)} semantic, "
            f"{len(keyword_results)} keyword, {len(fused)} fused (tenant={tenant_id})"
        )

        return rank_documents(fused, top_k), embedding

    def _find_related_concepts(self, results: List[RankedDocument], tenant_id: str) -> List[str]:
        seeds: List[str] = []
        for doc in results[:GRAPH_SEED_RESULTS]:
            for name in _concept_names(doc.metadata):
                if name not in seeds:
                    seeds.append(name)

        related: List[str] = []
        for name in seeds:
            for concept in self.graph.collect_related(name, MIN_DEPTH, tenant_id):
                if concept.name and concept.name not in related:
                    related.append(concept.name)
        return related

    def _fetch(self, sql: str, params: tuple, tenant_id: str) -> List[Dict[str, Any]]:
        try:
            with self.db.connection(tenant_id) as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return [dict(row) for row in cur.fetchall()]
        except psycopg2.Error as e:
            raise BackendUnavailableError(f"Document query failed on {self.table_name}: {e}") from e
