from .retrieval import (
    ConceptSummary,
    ConceptNode,
    PathResult,
    ScoredDocument,
    RankedDocument,
    SimilarityResult,
    HybridSearchOptions,
)

__all__ = [
    "ConceptSummary",
    "ConceptNode",
    "PathResult",
    "ScoredDocument",
    "RankedDocument",
    "SimilarityResult",
    "HybridSearchOptions",
]
