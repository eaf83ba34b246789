"""
Knowledge Core Constants

Centralized definitions for graph schema elements, query bounds, and
retrieval scoring defaults used across the codebase.
"""

from typing import List

# ============================================================================
# Graph Schema: Relationship Types
# ============================================================================
# RELATED_TO is traversable in either direction for neighborhood queries.
# PREREQUISITE_OF points prerequisite -> target and is only walked that way
# for prerequisite chains. Callers may create other edge types, but the
# learning-path queries only follow these two.
# ============================================================================

RELATED_TO = "RELATED_TO"
PREREQUISITE_OF = "PREREQUISITE_OF"

PATH_RELATIONSHIP_TYPES: List[str] = [RELATED_TO, PREREQUISITE_OF]

DEFAULT_EDGE_STRENGTH = 1.0

# ============================================================================
# Query Bounds
# ============================================================================

MIN_DEPTH = 1
MAX_DEPTH = 5

MIN_LIMIT = 1
MAX_LIMIT = 200

SHORTEST_PATH_MAX_HOPS = 10
PREREQUISITE_CHAIN_MAX_HOPS = 5

# ============================================================================
# Hybrid Retrieval Defaults
# ============================================================================

DEFAULT_TOP_K = 10
DEFAULT_SEMANTIC_WEIGHT = 0.7
DEFAULT_KEYWORD_WEIGHT = 0.3
DEFAULT_RERANK_TOP_K = 20

# Graph-derived documents enter the merged ranking at half their own score
GRAPH_RESULT_WEIGHT = 0.5

# Number of top hybrid results whose tagged concepts seed graph expansion
GRAPH_SEED_RESULTS = 3

# ============================================================================
# Embedding Cache
# ============================================================================

EMBEDDING_CACHE_PREFIX = "embedding:"
DEFAULT_EMBEDDING_CACHE_TTL = 86400  # 24 hours
DEFAULT_EMBEDDING_DIMENSIONS = 768

# ============================================================================
# Retrieval Facade Heuristics
# ============================================================================
# Kept for behavioral compatibility with existing callers. These are not
# computed relevance scores.

KEYWORD_FALLBACK_SIMILARITY = 0.75

TEXT_EXACT_MATCH_SCORE = 1.0
TEXT_SUBSTRING_SCORE = 0.85
TEXT_WORD_OVERLAP_BASE = 0.5
TEXT_WORD_OVERLAP_RANGE = 0.35

# Concept text matches take a quarter of the requested limit
CONCEPT_RESULT_FRACTION = 4
CONCEPT_SCAN_MULTIPLIER = 3


def clamp(value: int, lower: int, upper: int) -> int:
    """Clamp an integer-like value into [lower, upper]."""
    return max(lower, min(upper, int(value)))
