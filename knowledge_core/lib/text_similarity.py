"""
Deterministic text-similarity heuristic for non-embedding matches.

Used by the retrieval facade for concept name/definition matches:
- exact match (case-insensitive)        -> 1.0
- query contained in text               -> 0.85
- otherwise 0.5 + 0.35 * (fraction of query words found in text)

The constants are kept for compatibility with existing consumers and
are not a principled relevance score.
"""

from ..constants import (
    TEXT_EXACT_MATCH_SCORE,
    TEXT_SUBSTRING_SCORE,
    TEXT_WORD_OVERLAP_BASE,
    TEXT_WORD_OVERLAP_RANGE,
)


def compute_text_similarity(text: str, query: str) -> float:
    haystack = (text or "").lower()
    needle = (query or "").lower()

    if haystack == needle:
        return TEXT_EXACT_MATCH_SCORE
    if needle in haystack:
        return TEXT_SUBSTRING_SCORE

    query_words = needle.split()
    if not query_words:
        return TEXT_WORD_OVERLAP_BASE

    matched = sum(1 for word in query_words if word in haystack)
    return TEXT_WORD_OVERLAP_BASE + TEXT_WORD_OVERLAP_RANGE * (matched / len(query_words))
