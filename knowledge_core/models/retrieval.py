"""
Pydantic models for learning-path and retrieval results.

These are the shapes handed back to callers (GraphQL resolvers,
recommendation services). Raw backend rows never leave the lib layer.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any

from ..constants import (
    DEFAULT_TOP_K,
    DEFAULT_SEMANTIC_WEIGHT,
    DEFAULT_KEYWORD_WEIGHT,
    DEFAULT_RERANK_TOP_K,
)


class ConceptSummary(BaseModel):
    """Minimal concept projection used in paths and neighborhoods."""

    id: str = Field(..., description="Concept ID")
    name: str = Field(..., description="Concept name (case preserved)")
    type: Optional[str] = Field(None, description="Optional concept type tag")

    @field_validator("id", "name", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Graph IDs may come back as agtype integers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ConceptNode(ConceptSummary):
    """Concept with its definition, as listed for text matching."""

    definition: Optional[str] = Field(None, description="Concept definition text")


class PathResult(BaseModel):
    """Ordered concept path; steps is the edge count."""

    concepts: List[ConceptSummary] = Field(default_factory=list)
    steps: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _steps_match_concepts(self) -> "PathResult":
        if self.steps != len(self.concepts) - 1:
            raise ValueError(
                f"steps ({self.steps}) must equal len(concepts) - 1 "
                f"({len(self.concepts) - 1})"
            )
        return self


class ScoredDocument(BaseModel):
    """Candidate document with per-channel scores, before ranking."""

    id: str
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    combined_score: float = 0.0


class RankedDocument(ScoredDocument):
    """Document after final sort; rank is 1-indexed and contiguous."""

    rank: int = Field(..., ge=1)


class SimilarityResult(BaseModel):
    """Facade search hit. No rank is assigned on this path."""

    id: str
    text: str
    similarity: float
    entity_type: str = "document"
    entity_id: str


class HybridSearchOptions(BaseModel):
    """
    Tuning knobs for HybridSearchEngine.search().

    Counts are clamped by the engine, weights must be non-negative.
    """

    top_k: int = DEFAULT_TOP_K
    semantic_weight: float = Field(DEFAULT_SEMANTIC_WEIGHT, ge=0.0)
    keyword_weight: float = Field(DEFAULT_KEYWORD_WEIGHT, ge=0.0)
    rerank_top_k: int = DEFAULT_RERANK_TOP_K

    class Config:
        json_schema_extra = {
            "example": {
                "top_k": 10,
                "semantic_weight": 0.7,
                "keyword_weight": 0.3,
                "rerank_top_k": 20
            }
        }
