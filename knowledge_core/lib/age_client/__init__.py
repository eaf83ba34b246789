"""
Apache AGE client for tenant-scoped knowledge graph reads.

AGEClient composes domain-specific mixins into a single class:

    from knowledge_core.lib.age_client import AGEClient
"""

from .base import BaseMixin
from .concepts import ConceptMixin
from .learning_paths import LearningPathMixin


class AGEClient(
    LearningPathMixin,
    ConceptMixin,
    BaseMixin,
):
    """Client for the Apache AGE knowledge graph.

    Composed from domain mixins:
    - BaseMixin: Tenant sessions, Cypher execution, parameter-binding fallback
    - LearningPathMixin: Shortest path, related concepts, prerequisite chains
    - ConceptMixin: Concept listing for text matching
    """
    pass


__all__ = ["AGEClient"]
