"""
Tenant-isolated knowledge retrieval core.

Graph path-finding over Apache AGE, hybrid vector + keyword document
retrieval, a Redis-backed embedding cache, and a retrieval facade that
owns the fallback decisions.
"""

from .config import Settings
from .errors import (
    KnowledgeCoreError,
    ProviderUnavailableError,
    BackendUnavailableError,
    ParameterBindingUnsupportedError,
)
from .logging_config import setup_logging
from .services.retrieval_service import KnowledgeRetrievalService, create_retrieval_service

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "KnowledgeCoreError",
    "ProviderUnavailableError",
    "BackendUnavailableError",
    "ParameterBindingUnsupportedError",
    "KnowledgeRetrievalService",
    "create_retrieval_service",
    "setup_logging",
]
