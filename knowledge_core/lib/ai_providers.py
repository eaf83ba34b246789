"""
Embedding provider abstraction layer.

Supports Ollama (local) and OpenAI embeddings, plus a deterministic mock
for tests and local development. Every provider returns plain float
lists of a fixed length.

Failure contract:
- HTTP 429 is retried with exponential backoff (rate_limiter)
- Anything else (network error, non-2xx, malformed payload) raises
  ProviderUnavailableError
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import requests

from ..constants import DEFAULT_EMBEDDING_DIMENSIONS
from ..errors import ProviderUnavailableError
from .rate_limiter import RateLimitError, exponential_backoff_retry, get_provider_max_retries

logger = logging.getLogger(__name__)

OLLAMA_DEFAULT_MODEL = "nomic-embed-text"
OPENAI_DEFAULT_MODEL = "text-embedding-3-small"


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers"""

    @abstractmethod
    def embed_query(self, text: str) -> List[float]:
        """Embed a single text"""
        pass

    @abstractmethod
    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts; output order matches input order"""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return provider name"""
        pass

    @abstractmethod
    def get_embedding_model(self) -> str:
        """Return embedding model name"""
        pass


def _checked_vector(values, provider: str) -> List[float]:
    """Validate a provider payload as a finite, non-empty float vector."""
    try:
        vector = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise ProviderUnavailableError(f"{provider} returned a non-numeric embedding: {e}") from e

    if vector.ndim != 1 or vector.size == 0 or not np.all(np.isfinite(vector)):
        raise ProviderUnavailableError(f"{provider} returned a malformed embedding")
    return vector.tolist()


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Local embeddings via an Ollama instance.

    Calls POST {base_url}/api/embeddings with {model, prompt}; batches are
    one request per text.
    """

    def __init__(
        self,
        base_url: str,
        model: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: Optional[int] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model or OLLAMA_DEFAULT_MODEL
        self.timeout = timeout
        self.max_retries = get_provider_max_retries("ollama") if max_retries is None else max_retries
        self.session = requests.Session()
        logger.info(f"Ollama embeddings: {self.base_url} (model={self.model})")

    def embed_query(self, text: str) -> List[float]:
        @exponential_backoff_retry(max_retries=self.max_retries, base_delay=0.5)
        def _make_request():
            resp = self.session.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout
            )
            resp.raise_for_status()
            return resp

        try:
            response = _make_request()
            payload = response.json()
        except RateLimitError:
            raise
        except (requests.RequestException, ValueError) as e:
            raise ProviderUnavailableError(f"Ollama embedding request failed: {e}") from e

        if not isinstance(payload, dict) or "embedding" not in payload:
            raise ProviderUnavailableError("Ollama response has no 'embedding' field")

        return _checked_vector(payload["embedding"], "Ollama")

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_query(text) for text in texts]

    def get_provider_name(self) -> str:
        return "Ollama"

    def get_embedding_model(self) -> str:
        return self.model


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings, reduced to a fixed dimension for the vector column."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    ):
        from openai import OpenAI

        if not api_key:
            raise ValueError("OpenAI API key not found. Set OPENAI_API_KEY.")

        max_retries = get_provider_max_retries("openai")

        # SDK retries 429s itself; the decorator below only sees exhausted ones
        self.client = OpenAI(
            api_key=api_key,
            max_retries=max_retries,
            timeout=60.0
        )
        self.model = model or OPENAI_DEFAULT_MODEL
        self.dimensions = dimensions
        logger.info(
            f"OpenAI embeddings: model={self.model}, dimensions={self.dimensions}, "
            f"max_retries={max_retries}"
        )

    def _create(self, inputs):
        from openai import OpenAIError

        @exponential_backoff_retry(max_retries=2)
        def _make_request():
            return self.client.embeddings.create(
                model=self.model,
                input=inputs,
                dimensions=self.dimensions
            )

        try:
            return _make_request()
        except RateLimitError:
            raise
        except OpenAIError as e:
            raise ProviderUnavailableError(f"OpenAI embedding request failed: {e}") from e

    def embed_query(self, text: str) -> List[float]:
        response = self._create(text)
        if not response.data:
            raise ProviderUnavailableError("OpenAI response has no embedding data")
        return _checked_vector(response.data[0].embedding, "OpenAI")

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        response = self._create(list(texts))
        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts):
            raise ProviderUnavailableError(
                f"OpenAI returned {len(items)} embeddings for {len(texts)} inputs"
            )
        return [_checked_vector(item.embedding, "OpenAI") for item in items]

    def get_provider_name(self) -> str:
        return "OpenAI"

    def get_embedding_model(self) -> str:
        return self.model


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic embeddings for tests and local development.

    - No API keys or network access
    - Same text always produces the same unit-length vector
    - calls counts every provider invocation (batch = one call)
    """

    def __init__(self, embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSIONS):
        self.embedding_dimension = embedding_dimension
        self.calls = 0

    def _vector(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        vector = rng.uniform(-1.0, 1.0, self.embedding_dimension)
        magnitude = np.linalg.norm(vector)
        if magnitude > 0:
            vector = vector / magnitude
        return vector.tolist()

    def embed_query(self, text: str) -> List[float]:
        self.calls += 1
        return self._vector(text)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        return [self._vector(text) for text in texts]

    def get_provider_name(self) -> str:
        return "Mock"

    def get_embedding_model(self) -> str:
        return "mock-embedding"


def get_embedding_provider(settings) -> Optional[EmbeddingProvider]:
    """
    Build the configured embedding provider.

    EMBEDDING_PROVIDER selects explicitly ('ollama', 'openai', 'mock').
    When unset: Ollama if OLLAMA_URL is set, else OpenAI if OPENAI_API_KEY
    is set, else None (no provider is a valid state).

    Args:
        settings: Settings instance

    Returns:
        EmbeddingProvider, or None when nothing is configured

    Raises:
        ValueError: Unknown provider name, or explicit provider without its settings
    """
    name = settings.embedding_provider

    if name is None:
        if settings.ollama_url:
            name = "ollama"
        elif settings.openai_api_key:
            name = "openai"
        else:
            logger.info("No embedding provider configured (set OLLAMA_URL or OPENAI_API_KEY)")
            return None

    if name == "ollama":
        if not settings.ollama_url:
            raise ValueError("EMBEDDING_PROVIDER=ollama requires OLLAMA_URL")
        return OllamaEmbeddingProvider(settings.ollama_url, model=settings.embedding_model)

    if name == "openai":
        return OpenAIEmbeddingProvider(
            settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )

    if name == "mock":
        return MockEmbeddingProvider(embedding_dimension=settings.embedding_dimensions)

    raise ValueError(
        f"Unknown embedding provider: {name!r}. Valid options: 'ollama', 'openai', 'mock'"
    )
