"""
Redis-backed embedding cache.

Wraps an EmbeddingProvider so each distinct text is embedded at most once
per TTL window. Keys are "embedding:" + SHA256(text) of the exact input
string; values are JSON float arrays stored with SETEX.

Without a Redis client every call passes straight through to the
provider. That is a supported mode, not a degraded one.

Errors:
- Redis failures raise BackendUnavailableError
- Provider failures propagate unchanged (ProviderUnavailableError)
"""

import json
import logging
from typing import Dict, List, Optional

import redis

from ..constants import DEFAULT_EMBEDDING_CACHE_TTL, EMBEDDING_CACHE_PREFIX
from ..errors import BackendUnavailableError, ProviderUnavailableError
from .ai_providers import EmbeddingProvider
from .hash_utils import embedding_cache_key

logger = logging.getLogger(__name__)


class CachedEmbeddings:
    """Embedding provider front with an optional Redis cache."""

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        cache_enabled: bool = True,
        cache_ttl: int = DEFAULT_EMBEDDING_CACHE_TTL,
        redis_client: Optional[redis.Redis] = None,
        key_prefix: str = EMBEDDING_CACHE_PREFIX
    ):
        """
        Args:
            provider: Embedding provider, or None when none is configured
            cache_enabled: False forces pass-through even with a client
            cache_ttl: Entry lifetime in seconds
            redis_client: Redis client (decode_responses=True)
            key_prefix: Cache key namespace
        """
        if cache_ttl <= 0:
            raise ValueError(f"cache_ttl must be positive, got {cache_ttl}")

        self.provider = provider
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.key_prefix = key_prefix
        self._redis = redis_client

    @classmethod
    def from_settings(cls, provider: Optional[EmbeddingProvider], settings) -> "CachedEmbeddings":
        cache = cls(provider, cache_ttl=settings.embedding_cache_ttl)
        if settings.redis_url:
            cache.configure_cache(settings.redis_url)
        return cache

    def configure_cache(self, redis_url: str) -> None:
        """Connect the cache to a Redis instance."""
        self._redis = redis.Redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        self.cache_enabled = True
        logger.info(f"Embedding cache enabled (ttl={self.cache_ttl}s)")

    @property
    def caching(self) -> bool:
        return self.cache_enabled and self._redis is not None

    def has_provider(self) -> bool:
        return self.provider is not None

    def _require_provider(self) -> EmbeddingProvider:
        if self.provider is None:
            raise ProviderUnavailableError(
                "No embedding provider: set OLLAMA_URL or OPENAI_API_KEY"
            )
        return self.provider

    def _key(self, text: str) -> str:
        return embedding_cache_key(text, self.key_prefix)

    def embed_query(self, text: str) -> List[float]:
        """
        Embed one text, serving repeats from the cache.

        Raises:
            ProviderUnavailableError: No provider, or the provider failed
            BackendUnavailableError: Redis failed
        """
        provider = self._require_provider()

        if not self.caching:
            return provider.embed_query(text)

        key = self._key(text)
        try:
            cached = self._redis.get(key)
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Embedding cache read failed: {e}") from e

        vector = _decode(cached)
        if vector is not None:
            logger.debug("Embedding cache hit")
            return vector

        logger.debug("Embedding cache miss")
        vector = provider.embed_query(text)
        self._store({key: vector})
        return vector

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Embed several texts in input order.

        Cache misses (deduplicated) go to the provider in a single batch;
        each new vector is cached under its own key.
        """
        if not texts:
            return []

        provider = self._require_provider()

        unique_texts = list(dict.fromkeys(texts))

        if not self.caching:
            vectors = _checked_batch(provider.embed_documents(unique_texts), len(unique_texts))
            by_text = dict(zip(unique_texts, vectors))
            return [by_text[text] for text in texts]

        keys = [self._key(text) for text in unique_texts]
        try:
            cached_values = self._redis.mget(keys)
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Embedding cache read failed: {e}") from e

        by_text: Dict[str, List[float]] = {}
        missing = []
        for text, value in zip(unique_texts, cached_values):
            vector = _decode(value)
            if vector is None:
                missing.append(text)
            else:
                by_text[text] = vector

        logger.debug(
            f"Embedding cache: {len(by_text)} hits, {len(missing)} misses "
            f"({len(texts)} inputs)"
        )

        if missing:
            vectors = _checked_batch(provider.embed_documents(missing), len(missing))
            new_entries = {}
            for text, vector in zip(missing, vectors):
                by_text[text] = vector
                new_entries[self._key(text)] = vector
            self._store(new_entries)

        return [by_text[text] for text in texts]

    def _store(self, entries: Dict[str, List[float]]) -> None:
        try:
            with self._redis.pipeline(transaction=False) as pipe:
                for key, vector in entries.items():
                    pipe.setex(key, self.cache_ttl, json.dumps(vector))
                pipe.execute()
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Embedding cache write failed: {e}") from e

    def clear_cache(self) -> int:
        """
        Delete every key in the cache namespace.

        Returns:
            Number of keys deleted (0 without a cache backend)
        """
        if not self.caching:
            return 0

        try:
            keys = list(self._redis.scan_iter(match=f"{self.key_prefix}*"))
            if not keys:
                return 0
            deleted = self._redis.delete(*keys)
        except redis.RedisError as e:
            raise BackendUnavailableError(f"Embedding cache clear failed: {e}") from e

        logger.info(f"Cleared {deleted} cached embeddings")
        return deleted

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            self._redis.close()
            self._redis = None


def _decode(value: Optional[str]) -> Optional[List[float]]:
    """Cached JSON vector, or None for a missing or unreadable entry (treated as a miss)."""
    if value is None:
        return None
    try:
        vector = json.loads(value)
    except ValueError:
        logger.warning("Discarding unreadable embedding cache entry")
        return None
    if not isinstance(vector, list) or not vector:
        logger.warning("Discarding malformed embedding cache entry")
        return None
    return vector


def _checked_batch(vectors: List[List[float]], expected: int) -> List[List[float]]:
    if len(vectors) != expected:
        raise ProviderUnavailableError(
            f"Provider returned {len(vectors)} embeddings for {expected} texts"
        )
    return vectors
