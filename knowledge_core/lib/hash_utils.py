"""
Hash utilities for content-addressed embedding cache keys.

Cache keys must not be a reversible encoding of the input text (queries
may contain learner data), so they are built from a SHA256 digest.
"""

import hashlib

from ..constants import EMBEDDING_CACHE_PREFIX


def sha256_text(text: str) -> str:
    """
    Calculate SHA256 hash of text content.

    Args:
        text: Text content to hash

    Returns:
        Hex-encoded SHA256 hash string (64 characters)

    Example:
        >>> sha256_text("Hello, world!")
        '315f5bdb76d078c43b8ac0064e4a0164612b1fce77c869345bfc94c75894edd3'
    """
    if not isinstance(text, str):
        raise TypeError(f"Expected str, got {type(text).__name__}")

    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def embedding_cache_key(text: str, prefix: str = EMBEDDING_CACHE_PREFIX) -> str:
    """Namespaced cache key for the exact input string (no normalization)."""
    return f"{prefix}{sha256_text(text)}"
