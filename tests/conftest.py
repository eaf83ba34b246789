"""
Pytest fixtures for knowledge core tests.

Provides common fixtures for:
- Mocked PostgreSQL pool / connection / cursor
- In-memory Redis stand-in
- Mock embedding provider
- Sample documents and concepts

No test here needs a live database, Redis, or network access.
"""

import fnmatch
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from knowledge_core.lib.ai_providers import MockEmbeddingProvider
from knowledge_core.models.retrieval import ScoredDocument


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_cursor() -> MagicMock:
    """
    Cursor mock shared by every `with conn.cursor(...) as cur` block.

    Executed SQL is available via mock_cursor.execute.call_args_list.
    """
    cursor = MagicMock()
    cursor.fetchall.return_value = []
    return cursor


@pytest.fixture
def mock_conn(mock_cursor) -> MagicMock:
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = mock_cursor
    conn.cursor.return_value.__exit__.return_value = False
    return conn


@pytest.fixture
def mock_db(mock_conn) -> MagicMock:
    """
    DatabasePool stand-in.

    acquire() hands out mock_conn; connection() yields it as a context
    manager. release/set_tenant are plain mocks for call assertions.
    """
    db = MagicMock()
    db.acquire.return_value = mock_conn
    db.connection.return_value.__enter__.return_value = mock_conn
    db.connection.return_value.__exit__.return_value = False
    return db


@pytest.fixture
def executed_sql(mock_cursor):
    """Callable returning the SQL strings passed to cursor.execute, in order."""
    def _executed() -> List[str]:
        return [c.args[0] for c in mock_cursor.execute.call_args_list]
    return _executed


# ============================================================================
# Redis Fixtures
# ============================================================================

class FakePipeline:
    def __init__(self, redis_client: "FakeRedis"):
        self._redis = redis_client
        self._ops = []

    def setex(self, key, ttl, value):
        self._ops.append((key, ttl, value))
        return self

    def execute(self):
        for key, ttl, value in self._ops:
            self._redis.setex(key, ttl, value)
        results = [True] * len(self._ops)
        self._ops = []
        return results

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeRedis:
    """Dict-backed subset of redis.Redis (decode_responses=True semantics)."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.delete_calls = 0
        self.closed = False

    def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    def mget(self, keys: List[str]) -> List[Optional[str]]:
        return [self.store.get(k) for k in keys]

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def scan_iter(self, match: str = "*"):
        return iter([k for k in list(self.store) if fnmatch.fnmatchcase(k, match)])

    def delete(self, *keys: str) -> int:
        self.delete_calls += 1
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
                self.ttls.pop(key, None)
        return removed

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ============================================================================
# Embedding Provider Fixtures
# ============================================================================

@pytest.fixture
def mock_provider() -> MockEmbeddingProvider:
    """
    Provide a mock embedding provider for testing.

    Returns fresh provider instance for each test (calls starts at 0).
    """
    return MockEmbeddingProvider(embedding_dimension=8)


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_documents() -> List[ScoredDocument]:
    return [
        ScoredDocument(
            id="doc-1",
            content="Derivatives measure instantaneous rates of change.",
            metadata={"concepts": ["Calculus", "Derivative"]},
            semantic_score=0.91,
        ),
        ScoredDocument(
            id="doc-2",
            content="Linear equations can be solved by isolating the variable.",
            metadata={"concepts": ["Algebra"]},
            semantic_score=0.62,
        ),
    ]


@pytest.fixture
def sample_concept_rows() -> List[Dict[str, Any]]:
    """Raw agtype rows as AGE returns them for concept listings."""
    return [
        {"id": '"c-1"', "name": '"Algebra"', "definition": '"Study of symbols and rules"', "type": '"topic"'},
        {"id": '"c-2"', "name": '"Calculus"', "definition": '"Study of change"', "type": '"topic"'},
        {"id": '"c-3"', "name": '"Limits"', "definition": "null", "type": "null"},
    ]
