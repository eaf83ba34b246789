"""
Unit tests for DatabasePool.

ThreadedConnectionPool is patched; tests check the statement timeout,
tenant-scoped checkout, and that every connection goes back rolled back.
"""

from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from knowledge_core.config import Settings
from knowledge_core.lib.db_pool import DatabasePool


@pytest.fixture
def pool_cls():
    with patch("psycopg2.pool.ThreadedConnectionPool") as cls:
        conn = MagicMock()
        cls.return_value.getconn.return_value = conn
        yield cls


@pytest.fixture
def db(pool_cls):
    return DatabasePool(
        host="localhost",
        port=5432,
        database="kg",
        user="u",
        password="p",
        statement_timeout_ms=2500,
    )


@pytest.mark.unit
class TestDatabasePool:
    """Tests for DatabasePool."""

    def test_statement_timeout_applied(self, db, pool_cls):
        kwargs = pool_cls.call_args.kwargs
        assert kwargs["options"] == "-c statement_timeout=2500"
        assert pool_cls.call_args.args == (1, 20)

    def test_from_settings(self, pool_cls):
        settings = Settings(postgres_host="db", pool_min=2, pool_max=5, statement_timeout_ms=100)

        DatabasePool.from_settings(settings)

        assert pool_cls.call_args.args == (2, 5)
        assert pool_cls.call_args.kwargs["host"] == "db"
        assert pool_cls.call_args.kwargs["options"] == "-c statement_timeout=100"

    def test_connection_sets_tenant_and_releases(self, db, pool_cls):
        pool = pool_cls.return_value
        conn = pool.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value

        with db.connection("tenant-1") as yielded:
            assert yielded is conn

        cursor.execute.assert_called_once_with(
            "SELECT set_config(%s, %s, TRUE)", ("app.current_tenant", "tenant-1")
        )
        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_release_on_error(self, db, pool_cls):
        pool = pool_cls.return_value
        conn = pool.getconn.return_value

        with pytest.raises(RuntimeError):
            with db.connection("tenant-1"):
                raise RuntimeError("query failed")

        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_is_closed(self, db, pool_cls):
        pool = pool_cls.return_value
        conn = pool.getconn.return_value
        conn.rollback.side_effect = psycopg2.InterfaceError("connection already closed")

        db.release(conn)

        pool.putconn.assert_called_once_with(conn, close=True)

    def test_connection_without_tenant(self, db, pool_cls):
        conn = pool_cls.return_value.getconn.return_value

        with db.connection():
            pass

        conn.cursor.assert_not_called()

    def test_unreachable_database(self):
        with patch(
            "psycopg2.pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("could not connect"),
        ):
            with pytest.raises(psycopg2.OperationalError, match="Cannot connect to PostgreSQL"):
                DatabasePool("nowhere", 5432, "kg", "u", "p")

    def test_close_and_context_manager(self, db, pool_cls):
        with db:
            pass

        pool_cls.return_value.closeall.assert_called_once()
