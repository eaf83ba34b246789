"""
PostgreSQL connection pool shared by the graph client and hybrid search.

The pool is constructed once at startup and passed to every component
that needs it (no module-level singleton). Checkouts are tenant-scoped:
the tenant session variable is set transaction-locally and every
connection is rolled back before it goes back to the pool, so no tenant
state leaks between requests.

Key infrastructure:
- ThreadedConnectionPool (psycopg2) for thread-safe connection reuse
- statement_timeout applied to every pooled connection
- connection(): context manager that always releases the connection
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2 import pool

logger = logging.getLogger(__name__)


class DatabasePool:
    """Pooled PostgreSQL connections with tenant-scoped checkout."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        minconn: int = 1,
        maxconn: int = 20,
        statement_timeout_ms: int = 15000,
        tenant_setting_name: str = "app.current_tenant"
    ):
        """
        Initialize the pool.

        Args:
            host: PostgreSQL host
            port: PostgreSQL port
            database: Database name
            user: Database user
            password: Database password
            minconn: Minimum pooled connections
            maxconn: Maximum pooled connections
            statement_timeout_ms: Per-statement timeout (0 disables)
            tenant_setting_name: Session variable read by row-level security policies

        Raises:
            psycopg2.OperationalError: If cannot connect to PostgreSQL
        """
        self.host = host
        self.port = port
        self.database = database
        self.tenant_setting_name = tenant_setting_name
        self.statement_timeout_ms = statement_timeout_ms

        try:
            self.pool = psycopg2.pool.ThreadedConnectionPool(
                minconn,
                maxconn,
                host=host,
                port=port,
                database=database,
                user=user,
                password=password,
                options=f"-c statement_timeout={int(statement_timeout_ms)}"
            )
        except psycopg2.OperationalError as e:
            raise psycopg2.OperationalError(
                f"Cannot connect to PostgreSQL at {host}:{port}: {e}"
            )

        logger.info(
            f"Database pool ready: {host}:{port}/{database} "
            f"(min={minconn}, max={maxconn}, statement_timeout={statement_timeout_ms}ms)"
        )

    @classmethod
    def from_settings(cls, settings) -> "DatabasePool":
        """Build a pool from a Settings instance."""
        return cls(
            host=settings.postgres_host,
            port=settings.postgres_port,
            database=settings.postgres_db,
            user=settings.postgres_user,
            password=settings.postgres_password,
            minconn=settings.pool_min,
            maxconn=settings.pool_max,
            statement_timeout_ms=settings.statement_timeout_ms,
            tenant_setting_name=settings.tenant_setting_name,
        )

    def acquire(self):
        """Check out a raw connection. Pair with release()."""
        return self.pool.getconn()

    def release(self, conn) -> None:
        """
        Return a connection to the pool.

        Rolls back first so transaction-local settings (tenant, search_path
        set inside the transaction) are discarded. A connection that cannot
        be rolled back is closed instead of being reused.
        """
        close = False
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Discarding connection that failed to roll back: {e}")
            close = True
        finally:
            self.pool.putconn(conn, close=close)

    def set_tenant(self, conn, tenant_id: str) -> None:
        """Set the tenant session variable for the current transaction."""
        with conn.cursor() as cur:
            cur.execute(
                "SELECT set_config(%s, %s, TRUE)",
                (self.tenant_setting_name, tenant_id)
            )

    @contextmanager
    def connection(self, tenant_id: Optional[str] = None) -> Iterator:
        """
        Context manager yielding a pooled connection.

        Args:
            tenant_id: When given, set as the transaction-local tenant variable

        Yields:
            psycopg2 connection (released on exit, including on error)
        """
        conn = self.acquire()
        try:
            if tenant_id is not None:
                self.set_tenant(conn, tenant_id)
            yield conn
        finally:
            self.release(conn)

    def close(self):
        """Close all database connections."""
        if hasattr(self, 'pool'):
            self.pool.closeall()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
