"""
Database connection and query utilities.

Provides a Store handle over a psycopg connection pool, with helpers that
return rows as dictionaries and a streaming iterator for long scans
backed by a server-side cursor.

For testing, use Store.from_connection() to bind a store to a connection
the test owns. Such a store never commits, rolls back, or closes that
connection, so the fixture can roll every change back.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from nautical.config import Config, config

logger = logging.getLogger(__name__)


class Store:
    """
    Handle to the backing database.

    Either owns a connection pool (normal operation) or wraps a single
    caller-managed connection (testing). The pool is safe to share between
    threads; each query helper checks a connection out for the duration of
    one call only.
    """

    def __init__(
        self,
        pool: ConnectionPool | None = None,
        connection: psycopg.Connection | None = None,
    ):
        if (pool is None) == (connection is None):
            raise ValueError("Store needs exactly one of pool or connection")
        self._pool = pool
        self._connection = connection
        self._closed = False

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def connect(cls, database_url: str = None, settings: Config = None) -> "Store":
        """
        Open a pooled store.

        Every pooled connection gets the configured statement_timeout, and
        checking a connection out waits at most ``pool_timeout`` seconds.

        Args:
            database_url: Overrides the configured DATABASE_URL
            settings: Overrides the module-level config
        """
        settings = settings or config
        pool = ConnectionPool(
            database_url or settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            timeout=settings.pool_timeout,
            kwargs=settings.connection_kwargs(),
            open=True,
        )
        logger.debug(
            "Opened connection pool (min=%s, max=%s)",
            settings.pool_min_size,
            settings.pool_max_size,
        )
        return cls(pool=pool)

    @classmethod
    def from_connection(cls, conn: psycopg.Connection) -> "Store":
        """Bind a store to an existing connection (used by test fixtures)."""
        return cls(connection=conn)

    @property
    def closed(self) -> bool:
        if self._closed:
            return True
        if self._connection is not None:
            return self._connection.closed
        return self._pool.closed

    def close(self) -> None:
        """Close the pool. A bound connection is left to its owner."""
        if self._closed:
            return
        self._closed = True
        if self._pool is not None:
            self._pool.close()
            logger.debug("Closed connection pool")

    # =========================================================================
    # Connection Management
    # =========================================================================

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        """
        Context manager for database connections.

        In normal operation:
            - Checks a connection out of the pool
            - Commits on successful exit
            - Rolls back on exception
            - Returns the connection to the pool

        With a bound connection (testing):
            - Yields that connection
            - Does NOT commit, rollback, or close

        Usage:
            with store.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT ...")
        """
        if self._connection is not None:
            yield self._connection
            return

        with self._pool.connection() as conn:
            yield conn

    # =========================================================================
    # Query Helpers
    # =========================================================================

    def execute(self, query, params: tuple = None) -> int:
        """
        Execute a query without returning results.

        Args:
            query: SQL query (str or psycopg.sql.Composed) with %s placeholders
            params: Tuple of parameter values

        Returns:
            Number of rows affected
        """
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount

    def fetch_one(self, query, params: tuple = None) -> dict[str, Any] | None:
        """
        Execute a query and return a single row as dict.

        Returns:
            Dict of column names to values, or None if no row found
        """
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def fetch_all(self, query, params: tuple = None) -> list[dict[str, Any]]:
        """
        Execute a query and return all rows as list of dicts.

        Returns:
            List of dicts, empty list if no rows found
        """
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def iter_rows(
        self, query, params: tuple = None, batch_size: int = None
    ) -> Iterator[dict[str, Any]]:
        """
        Execute a query and yield rows as dicts one at a time.

        Uses a named (server-side) cursor, so rows are fetched from the
        server ``batch_size`` at a time instead of all at once. The
        connection and cursor stay checked out until the generator is
        exhausted or closed, so callers that stop early must close it.
        Errors from preparing or executing the statement are raised on the
        first ``next()``.

        Args:
            query: SQL query (str or psycopg.sql.Composed) with %s placeholders
            params: Tuple of parameter values
            batch_size: Rows per fetch, defaults to SCAN_BATCH_SIZE
        """
        name = f"nautical_scan_{uuid4().hex}"
        with self.connection() as conn:
            with conn.cursor(name=name, row_factory=dict_row) as cur:
                cur.itersize = batch_size or config.scan_batch_size
                cur.execute(query, params)
                yield from cur


# =============================================================================
# Process Default
# =============================================================================

_store: Store | None = None


def get_store() -> Store:
    """Get or open the process-wide store."""
    global _store
    if _store is None or _store.closed:
        _store = Store.connect()
    return _store


def close_store() -> None:
    """Close the process-wide store."""
    global _store
    if _store is not None:
        _store.close()
        _store = None
