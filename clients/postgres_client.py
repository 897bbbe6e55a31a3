"""
PostgreSQL client with connection pooling and per-reader row isolation.

Uses psycopg2 with ThreadedConnectionPool. Reader-owned tables (the credit
ledger) are protected by Row Level Security keyed on app.current_user_id,
which is set on every checkout from the utils.user_context contextvar.

Account tables (users, verification_codes, security_events) have no RLS:
they are read before any reader is known.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import _current_user_id

logger = logging.getLogger(__name__)

_jsonb_registered = False


class PostgresClient:
    """
    Thin query wrapper over a shared connection pool.

    Every method opens and releases its own connection, so each call is its
    own transaction. Conditional writes (UPDATE ... WHERE <precondition>
    RETURNING) are therefore atomic on their own; callers never need an
    explicit transaction for compare-and-set. Writes that must land
    together (a balance change and its ledger row) use transaction().

    Usage:
        db = PostgresClient(database_url)

        row = db.execute_single("SELECT * FROM users WHERE id = %s", (user_id,))

        with user_context(reader_id):
            ledger = db.execute("SELECT * FROM credit_transactions")  # RLS scoped
    """

    # Pools shared across instances, keyed by DSN
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                return

            pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self._min_connections,
                maxconn=self._max_connections,
                dsn=self._database_url,
                connect_timeout=30,
            )

            global _jsonb_registered
            if not _jsonb_registered:
                psycopg2.extras.register_default_jsonb(globally=True)
                _jsonb_registered = True

            self._connection_pools[self._database_url] = pool
            logger.info("Postgres connection pool created")

    @contextmanager
    def get_connection(self):
        """Check out a connection with the reader context applied."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")

            user_id = _current_user_id.get()

            with conn.cursor() as cur:
                # Empty string means no reader; the RLS policy maps it to NULL and matches nothing
                cur.execute(
                    "SET app.current_user_id = %s",
                    (str(user_id) if user_id is not None else "",),
                )

            yield conn

        except Exception:
            if conn is not None:
                conn.rollback()
            raise

        finally:
            if conn is not None:
                pool.putconn(conn)

    @staticmethod
    def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
        """UUIDs are sent as text; psycopg2 has no adapter registered for them."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            return value

        if isinstance(params, dict):
            return {k: convert(v) for k, v in params.items()}
        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Run a statement and commit. Returns row dicts, or [] when nothing is returned."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
            conn.commit()
            return rows

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """First row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """First column of the first row, or None."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
            conn.commit()
            return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """
        INSERT/UPDATE/DELETE with RETURNING.

        An empty list from a conditional UPDATE means the precondition did
        not hold and nothing was written.
        """
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()]
            conn.commit()
            return rows

    @contextmanager
    def transaction(self):
        """
        Several statements on one connection, committed together.

        Usage:
            with user_context(reader_id), db.transaction() as tx:
                tx.execute_returning("UPDATE users ...", (...))
                tx.execute_returning("INSERT INTO credit_transactions ...", (...))

        Nothing is committed if the block raises.
        """
        with self.get_connection() as conn:
            yield Transaction(conn)
            conn.commit()

    def close(self) -> None:
        """Close this DSN's pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()


class Transaction:
    """Statement runner bound to one checked-out connection; see PostgresClient.transaction()."""

    def __init__(self, conn):
        self._conn = conn

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """INSERT/UPDATE/DELETE with RETURNING, uncommitted until the block exits."""
        params = PostgresClient._convert_params(params)
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()]
