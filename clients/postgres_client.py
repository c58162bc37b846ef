"""
PostgreSQL access for the auth layer.

One ThreadedConnectionPool per client. Every connection handed out carries
the admitted user id (from the request contextvar) as the
``app.current_user_id`` setting, which is what row-level security on the
homeschool domain tables (assignments, lessons, progress) keys on.

The auth tables themselves (users, security_events) have no RLS: they are
read while resolving who the caller is, before any user id exists.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

from utils.user_context import _current_user_id

logger = logging.getLogger(__name__)

# uuid.UUID params in, uuid columns out as uuid.UUID
psycopg2.extras.register_uuid()
psycopg2.extras.register_default_jsonb(globally=True)

Params = Tuple | Dict | None


class PostgresClient:
    """
    Pooled PostgreSQL client. Every statement commits on success and rolls
    back on error before the connection returns to the pool.

    Usage:
        db = PostgresClient(database_url)
        row = db.execute_single("SELECT * FROM users WHERE email = %s", (email,))
        claimed = db.execute_returning(
            "UPDATE users SET password_reset_token = NULL WHERE ... RETURNING id", (...)
        )
    """

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=minconn,
            maxconn=maxconn,
            dsn=database_url,
            connect_timeout=30,
        )
        logger.info(f"Postgres pool ready ({minconn}-{maxconn} connections)")

    @contextmanager
    def get_connection(self) -> Iterator[psycopg2.extensions.connection]:
        """Borrow a connection scoped to the current user id."""
        if self._pool.closed:
            raise RuntimeError("Postgres pool is closed")

        conn = self._pool.getconn()
        try:
            user_id = _current_user_id.get()
            with conn.cursor() as cur:
                # '' fails the ::uuid cast in RLS policies, so no rows match
                cur.execute(
                    "SELECT set_config('app.current_user_id', %s, false)",
                    (str(user_id) if user_id is not None else "",),
                )
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run any statement. Rows as dicts, empty when it returns none."""
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                if cur.description is None:
                    return []
                return [dict(row) for row in cur.fetchall()]

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Write with RETURNING. The rows are the ones this statement changed.

        A conditional UPDATE ... RETURNING is how single-use tokens get
        claimed: of two concurrent callers only one gets a row back.
        """
        return self.execute(query, params)

    def close(self) -> None:
        if not self._pool.closed:
            self._pool.closeall()
            logger.info("Postgres pool closed")
