"""
Postgres connection management for the profile store.

Provides a thread-safe connection pool and a transaction context manager.
The account provisioning flow relies on Postgres enforcing UNIQUE
constraints, so this is the one place the schema is defined.

Using the repository pattern means most code never touches this module
directly - it goes through ProfileRepository which handles the translation
between domain models and database rows.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id                  TEXT PRIMARY KEY,
    email               TEXT NOT NULL,
    username            TEXT,
    full_name           TEXT,
    role                TEXT,
    birthday            DATE,
    borough             TEXT,
    idempotency_key     TEXT,
    device_fingerprint  TEXT,
    performance_types   TEXT[],
    social_media_links  JSONB,
    is_active           BOOLEAN NOT NULL DEFAULT TRUE,
    is_verified         BOOLEAN NOT NULL DEFAULT FALSE,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT profiles_idempotency_key_key UNIQUE (idempotency_key),
    CONSTRAINT profiles_email_key UNIQUE (email)
);

CREATE UNIQUE INDEX IF NOT EXISTS profiles_username_lower_idx
    ON profiles (lower(username));
"""


class PostgresConnectionError(Exception):
    """Raised when a Postgres connection cannot be obtained."""
    pass


@dataclass
class PostgresConfig:
    """Configuration for the Postgres connection pool."""
    dsn: str
    min_connections: int = 1
    max_connections: int = 10


class PostgresConnectionPool:
    """
    Pooled connections, shared by every request thread.

    FastAPI runs sync handlers in a threadpool, so the pool must be
    thread-safe; psycopg2's ThreadedConnectionPool is.
    """

    def __init__(self, config: PostgresConfig) -> None:
        try:
            self._pool = ThreadedConnectionPool(
                config.min_connections,
                config.max_connections,
                dsn=config.dsn,
            )
        except psycopg2.Error as e:
            logger.error("Postgres connection failed", extra={"error": str(e)})
            raise PostgresConnectionError(f"Database connection failed: {e}") from e

        logger.info(
            "Initialized Postgres connection pool",
            extra={"max_connections": config.max_connections}
        )

    @contextmanager
    def transaction(self) -> Generator[RealDictCursor, None, None]:
        """
        Yield a dict cursor inside one transaction.

        Commits on clean exit, rolls back on any exception, and always
        returns the connection to the pool.

        Usage:
            with pool.transaction() as cursor:
                cursor.execute("INSERT ...")
        """
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def ping(self) -> bool:
        """Readiness check: can we run a trivial query?"""
        try:
            with self.transaction() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except Exception as e:
            logger.warning("Postgres ping failed", extra={"error": str(e)})
            return False

    def create_schema(self) -> None:
        with self.transaction() as cursor:
            cursor.execute(SCHEMA_SQL)
        logger.info("Ensured profile schema")

    def close(self) -> None:
        self._pool.closeall()
        logger.debug("Closed Postgres connection pool")
