"""PostgreSQL connection pool and single-connection helpers."""

import logging
from typing import Any

import psycopg2
import psycopg2.extensions
from opentelemetry import trace

from sync_utils.retry import retry_database_operation
from sync_utils.tracing import trace_operation

from .base import BaseConnectionPool

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10


def _dsn_host(dsn: str) -> str:
    try:
        params = psycopg2.extensions.parse_dsn(dsn)
    except psycopg2.ProgrammingError:
        return "unknown"
    return f"{params.get('host', 'localhost')}/{params.get('dbname', '')}"


@retry_database_operation(max_retries=3, base_delay=1.0)
def connect_postgres(dsn: str, application_name: str = "standby-sync") -> psycopg2.extensions.connection:
    """
    Open a single PostgreSQL connection and ping it.

    Transient failures (server starting up, refused connections) are
    retried with backoff.

    Args:
        dsn: libpq connection string or URI
        application_name: Reported in pg_stat_activity

    Returns:
        Open psycopg2 connection in the driver's default (transactional) mode
    """
    with trace_operation(
        "postgres_connect",
        kind=trace.SpanKind.CLIENT,
        db=_dsn_host(dsn),
    ):
        conn = psycopg2.connect(
            dsn,
            connect_timeout=CONNECT_TIMEOUT_SECONDS,
            application_name=application_name,
        )
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        conn.rollback()
        return conn


class PostgresConnectionPool(BaseConnectionPool):
    """
    Connection pool for PostgreSQL databases.

    Pooled connections are in autocommit mode; callers that need a
    transaction switch it on for the duration of their unit of work.
    """

    def __init__(
        self,
        dsn: str,
        application_name: str = "standby-sync",
        **kwargs: Any,
    ):
        """
        Initialize PostgreSQL connection pool.

        Args:
            dsn: libpq connection string or URI
            application_name: Reported in pg_stat_activity
            **kwargs: Additional arguments for BaseConnectionPool
        """
        self.dsn = dsn
        self.application_name = application_name

        super().__init__(**kwargs)

    def _create_connection(self) -> psycopg2.extensions.connection:
        """Create a new PostgreSQL connection."""
        conn = connect_postgres(self.dsn, application_name=self.application_name)
        conn.autocommit = True
        return conn

    def _is_connection_healthy(self, conn: psycopg2.extensions.connection) -> bool:
        """Check if PostgreSQL connection is healthy."""
        if conn is None or conn.closed:
            return False

        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except (psycopg2.Error, psycopg2.Warning) as e:
            logger.debug(f"PostgreSQL health check failed: {e}")
            return False

    def _close_connection(self, conn: psycopg2.extensions.connection) -> None:
        """Close PostgreSQL connection."""
        if conn is not None and not conn.closed:
            conn.close()
