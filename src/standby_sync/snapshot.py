"""
Source snapshot and target transaction handling.

A sync run reads the main database through one exported snapshot. The
coordinator connection holds a REPEATABLE READ transaction open for the
whole run and exports it with pg_export_snapshot(); every worker opens
its own read-only connection and imports that snapshot, so all workers
read the same point in time without sharing a connection.

Target writes are not snapshotted: each chunk is its own transaction on
a pooled autocommit connection.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg2
import psycopg2.extensions
from opentelemetry import trace

from sync_utils.tracing import trace_operation

logger = logging.getLogger(__name__)

ISOLATION_REPEATABLE_READ = psycopg2.extensions.ISOLATION_LEVEL_REPEATABLE_READ


class SourceSnapshot:
    """
    A consistent read snapshot of the main database for one run.

    Usage:
        with SourceSnapshot(connect) as snapshot:
            tables = list_tables(snapshot.cursor(), "public")
            with snapshot.attach() as conn:
                ...
            snapshot.commit()
    """

    def __init__(self, connect: Callable[[], Any]):
        """
        Args:
            connect: Factory returning a new psycopg2 connection to the
                main database
        """
        self._connect = connect
        self._conn = None
        self._cursor = None
        self.snapshot_id: str | None = None
        self._timestamp: datetime | None = None

    def open(self) -> "SourceSnapshot":
        """Begin the coordinator transaction and export its snapshot."""
        with trace_operation("open_source_snapshot", kind=trace.SpanKind.CLIENT):
            conn = self._connect()
            try:
                conn.set_session(isolation_level=ISOLATION_REPEATABLE_READ, readonly=False)
                cursor = conn.cursor()
                cursor.execute("SELECT pg_export_snapshot(), transaction_timestamp()")
                self.snapshot_id, self._timestamp = cursor.fetchone()
            except Exception:
                conn.close()
                raise

            self._conn = conn
            self._cursor = cursor
            logger.info(f"Opened source snapshot {self.snapshot_id}")
            return self

    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def cursor(self) -> Any:
        """Cursor of the coordinator transaction."""
        if not self.is_open:
            raise RuntimeError("Source snapshot is not open")
        return self._cursor

    def transaction_timestamp(self) -> datetime | None:
        """Start time of the snapshot transaction."""
        return self._timestamp

    @contextmanager
    def attach(self) -> Iterator[Any]:
        """
        Open a worker connection reading the same snapshot.

        Yields:
            Connection inside a REPEATABLE READ READ ONLY transaction that
            imported the run's snapshot. The transaction is rolled back
            and the connection closed on exit.
        """
        if not self.is_open:
            raise RuntimeError("Source snapshot is not open")

        conn = self._connect()
        try:
            conn.set_session(isolation_level=ISOLATION_REPEATABLE_READ, readonly=True)
            with conn.cursor() as cursor:
                # must be the first statement of the transaction
                cursor.execute("SET TRANSACTION SNAPSHOT %s", (self.snapshot_id,))
            yield conn
        finally:
            if not conn.closed:
                conn.rollback()
                conn.close()

    def commit(self) -> None:
        if self.is_open:
            self._conn.commit()
            logger.info(f"Committed source snapshot {self.snapshot_id}")

    def rollback(self) -> None:
        if self.is_open:
            self._conn.rollback()
            logger.info(f"Rolled back source snapshot {self.snapshot_id}")

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None
        self._cursor = None

    def __enter__(self) -> "SourceSnapshot":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.close()


@contextmanager
def target_transaction(conn: Any, isolation: int | None = None) -> Iterator[Any]:
    """
    Run a unit of work as one transaction on a pooled autocommit connection.

    Commits on success and rolls back on error; the connection's
    autocommit mode and isolation level are restored either way.

    Args:
        conn: psycopg2 connection, normally in autocommit mode
        isolation: Optional psycopg2 isolation level for this transaction
    """
    previous_autocommit = conn.autocommit
    conn.autocommit = False
    if isolation is not None:
        conn.set_session(isolation_level=isolation)

    try:
        yield conn
        conn.commit()
    except Exception:
        if not conn.closed:
            conn.rollback()
        raise
    finally:
        if not conn.closed:
            if isolation is not None:
                conn.set_session(isolation_level="DEFAULT")
            conn.autocommit = previous_autocommit
