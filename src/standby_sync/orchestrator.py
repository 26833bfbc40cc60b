"""
Data sync orchestration.

This module provides the DataSyncOrchestrator class, which runs one sync
of every table in a schema: it opens the source snapshot, optionally
drops standby tables that no longer exist on main, and fans the tables
out over a fixed pool of workers.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Any

from opentelemetry import trace

from sync_utils.db_pool import BaseConnectionPool, PostgresConnectionPool, connect_postgres
from sync_utils.tracing import trace_operation

from .catalog import drop_table, list_tables
from .config import SyncConfig
from .errors import DataSyncError, TableSyncError
from .metrics import ACTIVE_WORKERS, EXTRA_TABLES_DROPPED, QUEUE_SIZE, RUN_TIME
from .models import SyncRunResult, TableSyncResult
from .snapshot import SourceSnapshot
from .state import WatermarkStore
from .strategies import TableSynchronizer

logger = logging.getLogger(__name__)


class FirstErrorLatch:
    """Holds the first failure reported by any worker; later ones are ignored."""

    def __init__(self):
        self._lock = threading.Lock()
        self.table: str | None = None
        self.error: Exception | None = None

    def set(self, table: str, error: Exception) -> bool:
        """Record a failure. Returns True if it was the first."""
        with self._lock:
            if self.error is not None:
                return False
            self.table = table
            self.error = error
            return True

    @property
    def is_set(self) -> bool:
        return self.error is not None


class DataSyncOrchestrator:
    """
    Runs one data sync across all tables of a schema.

    Each worker pulls table names from a shared queue and stops pulling
    after its first failure; sibling workers keep draining the queue.
    Any table failure fails the run, but target chunks that were already
    committed stay applied.
    """

    def __init__(
        self,
        config: SyncConfig,
        source_connect: Callable[[], Any],
        target_pool: BaseConnectionPool,
        synchronizer: TableSynchronizer | None = None,
    ):
        """
        Args:
            config: Run configuration
            source_connect: Factory returning a new connection to main
            target_pool: Pool of standby connections
            synchronizer: Per-table strategy runner (default: built from config)
        """
        self.config = config.validate()
        self.source_connect = source_connect
        self.target_pool = target_pool

        if synchronizer is None:
            watermarks = WatermarkStore(config.state_dir) if config.state_dir else None
            synchronizer = TableSynchronizer(config, watermarks=watermarks)
        self.synchronizer = synchronizer

        self._results_lock = threading.Lock()
        self._active_lock = threading.Lock()
        self._active = 0

    def run(self) -> SyncRunResult:
        """
        Run the sync.

        Returns:
            Per-table outcomes of a successful run

        Raises:
            DataSyncError: If any table failed; its result attribute holds
                the outcome of every table the run touched
        """
        workers = self.config.workers
        result = SyncRunResult(schema=self.config.schema, workers=workers)
        start = time.monotonic()

        with trace_operation(
            "data_sync_run",
            kind=trace.SpanKind.INTERNAL,
            schema=self.config.schema,
            workers=workers,
        ), RUN_TIME.time():
            try:
                with SourceSnapshot(self.source_connect) as snapshot:
                    self._run_in_snapshot(snapshot, result)
            finally:
                result.duration_seconds = time.monotonic() - start

        return result

    def _run_in_snapshot(self, snapshot: SourceSnapshot, result: SyncRunResult) -> None:
        schema = self.config.schema
        source_tables = list_tables(snapshot.cursor(), schema)
        tables = [t for t in source_tables if self.config.selects_table(t)]

        if not tables:
            logger.warning(f"No tables to synchronize in schema {schema}")
            snapshot.commit()
            return

        if self.config.clean_extra:
            result.dropped_tables = self.drop_extra_tables(source_tables)

        logger.info(
            f"Starting data sync of {len(tables)} tables in {schema} "
            f"with {self.config.workers} workers"
        )

        work: queue.Queue[str] = queue.Queue()
        for table in tables:
            work.put(table)
        QUEUE_SIZE.set(len(tables))

        latch = FirstErrorLatch()
        snapshot_time = snapshot.transaction_timestamp()

        with ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="sync-worker",
        ) as executor:
            futures = [
                executor.submit(self._worker, n, snapshot, work, latch, result, snapshot_time)
                for n in range(self.config.workers)
            ]
            for future in futures:
                future.result()

        QUEUE_SIZE.set(0)
        ACTIVE_WORKERS.set(0)

        if latch.is_set:
            snapshot.rollback()
            result.error = str(latch.error)
            totals = result.totals()
            logger.error(
                f"Data sync failed: {len(result.failed_tables)} of {len(tables)} tables "
                f"failed, first: {latch.error}"
            )
            logger.info(
                f"Applied before failure: +{totals['inserted']} / "
                f"~{totals['updated']} / -{totals['deleted']}"
            )
            raise DataSyncError(f"Data sync failed: {latch.error}", result=result)

        snapshot.commit()
        totals = result.totals()
        logger.info(
            f"Data sync complete: {len(result.tables)} tables, "
            f"+{totals['inserted']} / ~{totals['updated']} / -{totals['deleted']}"
        )

    def _worker(
        self,
        worker_id: int,
        snapshot: SourceSnapshot,
        work: "queue.Queue[str]",
        latch: FirstErrorLatch,
        result: SyncRunResult,
        snapshot_time: datetime | None,
    ) -> None:
        """Pull tables until the queue is empty or one of them fails."""
        try:
            with snapshot.attach() as conn, conn.cursor() as cursor:
                while True:
                    try:
                        table = work.get_nowait()
                    except queue.Empty:
                        return
                    QUEUE_SIZE.set(work.qsize())

                    if not self._sync_one(worker_id, cursor, table, latch, result, snapshot_time):
                        return
        except Exception as e:
            logger.error(f"Worker {worker_id} lost its source connection: {e}", exc_info=True)
            latch.set("(source snapshot)", e)

    def _sync_one(self, worker_id, cursor, table, latch, result, snapshot_time) -> bool:
        with self._active_lock:
            self._active += 1
            ACTIVE_WORKERS.set(self._active)

        try:
            table_result = self.synchronizer.select_and_sync(
                cursor, self.target_pool, table, snapshot_time=snapshot_time
            )
        except Exception as e:
            table_result = getattr(e, "result", None)
            if not isinstance(table_result, TableSyncResult):
                table_result = TableSyncResult(
                    table=f"{self.config.schema}.{table}", strategy="unknown", error=str(e)
                )
            self._record(result, table_result)
            if not isinstance(e, TableSyncError):
                e = TableSyncError(table_result.table, str(e), result=table_result)
            latch.set(table_result.table, e)
            logger.error(
                f"✗ Worker {worker_id} stopped after {table} failed: {e}",
                exc_info=True,
            )
            return False
        finally:
            with self._active_lock:
                self._active -= 1
                ACTIVE_WORKERS.set(self._active)

        self._record(result, table_result)
        return True

    def _record(self, result: SyncRunResult, table_result: TableSyncResult) -> None:
        with self._results_lock:
            result.tables.append(table_result)

    def drop_extra_tables(self, source_tables: list[str]) -> list[str]:
        """
        Drop standby tables absent from main, best effort.

        Returns:
            Names of the tables that were dropped
        """
        schema = self.config.schema
        keep = set(source_tables)
        dropped = []

        with self.target_pool.acquire() as conn:
            with conn.cursor() as cursor:
                target_tables = list_tables(cursor, schema)
                for table in target_tables:
                    if table in keep:
                        continue
                    try:
                        drop_table(cursor, schema, table)
                    except Exception as e:
                        logger.warning(f"Failed to drop extra table {schema}.{table}: {e}",
                                       exc_info=True)
                        continue
                    dropped.append(table)
                    EXTRA_TABLES_DROPPED.inc()

        if dropped:
            logger.info(f"Dropped {len(dropped)} extra tables from standby: {', '.join(dropped)}")
        return dropped


def run_data_sync(
    config: SyncConfig,
    source_connect: Callable[[], Any] | None = None,
    target_pool: BaseConnectionPool | None = None,
) -> SyncRunResult:
    """
    Run one data sync with the default strategy runner.

    Connections to main and the standby pool are built from the
    configured DSNs unless given; a pool built here is closed afterwards.

    Raises:
        DataSyncError: If any table failed
    """
    if source_connect is None:
        source_connect = partial(
            connect_postgres, config.source_dsn, application_name="standby-sync-main"
        )

    if target_pool is not None:
        return DataSyncOrchestrator(config, source_connect, target_pool).run()

    # one connection per worker plus one for the extra-table cleanup
    with PostgresConnectionPool(
        dsn=config.target_dsn,
        application_name="standby-sync-standin",
        min_size=1,
        max_size=max(1, config.workers) + 1,
        pool_name="standin",
    ) as pool:
        return DataSyncOrchestrator(config, source_connect, pool).run()
