"""
Per-table strategy selection and the sync strategies.

A table with a single integer primary key is synchronized in
consecutive key ranges; any other table is diffed as one unbounded
chunk. Timestamp-incremental mode reads only rows modified after the
table's watermark, and FDW mode leaves tables to an out-of-band copy.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from opentelemetry import trace

from sync_utils.db_pool import BaseConnectionPool
from sync_utils.logging import ContextLogger
from sync_utils.tracing import trace_operation

from .applier import ChangeApplier
from .catalog import describe_table
from .config import SyncConfig
from .differ import diff, diff_multiset
from .errors import ChunkSyncError, TableSyncError
from .metrics import CHUNK_TIME, CHUNKS_PROCESSED, TABLES_PROCESSED
from .models import ChangeSet, ChunkResult, TableDescriptor, TableSyncResult
from .scanner import min_max, scan_keys, scan_modified_since, scan_range, scan_table
from .state import WatermarkStore

logger = logging.getLogger(__name__)

STRATEGY_CHUNKED = "chunked"
STRATEGY_FULL_DIFF = "full_diff"
STRATEGY_INCREMENTAL = "incremental"
STRATEGY_FDW = "fdw"
STRATEGY_SKIPPED = "skipped"


def chunk_intervals(lo: int, hi: int, size: int) -> Iterator[tuple[int, int]]:
    """
    Split [lo, hi] into consecutive closed intervals of size keys.

    The last interval may be shorter. chunk_intervals(3, 10, 4) yields
    (3, 6) and (7, 10).
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")

    start = lo
    while start <= hi:
        end = min(start + size - 1, hi)
        yield start, end
        start = end + 1


@contextmanager
def _savepoint(cursor: Any, name: str) -> Iterator[None]:
    """Keep a failed read from aborting the surrounding source transaction."""
    cursor.execute(f"SAVEPOINT {name}")
    try:
        yield
    except Exception:
        cursor.execute(f"ROLLBACK TO SAVEPOINT {name}")
        raise
    cursor.execute(f"RELEASE SAVEPOINT {name}")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TableSynchronizer:
    """
    Chooses and runs the sync strategy of one table.

    One instance is shared by all workers of a run; it holds no
    per-table state.
    """

    def __init__(
        self,
        config: SyncConfig,
        applier: ChangeApplier | None = None,
        watermarks: WatermarkStore | None = None,
    ):
        """
        Args:
            config: Run configuration
            applier: Change applier (default: built from config)
            watermarks: Store of per-table incremental watermarks
        """
        self.config = config
        self.applier = applier or ChangeApplier(config.delete_policy, config.max_parameters)
        self.watermarks = watermarks

    def select_strategy(self, table: TableDescriptor) -> str:
        """Strategy name for a described table."""
        if self.config.fdw_mode:
            return STRATEGY_FDW
        if self.config.use_updated_at:
            if table.has_primary_key and self.config.updated_at_column in table.columns:
                return STRATEGY_INCREMENTAL
            logger.warning(
                f"{table.qualified_name} has no primary key or no "
                f"{self.config.updated_at_column} column, not using incremental sync"
            )
        if table.single_numeric_pk:
            return STRATEGY_CHUNKED
        return STRATEGY_FULL_DIFF

    def select_and_sync(
        self,
        source_cursor: Any,
        target_pool: BaseConnectionPool,
        table_name: str,
        snapshot_time: datetime | None = None,
    ) -> TableSyncResult:
        """
        Synchronize one table with the strategy its key shape calls for.

        Args:
            source_cursor: Cursor inside the run's source snapshot
            target_pool: Pool of standby connections
            table_name: Unqualified table name in the configured schema
            snapshot_time: Time of the source snapshot, stored as the
                next incremental watermark

        Returns:
            Counters of the table's sync

        Raises:
            TableSyncError: If the table could not be fully synchronized;
                its result attribute holds the partial counters
        """
        qualified = f"{self.config.schema}.{table_name}"
        start = time.monotonic()

        if self.config.fdw_mode:
            logger.info(f"FDW mode enabled, {qualified} is copied out of band")
            TABLES_PROCESSED.labels(strategy=STRATEGY_FDW, status="success").inc()
            return TableSyncResult(table=qualified, strategy=STRATEGY_FDW)

        result = TableSyncResult(table=qualified, strategy="unknown")

        with trace_operation(
            "sync_table",
            kind=trace.SpanKind.INTERNAL,
            table=qualified,
        ) as span:
            try:
                with _savepoint(source_cursor, "describe_table"):
                    table = describe_table(source_cursor, self.config.schema, table_name)

                if not table.columns:
                    logger.warning(f"{qualified} has no columns, skipping")
                    result.strategy = STRATEGY_SKIPPED
                    result.duration_seconds = time.monotonic() - start
                    span.set_attribute("strategy", result.strategy)
                    TABLES_PROCESSED.labels(strategy=STRATEGY_SKIPPED, status="success").inc()
                    return result

                result.strategy = self.select_strategy(table)
                span.set_attribute("strategy", result.strategy)
                logger.info(f"Synchronizing {qualified} using {result.strategy} strategy")

                if result.strategy == STRATEGY_CHUNKED:
                    self.sync_by_chunks(source_cursor, target_pool, table, result)
                elif result.strategy == STRATEGY_INCREMENTAL:
                    self.sync_incremental(
                        source_cursor, target_pool, table, result, snapshot_time
                    )
                else:
                    self.sync_full_diff(source_cursor, target_pool, table, result)

            except Exception as e:
                result.error = str(e)
                result.duration_seconds = time.monotonic() - start
                TABLES_PROCESSED.labels(strategy=result.strategy, status="failed").inc()
                if isinstance(e, TableSyncError):
                    e.result = result
                    raise
                raise TableSyncError(qualified, str(e), result=result) from e

        result.duration_seconds = time.monotonic() - start
        TABLES_PROCESSED.labels(strategy=result.strategy, status="success").inc()
        logger.info(
            f"✓ {qualified} synchronized in {result.duration_seconds:.2f}s: "
            f"+{result.inserted} / ~{result.updated} / -{result.deleted}"
        )
        return result

    def sync_by_chunks(
        self,
        source_cursor: Any,
        target_pool: BaseConnectionPool,
        table: TableDescriptor,
        result: TableSyncResult,
    ) -> None:
        """
        Synchronize a single-integer-key table range by range.

        A failed range is logged and the remaining ranges still run; the
        table is reported failed after the loop.

        Raises:
            ChunkSyncError: If any range failed
        """
        log = ContextLogger(__name__, table=table.qualified_name)

        with _savepoint(source_cursor, "key_bounds"):
            bounds = min_max(source_cursor, table)
        if bounds is None:
            log.info(f"{table.qualified_name} is empty on main, nothing to chunk")
            return

        lo, hi = bounds
        log.info(
            f"Chunking {table.qualified_name} on {table.pk_column} "
            f"[{lo}, {hi}] by {self.config.chunk_size}"
        )
        first_error: Exception | None = None

        for chunk_lo, chunk_hi in chunk_intervals(lo, hi, self.config.chunk_size):
            result.chunks += 1
            try:
                chunk = self._sync_range(
                    source_cursor, target_pool, table, chunk_lo, chunk_hi, log
                )
            except Exception as e:
                result.failed_chunks += 1
                if first_error is None:
                    first_error = e
                CHUNKS_PROCESSED.labels(table=table.qualified_name, status="failed").inc()
                log.error(
                    f"✗ Chunk [{chunk_lo}, {chunk_hi}] of {table.qualified_name} failed: {e}",
                    exc_info=True,
                    lo=chunk_lo,
                    hi=chunk_hi,
                )
                continue
            result.add_chunk(chunk)

        if first_error is not None:
            raise ChunkSyncError(table.qualified_name, result.failed_chunks, first_error)

    def _sync_range(
        self,
        source_cursor: Any,
        target_pool: BaseConnectionPool,
        table: TableDescriptor,
        lo: int,
        hi: int,
        log: ContextLogger,
    ) -> ChunkResult:
        label = f"[{lo}, {hi}]"
        with trace_operation(
            "sync_chunk",
            kind=trace.SpanKind.INTERNAL,
            table=table.qualified_name,
            lo=lo,
            hi=hi,
        ), CHUNK_TIME.labels(table=table.qualified_name).time():
            with _savepoint(source_cursor, "scan_chunk"):
                source = scan_range(source_cursor, table, lo, hi, side="source")

            with target_pool.acquire() as conn:
                with conn.cursor() as target_cursor:
                    target = scan_range(target_cursor, table, lo, hi, side="target")

                changes = diff(source.fingerprints, target.fingerprints)
                if changes.is_empty:
                    CHUNKS_PROCESSED.labels(table=table.qualified_name, status="unchanged").inc()
                    log.debug(f"Chunk {label} unchanged", lo=lo, hi=hi)
                    return ChunkResult()

                chunk = self.applier.apply(
                    conn, table, changes, source.rows, target.rows, bounds=label
                )

        CHUNKS_PROCESSED.labels(table=table.qualified_name, status="applied").inc()
        log.info(f"Chunk {label} of {table.qualified_name}: {changes}", lo=lo, hi=hi)
        return chunk

    def sync_full_diff(
        self,
        source_cursor: Any,
        target_pool: BaseConnectionPool,
        table: TableDescriptor,
        result: TableSyncResult,
    ) -> None:
        """
        Synchronize a table as one unbounded chunk.

        Keyless tables are matched by row content with multiplicity.
        """
        with trace_operation(
            "sync_chunk",
            kind=trace.SpanKind.INTERNAL,
            table=table.qualified_name,
            lo="(all)",
        ), CHUNK_TIME.labels(table=table.qualified_name).time():
            with _savepoint(source_cursor, "scan_table"):
                source = scan_table(source_cursor, table, side="source")

            with target_pool.acquire() as conn:
                with conn.cursor() as target_cursor:
                    target = scan_table(target_cursor, table, side="target")

                if table.has_primary_key:
                    changes = diff(source.fingerprints, target.fingerprints)
                else:
                    insert_keys, delete_keys = diff_multiset(
                        source.fingerprints, target.fingerprints
                    )
                    changes = ChangeSet(insert=set(insert_keys), delete=set(delete_keys))

                result.chunks += 1
                if changes.is_empty:
                    CHUNKS_PROCESSED.labels(table=table.qualified_name, status="unchanged").inc()
                    logger.info(f"{table.qualified_name} unchanged")
                    return

                chunk = self.applier.apply(
                    conn, table, changes, source.rows, target.rows, bounds="(all)"
                )

        result.add_chunk(chunk)
        CHUNKS_PROCESSED.labels(table=table.qualified_name, status="applied").inc()
        logger.info(f"{table.qualified_name} (all): {changes}")

    def effective_watermark(self, table: TableDescriptor) -> datetime | None:
        """
        Later of the configured watermark and the table's stored one.

        Naive values are only read as UTC to rank them; the winner is
        returned as given, so a naive watermark is bound as a plain
        timestamp and compared with the column in its own terms.
        """
        candidates = [self.config.last_sync_time]
        if self.watermarks is not None:
            candidates.append(self.watermarks.get(table.qualified_name))
        known = [c for c in candidates if c is not None]
        return max(known, key=_as_utc) if known else None

    def sync_incremental(
        self,
        source_cursor: Any,
        target_pool: BaseConnectionPool,
        table: TableDescriptor,
        result: TableSyncResult,
        snapshot_time: datetime | None = None,
    ) -> None:
        """
        Synchronize rows modified after the table's watermark.

        Only inserts and updates are produced: rows outside the window,
        including rows deleted on main, are left alone.
        """
        watermark = self.effective_watermark(table)
        column = self.config.updated_at_column
        label = f"({column} > {watermark.isoformat() if watermark else '-infinity'})"

        with trace_operation(
            "sync_chunk",
            kind=trace.SpanKind.INTERNAL,
            table=table.qualified_name,
            lo=label,
        ), CHUNK_TIME.labels(table=table.qualified_name).time():
            with _savepoint(source_cursor, "scan_modified"):
                source = scan_modified_since(
                    source_cursor, table, column, watermark, side="source"
                )

            pk_indexes = table.pk_indexes
            key_rows = [tuple(row[i] for i in pk_indexes) for row in source.rows.values()]

            result.chunks += 1
            changes = ChangeSet()
            if key_rows:
                with target_pool.acquire() as conn:
                    with conn.cursor() as target_cursor:
                        target = scan_keys(target_cursor, table, key_rows, side="target")

                    found = diff(source.fingerprints, target.fingerprints)
                    changes = ChangeSet(insert=found.insert, update=found.update)

                    if not changes.is_empty:
                        chunk = self.applier.apply(
                            conn, table, changes, source.rows, target.rows, bounds=label
                        )
                        result.add_chunk(chunk)

        status = "unchanged" if changes.is_empty else "applied"
        CHUNKS_PROCESSED.labels(table=table.qualified_name, status=status).inc()
        logger.info(f"{table.qualified_name} {label}: {changes}")

        if self.watermarks is not None and snapshot_time is not None:
            self.watermarks.save(table.qualified_name, snapshot_time, rows=changes.total)
