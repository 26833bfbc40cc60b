"""
Change application against the standby database.

One chunk's change set is written as a single transaction: a batched
upsert of every inserted or updated row followed by a batched delete.
Statements are paged so that rows per statement times columns stays
under PostgreSQL's bind parameter ceiling.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import psycopg2
from opentelemetry import trace
from psycopg2 import sql
from psycopg2.extras import execute_values

from sync_utils.tracing import trace_operation

from .config import POSTGRES_MAX_PARAMETERS, DeletePolicy
from .errors import ApplyError
from .metrics import ROWS_APPLIED
from .models import ChangeSet, ChunkResult, TableDescriptor
from .scanner import key_in_predicate
from .snapshot import target_transaction

logger = logging.getLogger(__name__)


def build_upsert_query(table: TableDescriptor) -> sql.Composed:
    """
    INSERT ... VALUES %s ON CONFLICT for execute_values.

    Non-key columns are overwritten from EXCLUDED; a table whose columns
    are all key columns has nothing to update and uses DO NOTHING.
    """
    target = sql.Identifier(table.schema, table.name)
    columns = sql.SQL(", ").join(sql.Identifier(c) for c in table.columns)

    if not table.has_primary_key:
        return sql.SQL("INSERT INTO {} ({}) VALUES %s").format(target, columns)

    conflict = sql.SQL(", ").join(sql.Identifier(c) for c in table.primary_key)
    if table.non_key_columns:
        action = sql.SQL("DO UPDATE SET {}").format(
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                for c in table.non_key_columns
            )
        )
    else:
        action = sql.SQL("DO NOTHING")

    return sql.SQL("INSERT INTO {} ({}) VALUES %s ON CONFLICT ({}) {}").format(
        target, columns, conflict, action
    )


def build_delete_query(table: TableDescriptor) -> sql.Composed:
    target = sql.Identifier(table.schema, table.name)
    if not table.has_primary_key:
        return sql.SQL("DELETE FROM {} WHERE ctid = ANY(%s::tid[])").format(target)
    return sql.SQL("DELETE FROM {} WHERE {}").format(target, key_in_predicate(table))


class ChangeApplier:
    """
    Writes change sets to the standby database.

    The delete policy decides what a failed delete does to the rest of
    the chunk: BEST_EFFORT runs the delete inside a savepoint and keeps
    the upserts, STRICT rolls the whole chunk back.
    """

    def __init__(
        self,
        delete_policy: DeletePolicy = DeletePolicy.BEST_EFFORT,
        max_parameters: int = POSTGRES_MAX_PARAMETERS,
    ):
        self.delete_policy = DeletePolicy(delete_policy)
        self.max_parameters = max_parameters

    def page_size(self, table: TableDescriptor) -> int:
        """Rows per statement that keep the bind parameters under the ceiling."""
        return max(1, self.max_parameters // max(1, len(table.columns)))

    def apply(
        self,
        conn: Any,
        table: TableDescriptor,
        changes: ChangeSet,
        source_rows: Mapping[str, tuple],
        target_rows: Mapping[str, tuple],
        bounds: str = "",
    ) -> ChunkResult:
        """
        Apply one chunk's change set in a single target transaction.

        Args:
            conn: Standby connection (pooled, autocommit)
            table: Descriptor of the table
            changes: Classified keys of the chunk
            source_rows: Raw source rows by key, for inserts and updates
            target_rows: Raw target rows by key, for deletes
            bounds: Chunk label used in logs and errors

        Returns:
            Counters of what was written

        Raises:
            ApplyError: If the transaction could not be committed
        """
        result = ChunkResult()
        if changes.is_empty:
            return result

        with trace_operation(
            "apply_changes",
            kind=trace.SpanKind.CLIENT,
            table=table.qualified_name,
            bounds=bounds,
            inserts=len(changes.insert),
            updates=len(changes.update),
            deletes=len(changes.delete),
        ):
            try:
                with target_transaction(conn):
                    with conn.cursor() as cursor:
                        upsert_rows = [source_rows[k] for k in changes.upsert_keys]
                        delete_keys = self._delete_values(table, changes, target_rows)

                        # keyless rows are replaced, the stale copy goes first
                        if table.has_primary_key:
                            self._upsert(cursor, table, upsert_rows)
                        if delete_keys:
                            result.delete_failed = not self._delete_chunk(
                                cursor, table, delete_keys, bounds
                            )
                        if not table.has_primary_key:
                            self._upsert(cursor, table, upsert_rows)
            except psycopg2.Error as e:
                raise ApplyError(table.qualified_name, bounds, e) from e

        result.inserted = len(changes.insert)
        result.updated = len(changes.update)
        result.deleted = 0 if result.delete_failed else len(changes.delete)

        ROWS_APPLIED.labels(table=table.qualified_name, operation="insert").inc(result.inserted)
        ROWS_APPLIED.labels(table=table.qualified_name, operation="update").inc(result.updated)
        ROWS_APPLIED.labels(table=table.qualified_name, operation="delete").inc(result.deleted)
        return result

    def _upsert(self, cursor: Any, table: TableDescriptor, rows: Sequence[tuple]) -> None:
        if not rows:
            return
        execute_values(
            cursor,
            build_upsert_query(table),
            rows,
            page_size=self.page_size(table),
        )

    def _delete_values(
        self,
        table: TableDescriptor,
        changes: ChangeSet,
        target_rows: Mapping[str, tuple],
    ) -> list:
        """Target-side key values of the delete set, as the driver returned them."""
        keys = sorted(changes.delete)
        if not table.has_primary_key:
            return keys
        if table.pk_column is not None:
            index = table.pk_indexes[0]
            return [target_rows[k][index] for k in keys]
        indexes = table.pk_indexes
        return [tuple(target_rows[k][i] for i in indexes) for k in keys]

    def _delete(self, cursor: Any, table: TableDescriptor, values: list) -> None:
        query = build_delete_query(table)
        per_statement = max(1, self.max_parameters // max(1, len(table.primary_key)))
        for start in range(0, len(values), per_statement):
            batch = values[start:start + per_statement]
            param = list(batch) if not table.has_primary_key else tuple(batch)
            cursor.execute(query, (param,))

    def _delete_chunk(
        self,
        cursor: Any,
        table: TableDescriptor,
        values: list,
        bounds: str,
    ) -> bool:
        """
        Run the chunk's delete under the configured policy.

        Returns:
            False if a best-effort delete failed and was rolled back
        """
        if self.delete_policy is DeletePolicy.STRICT:
            self._delete(cursor, table, values)
            return True

        cursor.execute("SAVEPOINT chunk_delete")
        try:
            self._delete(cursor, table, values)
        except psycopg2.Error as e:
            cursor.execute("ROLLBACK TO SAVEPOINT chunk_delete")
            logger.warning(
                f"Delete of {len(values)} rows from {table.qualified_name} {bounds} "
                f"failed, keeping upserts: {e}",
                exc_info=True,
            )
            return False

        cursor.execute("RELEASE SAVEPOINT chunk_delete")
        return True
