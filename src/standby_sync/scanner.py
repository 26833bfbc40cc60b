"""
Range scanning.

Each scan selects full rows from one side and returns a ScanResult with
a fingerprint and the raw values per rendered key. The same functions
run independently against the source and the target; nothing here
joins across databases.

Tables without a primary key are keyed by their physical row id
(``ctid``). The row id is selected as an extra leading column and is
excluded from both the digest and the raw values.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import psycopg2
from opentelemetry import trace
from psycopg2 import sql

from sync_utils.tracing import trace_operation

from .errors import ScanError
from .fingerprint import render_key, row_digest
from .models import ScanResult, TableDescriptor

logger = logging.getLogger(__name__)

FETCH_SIZE = 2000
KEY_BATCH_SIZE = 1000


def _select_list(table: TableDescriptor) -> sql.Composable:
    columns = sql.SQL(", ").join(sql.Identifier(c) for c in table.columns)
    if table.has_primary_key:
        return columns
    return sql.SQL("ctid::text, {}").format(columns)


def _order_by(table: TableDescriptor) -> sql.Composable:
    if table.has_primary_key:
        return sql.SQL(" ORDER BY {}").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in table.primary_key)
        )
    return sql.SQL("")


def _base_query(table: TableDescriptor) -> sql.Composed:
    return sql.SQL("SELECT {} FROM {}").format(
        _select_list(table), sql.Identifier(table.schema, table.name)
    )


def key_in_predicate(table: TableDescriptor) -> sql.Composed:
    """
    ``(key columns) IN %s`` for a tuple of key values.

    psycopg2 renders the tuple as untyped literals, so PostgreSQL reads
    them as the key column's own type (uuid, enum, text, ...). A typed
    array parameter would arrive as text[] and fail to compare with a
    uuid key.
    """
    return sql.SQL("({}) IN %s").format(
        sql.SQL(", ").join(sql.Identifier(c) for c in table.primary_key)
    )


def _collect(cursor: Any, table: TableDescriptor, result: ScanResult) -> ScanResult:
    """Stream the cursor's rows into result."""
    pk_indexes = table.pk_indexes
    while True:
        batch = cursor.fetchmany(FETCH_SIZE)
        if not batch:
            break
        for row in batch:
            if table.has_primary_key:
                values = tuple(row)
                key = render_key(tuple(values[i] for i in pk_indexes))
            else:
                key, values = row[0], tuple(row[1:])
            result.add(key, row_digest(values), values)
    return result


def _run_scan(
    cursor: Any,
    table: TableDescriptor,
    query: sql.Composable,
    params: Sequence,
    side: str,
    bounds: Any,
) -> ScanResult:
    with trace_operation(
        "scan_rows",
        kind=trace.SpanKind.CLIENT,
        side=side,
        table=table.qualified_name,
        bounds=bounds,
    ) as span:
        try:
            cursor.execute(query, params)
            result = _collect(cursor, table, ScanResult())
        except psycopg2.Error as e:
            raise ScanError(side, table.qualified_name, bounds, e) from e

        span.set_attribute("rows", len(result))
        logger.debug(f"Scanned {len(result)} rows from {side} {table.qualified_name} {bounds}")
        return result


def scan_range(
    cursor: Any,
    table: TableDescriptor,
    lo: int,
    hi: int,
    side: str = "source",
) -> ScanResult:
    """
    Scan rows whose single-column key lies in [lo, hi].

    Raises:
        ValueError: If the table has no single-column primary key
        ScanError: If the query fails
    """
    if table.pk_column is None:
        raise ValueError(f"{table.qualified_name} has no single-column primary key")

    query = sql.SQL("{} WHERE {} BETWEEN %s AND %s{}").format(
        _base_query(table), sql.Identifier(table.pk_column), _order_by(table)
    )
    return _run_scan(cursor, table, query, (lo, hi), side, f"[{lo}, {hi}]")


def scan_table(cursor: Any, table: TableDescriptor, side: str = "source") -> ScanResult:
    """Scan every row of a table as one unbounded chunk."""
    query = sql.SQL("{}{}").format(_base_query(table), _order_by(table))
    return _run_scan(cursor, table, query, (), side, "(all)")


def scan_modified_since(
    cursor: Any,
    table: TableDescriptor,
    column: str,
    since: datetime | None,
    side: str = "source",
) -> ScanResult:
    """
    Scan rows whose modification timestamp is later than since.

    A None watermark selects every row, which is what a first
    incremental run needs.
    """
    if since is None:
        return scan_table(cursor, table, side)

    query = sql.SQL("{} WHERE {} > %s{}").format(
        _base_query(table), sql.Identifier(column), _order_by(table)
    )
    return _run_scan(cursor, table, query, (since,), side, f"({column} > {since.isoformat()})")


def scan_keys(
    cursor: Any,
    table: TableDescriptor,
    key_rows: Iterable[tuple],
    side: str = "target",
) -> ScanResult:
    """
    Scan the rows matching a set of primary-key values.

    Args:
        cursor: Database cursor
        table: Descriptor of a table with a primary key
        key_rows: Raw key tuples, one value per key column
        side: Label used in logs and errors

    Returns:
        Rows found, keyed like any other scan; missing keys are absent
    """
    if not table.has_primary_key:
        raise ValueError(f"{table.qualified_name} has no primary key")

    keys = list(key_rows)
    result = ScanResult()

    query = sql.SQL("{} WHERE {}").format(_base_query(table), key_in_predicate(table))

    for start in range(0, len(keys), KEY_BATCH_SIZE):
        batch = keys[start:start + KEY_BATCH_SIZE]
        if table.pk_column is not None:
            param = tuple(k[0] for k in batch)
        else:
            param = tuple(batch)

        bounds = f"({len(batch)} keys)"
        try:
            cursor.execute(query, (param,))
            _collect(cursor, table, result)
        except psycopg2.Error as e:
            raise ScanError(side, table.qualified_name, bounds, e) from e

    return result


def min_max(cursor: Any, table: TableDescriptor) -> tuple[int, int] | None:
    """
    Get the smallest and largest single-column key value.

    Returns:
        (lo, hi), or None when the table is empty
    """
    if table.pk_column is None:
        raise ValueError(f"{table.qualified_name} has no single-column primary key")

    pk = sql.Identifier(table.pk_column)
    query = sql.SQL("SELECT MIN({}), MAX({}) FROM {}").format(
        pk, pk, sql.Identifier(table.schema, table.name)
    )
    try:
        cursor.execute(query)
        row = cursor.fetchone()
    except psycopg2.Error as e:
        raise ScanError("source", table.qualified_name, "(bounds)", e) from e

    if row is None or row[0] is None or row[1] is None or row[1] < row[0]:
        return None
    return row[0], row[1]
