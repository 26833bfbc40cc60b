"""
Catalog inspection.

Read-only queries against information_schema and pg_catalog that
describe the tables of one schema. Every function takes a DB-API cursor
so the same code runs against both databases.
"""

import logging
from typing import Any

import psycopg2
from opentelemetry import trace
from psycopg2 import sql

from sync_utils.tracing import trace_operation

from .errors import CatalogError
from .models import TableDescriptor

logger = logging.getLogger(__name__)

LIST_TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

LIST_COLUMNS_QUERY = """
    SELECT column_name
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""

INTEGER_TYPES = frozenset({"smallint", "integer", "bigint"})

# array_position keeps composite keys in index order, not attnum order
PRIMARY_KEY_QUERY = """
    SELECT a.attname, format_type(a.atttypid, a.atttypmod)
    FROM pg_index i
    JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    WHERE i.indrelid = (quote_ident(%s) || '.' || quote_ident(%s))::regclass
      AND i.indisprimary
    ORDER BY array_position(i.indkey, a.attnum)
"""


def list_tables(cursor: Any, schema: str) -> list[str]:
    """
    List base tables of a schema, ordered by name.

    Raises:
        CatalogError: If the catalog query fails
    """
    try:
        cursor.execute(LIST_TABLES_QUERY, (schema,))
        return [row[0] for row in cursor.fetchall()]
    except psycopg2.Error as e:
        raise CatalogError(f"Failed to list tables in schema {schema}: {e}") from e


def list_columns(cursor: Any, schema: str, table: str) -> list[str]:
    """
    List a table's columns in ordinal order.

    A table created without columns yields an empty list.

    Raises:
        CatalogError: If the catalog query fails
    """
    try:
        cursor.execute(LIST_COLUMNS_QUERY, (schema, table))
        return [row[0] for row in cursor.fetchall()]
    except psycopg2.Error as e:
        raise CatalogError(f"Failed to list columns of {schema}.{table}: {e}") from e


def get_primary_key(cursor: Any, schema: str, table: str) -> tuple[list[str], bool]:
    """
    Get primary key columns of a table.

    Args:
        cursor: Database cursor
        schema: Schema name
        table: Table name

    Returns:
        (key columns in index order, whether the key is one integer column).
        A table without a primary key yields ([], False).

    Raises:
        CatalogError: If the catalog query fails
    """
    try:
        cursor.execute(PRIMARY_KEY_QUERY, (schema, table))
        rows = cursor.fetchall()
    except psycopg2.Error as e:
        raise CatalogError(f"Failed to read primary key of {schema}.{table}: {e}") from e

    columns = [row[0] for row in rows]
    single_numeric = len(rows) == 1 and rows[0][1].lower() in INTEGER_TYPES
    return columns, single_numeric


def describe_table(cursor: Any, schema: str, table: str) -> TableDescriptor:
    """
    Build the descriptor of one table.

    A failed primary-key lookup is not fatal: the table is described as
    keyless and will be synchronized with a full diff. The lookup runs
    inside a savepoint, so cursor must belong to an open transaction.

    Raises:
        CatalogError: If the column list cannot be read
    """
    with trace_operation(
        "describe_table",
        kind=trace.SpanKind.CLIENT,
        table=f"{schema}.{table}",
    ):
        columns = list_columns(cursor, schema, table)

        cursor.execute("SAVEPOINT describe_pk")
        try:
            primary_key, single_numeric = get_primary_key(cursor, schema, table)
        except CatalogError as e:
            cursor.execute("ROLLBACK TO SAVEPOINT describe_pk")
            logger.warning(f"Primary key lookup failed for {schema}.{table}, using full diff: {e}")
            primary_key, single_numeric = [], False
        cursor.execute("RELEASE SAVEPOINT describe_pk")

        return TableDescriptor(
            schema=schema,
            name=table,
            columns=tuple(columns),
            primary_key=tuple(primary_key),
            single_numeric_pk=single_numeric,
        )


def drop_table(cursor: Any, schema: str, table: str) -> None:
    """Drop a table and everything depending on it."""
    query = sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(sql.Identifier(schema, table))
    cursor.execute(query)
    logger.info(f"Dropped table {schema}.{table}")
