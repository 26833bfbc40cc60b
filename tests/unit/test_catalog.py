"""
Unit tests for catalog inspection

Tests verify:
- Table and column listing
- Primary key discovery and integer-key detection
- Keyless fallback when the key lookup fails
- Table drops
"""

from unittest.mock import MagicMock

import psycopg2
import pytest

from standby_sync.catalog import (
    LIST_COLUMNS_QUERY,
    PRIMARY_KEY_QUERY,
    describe_table,
    drop_table,
    get_primary_key,
    list_columns,
    list_tables,
)
from standby_sync.errors import CatalogError


def catalog_cursor(columns, pk_rows=None, pk_error=None):
    """Cursor answering the column and primary-key queries."""
    cursor = MagicMock()
    state = {}

    def execute(query, params=None):
        state["query"] = query
        if query == PRIMARY_KEY_QUERY and pk_error is not None:
            raise pk_error

    def fetchall():
        if state["query"] == LIST_COLUMNS_QUERY:
            return [(c,) for c in columns]
        if state["query"] == PRIMARY_KEY_QUERY:
            return pk_rows or []
        return []

    cursor.execute.side_effect = execute
    cursor.fetchall.side_effect = fetchall
    return cursor


class TestListTables:
    """Test list_tables"""

    def test_returns_names(self):
        """Test table names are unwrapped from rows"""
        cursor = MagicMock()
        cursor.fetchall.return_value = [("customers",), ("orders",)]

        assert list_tables(cursor, "public") == ["customers", "orders"]
        assert cursor.execute.call_args[0][1] == ("public",)

    def test_driver_error_wrapped(self):
        """Test driver errors become CatalogError"""
        cursor = MagicMock()
        cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

        with pytest.raises(CatalogError, match="schema public"):
            list_tables(cursor, "public")


class TestListColumns:
    """Test list_columns"""

    def test_ordinal_order(self):
        """Test columns come back as listed"""
        cursor = catalog_cursor(["id", "name", "updated_at"])

        assert list_columns(cursor, "public", "users") == ["id", "name", "updated_at"]

    def test_no_columns(self):
        """Test a table created without columns lists nothing"""
        assert list_columns(catalog_cursor([]), "public", "empty_shape") == []


class TestGetPrimaryKey:
    """Test get_primary_key"""

    @pytest.mark.parametrize("type_name", ["integer", "bigint", "smallint"])
    def test_single_integer_key(self, type_name):
        """Test integer keys enable chunking"""
        cursor = catalog_cursor([], pk_rows=[("id", type_name)])

        assert get_primary_key(cursor, "public", "users") == (["id"], True)

    @pytest.mark.parametrize("type_name", ["text", "uuid", "numeric(10,0)", "interval"])
    def test_single_non_integer_key(self, type_name):
        """Test other key types are not chunkable"""
        cursor = catalog_cursor([], pk_rows=[("code", type_name)])

        assert get_primary_key(cursor, "public", "t") == (["code"], False)

    def test_composite_key_keeps_index_order(self):
        """Test composite keys are never single numeric"""
        cursor = catalog_cursor([], pk_rows=[("tenant_id", "integer"), ("id", "bigint")])

        assert get_primary_key(cursor, "public", "t") == (["tenant_id", "id"], False)

    def test_no_key(self):
        """Test keyless tables"""
        assert get_primary_key(catalog_cursor([]), "public", "log") == ([], False)


class TestDescribeTable:
    """Test describe_table"""

    def test_descriptor(self):
        """Test the descriptor carries columns and key"""
        cursor = catalog_cursor(["id", "total"], pk_rows=[("id", "integer")])

        table = describe_table(cursor, "public", "orders")

        assert table.qualified_name == "public.orders"
        assert table.columns == ("id", "total")
        assert table.primary_key == ("id",)
        assert table.single_numeric_pk is True

    def test_key_lookup_failure_falls_back_to_keyless(self):
        """Test a failed key query leaves the transaction usable"""
        cursor = catalog_cursor(
            ["a", "b"], pk_error=psycopg2.ProgrammingError("missing")
        )

        table = describe_table(cursor, "public", "odd")

        assert table.primary_key == ()
        assert table.single_numeric_pk is False
        executed = [c[0][0] for c in cursor.execute.call_args_list]
        assert "ROLLBACK TO SAVEPOINT describe_pk" in executed
        assert executed[-1] == "RELEASE SAVEPOINT describe_pk"

    def test_column_failure_propagates(self):
        """Test a table without columns cannot be described"""
        with pytest.raises(CatalogError):
            describe_table(catalog_cursor([]), "public", "ghost")


class TestDropTable:
    """Test drop_table"""

    def test_drop_cascades(self):
        """Test the generated statement"""
        cursor = MagicMock()

        drop_table(cursor, "public", "old_table")

        query = cursor.execute.call_args[0][0]
        assert "DROP TABLE IF EXISTS" in repr(query)
        assert "CASCADE" in repr(query)
        assert "old_table" in repr(query)
