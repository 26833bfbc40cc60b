"""
Integration tests for data sync between two PostgreSQL databases.

Tests use REAL databases given by STANDBY_SYNC_TEST_MAIN_DSN and
STANDBY_SYNC_TEST_STANDIN_DSN and are skipped when those are unset.
Everything happens inside a dedicated schema that is dropped afterwards.
"""

from datetime import datetime

import psycopg2
import pytest

from standby_sync.config import SyncConfig
from standby_sync.orchestrator import run_data_sync

pytestmark = pytest.mark.integration

SCHEMA = "standby_sync_it"

TABLES_DDL = [
    f"""CREATE TABLE {SCHEMA}.accounts (
        id integer PRIMARY KEY,
        email text,
        balance numeric(12, 2),
        updated_at timestamp NOT NULL DEFAULT now()
    )""",
    f"""CREATE TABLE {SCHEMA}.order_lines (
        order_id integer,
        line_no integer,
        sku text NOT NULL,
        PRIMARY KEY (order_id, line_no)
    )""",
    f"""CREATE TABLE {SCHEMA}.devices (
        id uuid PRIMARY KEY,
        label text,
        updated_at timestamp NOT NULL DEFAULT now()
    )""",
    f"CREATE TABLE {SCHEMA}.audit_log (message text, level integer)",
    f"CREATE TABLE {SCHEMA}.placeholder ()",
]


def execute_all(dsn, statements):
    conn = psycopg2.connect(dsn)
    conn.autocommit = True
    try:
        with conn.cursor() as cursor:
            for statement in statements:
                cursor.execute(statement)
    finally:
        conn.close()


def fetch_sorted(dsn, table):
    conn = psycopg2.connect(dsn)
    try:
        with conn.cursor() as cursor:
            cursor.execute(f"SELECT * FROM {SCHEMA}.{table}")
            return sorted(cursor.fetchall(), key=repr)
    finally:
        conn.close()


def fetch_tables(dsn):
    conn = psycopg2.connect(dsn)
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_schema = %s",
                (SCHEMA,),
            )
            return sorted(row[0] for row in cursor.fetchall())
    finally:
        conn.close()


@pytest.fixture
def databases(main_dsn, standin_dsn):
    """Create the test schema with the same tables on both databases."""
    setup = [f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE", f"CREATE SCHEMA {SCHEMA}", *TABLES_DDL]
    execute_all(main_dsn, setup)
    execute_all(standin_dsn, setup)

    execute_all(main_dsn, [
        f"""INSERT INTO {SCHEMA}.accounts (id, email, balance, updated_at)
            SELECT n, 'user' || n || '@example.com', n * 1.5, '2024-01-01' FROM generate_series(1, 25) n""",
        f"DELETE FROM {SCHEMA}.accounts WHERE id = 10",
        f"""INSERT INTO {SCHEMA}.order_lines VALUES
            (1, 1, 'A-1'), (1, 2, 'A-2'), (2, 1, 'B-1'), (12, 3, 'C-3')""",
        f"""INSERT INTO {SCHEMA}.audit_log VALUES
            ('login', 1), ('login', 1), ('logout', 2), (NULL, 3)""",
        f"""INSERT INTO {SCHEMA}.devices (id, label, updated_at) VALUES
            ('11111111-1111-4111-8111-111111111111', 'gateway', '2024-01-01'),
            ('22222222-2222-4222-8222-222222222222', 'sensor', '2024-01-01')""",
    ])
    execute_all(standin_dsn, [
        f"""INSERT INTO {SCHEMA}.accounts (id, email, balance, updated_at)
            SELECT n, 'user' || n || '@example.com', n * 1.5, '2024-01-01' FROM generate_series(1, 20) n""",
        f"UPDATE {SCHEMA}.accounts SET email = 'stale@example.com' WHERE id = 7",
        f"INSERT INTO {SCHEMA}.accounts (id, email, balance, updated_at) VALUES (99, 'gone@example.com', 0, '2024-01-01')",
        f"""INSERT INTO {SCHEMA}.order_lines VALUES
            (1, 1, 'A-1'), (1, 2, 'stale'), (1, 23, 'extra')""",
        f"""INSERT INTO {SCHEMA}.audit_log VALUES
            ('login', 1), ('login', 1), ('login', 1), ('error', 5)""",
        f"""INSERT INTO {SCHEMA}.devices (id, label, updated_at) VALUES
            ('11111111-1111-4111-8111-111111111111', 'old gateway', '2024-01-01'),
            ('33333333-3333-4333-8333-333333333333', 'retired', '2024-01-01')""",
        f"CREATE TABLE {SCHEMA}.legacy_orders (id integer)",
    ])

    yield main_dsn, standin_dsn

    teardown = [f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE"]
    execute_all(main_dsn, teardown)
    execute_all(standin_dsn, teardown)


def make_config(main_dsn, standin_dsn, **overrides):
    options = dict(
        source_dsn=main_dsn,
        target_dsn=standin_dsn,
        schema=SCHEMA,
        chunk_size=4,
        workers=2,
    )
    options.update(overrides)
    return SyncConfig(**options)


class TestFullSync:
    """Test a complete run converges the standby to main."""

    def test_tables_converge(self, databases):
        """Test every table holds main's rows after one run."""
        main_dsn, standin_dsn = databases

        result = run_data_sync(make_config(main_dsn, standin_dsn))

        assert result.success
        for table in ("order_lines", "audit_log"):
            assert fetch_sorted(standin_dsn, table) == fetch_sorted(main_dsn, table)

        # id 99 lies beyond main's key range, chunked mode leaves it alone
        standin_accounts = fetch_sorted(standin_dsn, "accounts")
        assert [r for r in standin_accounts if r[0] != 99] == fetch_sorted(main_dsn, "accounts")
        assert any(r[0] == 99 for r in standin_accounts)

        by_table = {t.table: t for t in result.tables}
        accounts = by_table[f"{SCHEMA}.accounts"]
        assert accounts.strategy == "chunked"
        assert (accounts.inserted, accounts.updated, accounts.deleted) == (5, 1, 1)

        lines = by_table[f"{SCHEMA}.order_lines"]
        assert lines.strategy == "full_diff"
        assert (lines.inserted, lines.updated, lines.deleted) == (2, 1, 1)

    def test_second_run_is_noop(self, databases):
        """Test a converged standby needs no changes."""
        main_dsn, standin_dsn = databases
        config = make_config(main_dsn, standin_dsn)
        run_data_sync(config)

        result = run_data_sync(config)

        assert result.totals() == {"inserted": 0, "updated": 0, "deleted": 0}

    def test_keyless_duplicates(self, databases):
        """Test duplicate rows of keyless tables keep their multiplicity."""
        main_dsn, standin_dsn = databases

        run_data_sync(make_config(main_dsn, standin_dsn, tables=("audit_log",)))

        rows = fetch_sorted(standin_dsn, "audit_log")
        assert rows.count(("login", 1)) == 2
        assert ("error", 5) not in rows
        assert (None, 3) in rows

    def test_uuid_keyed_table(self, databases):
        """Test uuid primary keys are diffed, updated and deleted."""
        main_dsn, standin_dsn = databases

        result = run_data_sync(make_config(main_dsn, standin_dsn, tables=("devices",)))

        assert result.success
        assert fetch_sorted(standin_dsn, "devices") == fetch_sorted(main_dsn, "devices")
        devices = result.tables[0]
        assert devices.strategy == "full_diff"
        assert (devices.inserted, devices.updated, devices.deleted) == (1, 1, 1)

    def test_zero_column_table_skipped(self, databases):
        """Test a table without columns does not fail the run."""
        main_dsn, standin_dsn = databases

        result = run_data_sync(make_config(main_dsn, standin_dsn, tables=("placeholder", "order_lines")))

        assert result.success
        by_table = {t.table: t for t in result.tables}
        assert by_table[f"{SCHEMA}.placeholder"].strategy == "skipped"
        assert fetch_sorted(standin_dsn, "order_lines") == fetch_sorted(main_dsn, "order_lines")

    def test_clean_extra_drops_standby_only_tables(self, databases):
        """Test tables missing from main are dropped from the standby."""
        main_dsn, standin_dsn = databases

        result = run_data_sync(make_config(main_dsn, standin_dsn, clean_extra=True))

        assert result.dropped_tables == ["legacy_orders"]
        assert "legacy_orders" not in fetch_tables(standin_dsn)

    def test_extra_tables_kept_by_default(self, databases):
        """Test standby-only tables survive without clean_extra."""
        main_dsn, standin_dsn = databases

        run_data_sync(make_config(main_dsn, standin_dsn))

        assert "legacy_orders" in fetch_tables(standin_dsn)


class TestIncrementalSync:
    """Test the updated_at strategy against real data."""

    def test_recent_changes_copied(self, databases, tmp_path):
        """Test rows modified after the watermark reach the standby."""
        main_dsn, standin_dsn = databases
        execute_all(main_dsn, [
            f"UPDATE {SCHEMA}.accounts SET updated_at = '2000-01-01'",
            f"UPDATE {SCHEMA}.accounts SET balance = 1000, updated_at = now() WHERE id = 3",
        ])
        config = make_config(
            main_dsn,
            standin_dsn,
            tables=("accounts",),
            use_updated_at=True,
            last_sync_time=datetime(2020, 1, 1),
            state_dir=str(tmp_path),
        )

        result = run_data_sync(config)

        accounts = result.tables[0]
        assert accounts.strategy == "incremental"
        assert accounts.deleted == 0
        row = [r for r in fetch_sorted(standin_dsn, "accounts") if r[0] == 3][0]
        assert row[2] == 1000
        assert list(tmp_path.glob("*_watermark.json"))

    def test_uuid_keys_found_on_standby(self, databases, tmp_path):
        """Test changed uuid-keyed rows are matched against standby keys."""
        main_dsn, standin_dsn = databases
        execute_all(main_dsn, [
            f"UPDATE {SCHEMA}.devices SET label = 'edge gateway', updated_at = now() "
            "WHERE id = '11111111-1111-4111-8111-111111111111'",
        ])
        config = make_config(
            main_dsn,
            standin_dsn,
            tables=("devices",),
            use_updated_at=True,
            last_sync_time=datetime(2020, 1, 1),
            state_dir=str(tmp_path),
        )

        result = run_data_sync(config)

        devices = result.tables[0]
        assert result.success
        assert devices.strategy == "incremental"
        labels = {str(r[0]): r[1] for r in fetch_sorted(standin_dsn, "devices")}
        assert labels["11111111-1111-4111-8111-111111111111"] == "edge gateway"
