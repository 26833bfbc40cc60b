"""
Unit tests for data sync orchestration

Tests verify:
- Fan-out of tables over the worker pool
- First-error reporting and partial results
- Worker stop-after-failure behavior
- Extra table cleanup
- Snapshot commit and rollback

The source snapshot, catalog and per-table synchronizer are replaced
with fakes; no database is needed.
"""

import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from unittest.mock import MagicMock, Mock, patch

import pytest

from standby_sync.config import SyncConfig
from standby_sync.errors import DataSyncError, TableSyncError
from standby_sync.models import TableSyncResult
from standby_sync.orchestrator import DataSyncOrchestrator, FirstErrorLatch, run_data_sync
from standby_sync.state import WatermarkStore

SNAPSHOT_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class FakeSnapshot:
    """Stands in for SourceSnapshot and records how the run ended."""

    instances: list = []

    def __init__(self, connect, attach_error=None):
        self.connect = connect
        self.attach_error = attach_error
        self.committed = False
        self.rolled_back = False
        self.attached = 0
        self._lock = threading.Lock()
        FakeSnapshot.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.rolled_back = True

    def cursor(self):
        return MagicMock(name="coordinator_cursor")

    def transaction_timestamp(self):
        return SNAPSHOT_TIME

    @contextmanager
    def attach(self):
        if self.attach_error is not None:
            raise self.attach_error
        with self._lock:
            self.attached += 1
        yield MagicMock(name="worker_conn")

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True


class FakePool:
    def __init__(self):
        self.conn = MagicMock()

    @contextmanager
    def acquire(self):
        yield self.conn


def ok(table_name, **counts):
    return TableSyncResult(table=f"public.{table_name}", strategy="chunked", **counts)


def orchestrator(config, synchronizer):
    return DataSyncOrchestrator(config, Mock(), FakePool(), synchronizer=synchronizer)


@pytest.fixture(autouse=True)
def fake_snapshot():
    FakeSnapshot.instances = []
    with patch('standby_sync.orchestrator.SourceSnapshot', FakeSnapshot):
        yield


class TestFirstErrorLatch:
    """Test FirstErrorLatch"""

    def test_keeps_first_error(self):
        """Test only the first failure is recorded"""
        latch = FirstErrorLatch()

        assert latch.set("public.a", ValueError("first")) is True
        assert latch.set("public.b", ValueError("second")) is False

        assert latch.is_set
        assert latch.table == "public.a"
        assert str(latch.error) == "first"


@patch('standby_sync.orchestrator.list_tables')
class TestRun:
    """Test DataSyncOrchestrator.run"""

    def test_all_tables_synchronized(self, mock_list_tables):
        """Test every table is handed to a worker and the snapshot commits"""
        mock_list_tables.return_value = ["a", "b", "c"]
        sync = Mock()
        sync.select_and_sync.side_effect = lambda cursor, pool, name, snapshot_time: ok(
            name, inserted=1
        )

        result = orchestrator(SyncConfig(workers=2), sync).run()

        assert result.success
        assert sorted(t.table for t in result.tables) == ["public.a", "public.b", "public.c"]
        assert result.totals()["inserted"] == 3
        assert result.duration_seconds >= 0
        snapshot = FakeSnapshot.instances[0]
        assert snapshot.committed and not snapshot.rolled_back
        assert all(
            c[1]["snapshot_time"] == SNAPSHOT_TIME for c in sync.select_and_sync.call_args_list
        )

    def test_more_workers_than_tables(self, mock_list_tables):
        """Test idle workers exit cleanly"""
        mock_list_tables.return_value = ["a"]
        sync = Mock()
        sync.select_and_sync.side_effect = lambda *a, **k: ok("a")

        result = orchestrator(SyncConfig(workers=8), sync).run()

        assert len(result.tables) == 1
        assert FakeSnapshot.instances[0].attached == 8

    def test_table_filters(self, mock_list_tables):
        """Test include and exclude lists are applied"""
        mock_list_tables.return_value = ["a", "b", "c"]
        sync = Mock()
        sync.select_and_sync.side_effect = lambda cursor, pool, name, **k: ok(name)

        orchestrator(SyncConfig(tables=("a", "b"), exclude_tables=("b",)), sync).run()

        assert [c[0][2] for c in sync.select_and_sync.call_args_list] == ["a"]

    def test_empty_schema_commits(self, mock_list_tables):
        """Test no tables means an empty successful run"""
        mock_list_tables.return_value = []
        sync = Mock()

        result = orchestrator(SyncConfig(), sync).run()

        assert result.success
        assert result.tables == []
        sync.select_and_sync.assert_not_called()
        assert FakeSnapshot.instances[0].committed

    def test_failure_raises_with_partial_result(self, mock_list_tables):
        """Test a failing table fails the run while siblings finish"""
        mock_list_tables.return_value = ["a", "b", "c"]

        def select_and_sync(cursor, pool, name, snapshot_time):
            if name == "b":
                raise TableSyncError("public.b", "boom", result=TableSyncResult(
                    table="public.b", strategy="chunked", inserted=2, error="boom"
                ))
            return ok(name, inserted=1)

        sync = Mock()
        sync.select_and_sync.side_effect = select_and_sync

        with pytest.raises(DataSyncError, match="public.b") as exc_info:
            orchestrator(SyncConfig(workers=2), sync).run()

        result = exc_info.value.result
        assert not result.success
        assert [t.table for t in result.failed_tables] == ["public.b"]
        assert result.totals()["inserted"] == 4
        snapshot = FakeSnapshot.instances[0]
        assert snapshot.rolled_back and not snapshot.committed

    def test_worker_stops_after_its_failure(self, mock_list_tables):
        """Test a single worker stops pulling after a failure"""
        mock_list_tables.return_value = ["a", "b", "c"]
        sync = Mock()
        sync.select_and_sync.side_effect = RuntimeError("connection reset")

        with pytest.raises(DataSyncError) as exc_info:
            orchestrator(SyncConfig(workers=1), sync).run()

        assert sync.select_and_sync.call_count == 1
        failed = exc_info.value.result.tables[0]
        assert failed.table == "public.a"
        assert failed.strategy == "unknown"
        assert "connection reset" in failed.error

    def test_worker_connection_failure(self, mock_list_tables):
        """Test a worker that cannot attach fails the run"""
        mock_list_tables.return_value = ["a"]

        def broken_snapshot(connect):
            return FakeSnapshot(connect, attach_error=RuntimeError("too many connections"))

        with patch('standby_sync.orchestrator.SourceSnapshot', broken_snapshot):
            with pytest.raises(DataSyncError, match="too many connections"):
                orchestrator(SyncConfig(workers=1), Mock()).run()

    @patch('standby_sync.orchestrator.drop_table')
    def test_clean_extra_runs_before_sync(self, mock_drop, mock_list_tables):
        """Test extra standby tables are dropped and reported"""
        mock_list_tables.side_effect = [["a"], ["a", "legacy"]]
        sync = Mock()
        sync.select_and_sync.side_effect = lambda *a, **k: ok("a")

        result = orchestrator(SyncConfig(clean_extra=True), sync).run()

        assert result.dropped_tables == ["legacy"]
        mock_drop.assert_called_once()
        assert mock_drop.call_args[0][1:] == ("public", "legacy")


@patch('standby_sync.orchestrator.drop_table')
@patch('standby_sync.orchestrator.list_tables')
class TestDropExtraTables:
    """Test DataSyncOrchestrator.drop_extra_tables"""

    def test_only_absent_tables_dropped(self, mock_list_tables, mock_drop):
        """Test tables present on main are kept"""
        mock_list_tables.return_value = ["a", "b", "old"]

        dropped = orchestrator(SyncConfig(), Mock()).drop_extra_tables(["a", "b"])

        assert dropped == ["old"]

    def test_drop_failure_is_best_effort(self, mock_list_tables, mock_drop):
        """Test one failed drop does not stop the others"""
        mock_list_tables.return_value = ["x", "y"]
        mock_drop.side_effect = [RuntimeError("dependent view"), None]

        dropped = orchestrator(SyncConfig(), Mock()).drop_extra_tables([])

        assert dropped == ["y"]
        assert mock_drop.call_count == 2


class TestConstruction:
    """Test orchestrator setup"""

    def test_invalid_config_rejected(self):
        """Test configuration is validated up front"""
        from standby_sync.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            DataSyncOrchestrator(SyncConfig(chunk_size=0), Mock(), FakePool())

    def test_watermark_store_from_state_dir(self, tmp_path):
        """Test incremental state is wired when configured"""
        config = SyncConfig(state_dir=str(tmp_path / "state"))

        orch = DataSyncOrchestrator(config, Mock(), FakePool())

        assert isinstance(orch.synchronizer.watermarks, WatermarkStore)

    @patch('standby_sync.orchestrator.DataSyncOrchestrator')
    def test_run_data_sync_with_pool(self, mock_orchestrator):
        """Test a given pool is used as is"""
        pool = FakePool()
        config = SyncConfig()

        run_data_sync(config, source_connect=Mock(), target_pool=pool)

        assert mock_orchestrator.call_args[0][2] is pool
        mock_orchestrator.return_value.run.assert_called_once()

    @patch('standby_sync.orchestrator.DataSyncOrchestrator')
    @patch('standby_sync.orchestrator.PostgresConnectionPool')
    def test_run_data_sync_builds_pool(self, mock_pool_class, mock_orchestrator):
        """Test the standby pool is sized to the workers and closed"""
        run_data_sync(SyncConfig(workers=3, target_dsn="dbname=standin"))

        kwargs = mock_pool_class.call_args[1]
        assert kwargs["dsn"] == "dbname=standin"
        assert kwargs["max_size"] == 4
        mock_pool_class.return_value.__exit__.assert_called_once()
