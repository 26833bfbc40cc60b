"""
Data synchronization engine for PostgreSQL standby databases

Brings the rows of a standby database in line with its main database
without a full reload: one consistent snapshot of main, a per-table
strategy, chunked fingerprint diffs and transactional batch writes.

Components:
- orchestrator: snapshot, table fan-out over a worker pool
- strategies: per-table strategy selection and chunked range sync
- scanner / fingerprint / differ: range scans and change classification
- applier: batched upserts and deletes on the standby
- scheduler: periodic runs
- cli: the standby-sync command

Usage:
    from standby_sync import SyncConfig, run_data_sync

    result = run_data_sync(SyncConfig.from_env())
"""

from .config import DeletePolicy, SyncConfig
from .errors import DataSyncError, SyncError
from .orchestrator import DataSyncOrchestrator, run_data_sync

__version__ = "1.0.0"
__all__ = [
    "DataSyncError",
    "DataSyncOrchestrator",
    "DeletePolicy",
    "SyncConfig",
    "SyncError",
    "run_data_sync",
]
