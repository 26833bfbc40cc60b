"""Exception hierarchy for the data synchronization engine."""

from typing import Any


class SyncError(Exception):
    """Base exception for data synchronization errors."""


class ConfigurationError(SyncError):
    """Raised when a SyncConfig value is out of range or inconsistent."""


class CatalogError(SyncError):
    """Raised when table metadata cannot be read from a database catalog."""


class ScanError(SyncError):
    """Raised when a range scan against one side fails."""

    def __init__(self, side: str, table: str, bounds: Any, cause: Exception):
        self.side = side
        self.table = table
        self.bounds = bounds
        self.cause = cause
        super().__init__(f"Scan of {side} {table} {bounds} failed: {cause}")


class ApplyError(SyncError):
    """Raised when a chunk's change set cannot be committed to the target."""

    def __init__(self, table: str, bounds: Any, cause: Exception):
        self.table = table
        self.bounds = bounds
        self.cause = cause
        super().__init__(f"Applying changes to {table} {bounds} failed: {cause}")


class TableSyncError(SyncError):
    """
    Raised when synchronizing one table fails.

    result carries the counters of whatever the table did write.
    """

    def __init__(self, table: str, message: str, result: Any = None):
        self.table = table
        self.result = result
        super().__init__(f"{table}: {message}")


class ChunkSyncError(TableSyncError):
    """
    Raised after a chunked table finished its loop with failed chunks.

    Chunks that succeeded stay committed; first_error is the earliest
    failure in key order.
    """

    def __init__(self, table: str, failed_chunks: int, first_error: Exception):
        self.failed_chunks = failed_chunks
        self.first_error = first_error
        super().__init__(
            table,
            f"{failed_chunks} chunk(s) failed; first failure: {first_error}",
        )


class DataSyncError(SyncError):
    """
    Raised when a sync run fails.

    The message names the first failed table; result carries the outcome
    of every table the run touched.
    """

    def __init__(self, message: str, result: Any = None):
        self.result = result
        super().__init__(message)
