"""
Prometheus metrics for data sync runs.

This module defines metrics to track sync throughput, chunk outcomes
and worker pool utilization.
"""

from prometheus_client import Counter, Gauge, Histogram

from sync_utils.metrics import get_or_create_metric

ROWS_APPLIED = get_or_create_metric(
    lambda: Counter(
        "standby_sync_rows_applied_total",
        "Rows written to the standby database",
        ["table", "operation"],  # insert, update, delete
    ),
    "standby_sync_rows_applied_total",
)

CHUNKS_PROCESSED = get_or_create_metric(
    lambda: Counter(
        "standby_sync_chunks_total",
        "Chunks processed per table",
        ["table", "status"],  # applied, unchanged, failed
    ),
    "standby_sync_chunks_total",
)

TABLES_PROCESSED = get_or_create_metric(
    lambda: Counter(
        "standby_sync_tables_total",
        "Tables synchronized",
        ["strategy", "status"],  # success, failed
    ),
    "standby_sync_tables_total",
)

CHUNK_TIME = get_or_create_metric(
    lambda: Histogram(
        "standby_sync_chunk_seconds",
        "Time to scan, diff and apply one chunk",
        ["table"],
        buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300],
    ),
    "standby_sync_chunk_seconds",
)

RUN_TIME = get_or_create_metric(
    lambda: Histogram(
        "standby_sync_run_seconds",
        "Total time of a data sync run",
        buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
    ),
    "standby_sync_run_seconds",
)

ACTIVE_WORKERS = get_or_create_metric(
    lambda: Gauge(
        "standby_sync_active_workers",
        "Number of worker threads currently synchronizing a table",
    ),
    "standby_sync_active_workers",
)

QUEUE_SIZE = get_or_create_metric(
    lambda: Gauge(
        "standby_sync_queue_size",
        "Number of tables waiting to be synchronized",
    ),
    "standby_sync_queue_size",
)

EXTRA_TABLES_DROPPED = get_or_create_metric(
    lambda: Counter(
        "standby_sync_extra_tables_dropped_total",
        "Standby tables dropped because they no longer exist on main",
    ),
    "standby_sync_extra_tables_dropped_total",
)
