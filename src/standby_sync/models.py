"""
Data model of a sync run.

TableDescriptor is derived once per table per run. ScanResult and
ChangeSet live for a single chunk and are discarded once it is applied.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class TableDescriptor:
    """Column and primary-key layout of one table."""

    schema: str
    name: str
    columns: tuple[str, ...]
    primary_key: tuple[str, ...] = ()
    single_numeric_pk: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def has_primary_key(self) -> bool:
        return bool(self.primary_key)

    @property
    def pk_column(self) -> str | None:
        """The key column when the key is a single column, else None."""
        if len(self.primary_key) == 1:
            return self.primary_key[0]
        return None

    @property
    def non_key_columns(self) -> tuple[str, ...]:
        return tuple(c for c in self.columns if c not in self.primary_key)

    @property
    def pk_indexes(self) -> tuple[int, ...]:
        """Positions of the key columns within a scanned row."""
        return tuple(self.columns.index(c) for c in self.primary_key)


@dataclass
class ScanResult:
    """
    Fingerprints and raw rows of one side of one chunk.

    Both maps are keyed by the rendered primary key; rows keep the
    driver-native values in column order.
    """

    fingerprints: dict[str, str] = field(default_factory=dict)
    rows: dict[str, tuple] = field(default_factory=dict)

    def add(self, key: str, digest: str, row: tuple) -> None:
        self.fingerprints[key] = digest
        self.rows[key] = row

    def __len__(self) -> int:
        return len(self.fingerprints)


@dataclass
class ChangeSet:
    """
    Key sets produced by the differ for one chunk.

    For keyed tables the three sets are disjoint. For keyless tables keys
    are row ids: insert holds source row ids and delete target row ids,
    which are separate id spaces and may hold the same value.
    """

    insert: set[str] = field(default_factory=set)
    update: set[str] = field(default_factory=set)
    delete: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.insert or self.update or self.delete)

    @property
    def total(self) -> int:
        return len(self.insert) + len(self.update) + len(self.delete)

    @property
    def upsert_keys(self) -> list[str]:
        """Insert and update keys in a stable order."""
        return sorted(self.insert) + sorted(self.update)

    def __str__(self) -> str:
        return f"+{len(self.insert)} / ~{len(self.update)} / -{len(self.delete)}"


@dataclass
class ChunkResult:
    """Counters of one applied chunk."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    delete_failed: bool = False

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.deleted


@dataclass
class TableSyncResult:
    """Outcome of synchronizing one table."""

    table: str
    strategy: str
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    chunks: int = 0
    failed_chunks: int = 0
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    def add_chunk(self, chunk: ChunkResult) -> None:
        self.inserted += chunk.inserted
        self.updated += chunk.updated
        self.deleted += chunk.deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "strategy": self.strategy,
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "chunks": self.chunks,
            "failed_chunks": self.failed_chunks,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SyncRunResult:
    """Outcome of one sync run across all tables."""

    schema: str
    workers: int
    tables: list[TableSyncResult] = field(default_factory=list)
    dropped_tables: list[str] = field(default_factory=list)
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def failed_tables(self) -> list[TableSyncResult]:
        return [t for t in self.tables if not t.success]

    def totals(self) -> dict[str, int]:
        return {
            "inserted": sum(t.inserted for t in self.tables),
            "updated": sum(t.updated for t in self.tables),
            "deleted": sum(t.deleted for t in self.tables),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "workers": self.workers,
            "status": "SUCCESS" if self.success else "FAILED",
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "totals": self.totals(),
            "dropped_tables": list(self.dropped_tables),
            "tables": [t.to_dict() for t in sorted(self.tables, key=lambda t: t.table)],
        }
