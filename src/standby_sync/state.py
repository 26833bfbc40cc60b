"""
Watermark state for timestamp-incremental sync.

This module provides the WatermarkStore class, which remembers per table
the snapshot time of the last successful incremental sync so the next
run only reads rows modified after it.
"""

import json
import logging
import re
import threading
from datetime import datetime
from pathlib import Path

from opentelemetry import trace

from sync_utils.tracing import trace_operation

logger = logging.getLogger(__name__)


class WatermarkStore:
    """
    File-backed per-table watermarks.

    One JSON file per table under state_dir; writes go through a
    temporary file and a rename so a crash never leaves a torn file.
    """

    def __init__(self, state_dir: str = "./sync_state"):
        """
        Initialize watermark store.

        Args:
            state_dir: Directory to store state files
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"Initialized watermark store with state dir: {self.state_dir}")

    def get(self, table: str) -> datetime | None:
        """
        Get the stored watermark of a table.

        Returns:
            Watermark, or None if never stored or unreadable
        """
        state_file = self._get_state_file(table)

        if not state_file.exists():
            logger.debug(f"No stored watermark for table {table}")
            return None

        try:
            with open(state_file) as f:
                state = json.load(f)
            return datetime.fromisoformat(state["watermark"])
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load watermark for {table}: {e}")
            return None

    def save(self, table: str, watermark: datetime, rows: int = 0) -> None:
        """
        Store a table's watermark.

        Args:
            table: Table name
            watermark: Snapshot time the table was synchronized at
            rows: Rows written by that sync, kept for diagnostics
        """
        with trace_operation(
            "save_watermark",
            kind=trace.SpanKind.INTERNAL,
            table=table,
        ):
            state_file = self._get_state_file(table)
            tmp_file = state_file.with_suffix(".tmp")

            state = {
                "table": table,
                "watermark": watermark.isoformat(),
                "rows": rows,
            }

            with self._lock:
                with open(tmp_file, "w") as f:
                    json.dump(state, f, indent=2)
                tmp_file.replace(state_file)

            logger.info(f"Saved watermark for {table}: {watermark.isoformat()}")

    def clear(self, table: str) -> None:
        """Forget a table's watermark so the next run reads every row."""
        state_file = self._get_state_file(table)

        if state_file.exists():
            state_file.unlink()
            logger.info(f"Cleared watermark for table {table}")

    def list_tables(self) -> list[str]:
        """List tables with a stored watermark."""
        tables = []

        for state_file in self.state_dir.glob("*_watermark.json"):
            try:
                with open(state_file) as f:
                    tables.append(json.load(f)["table"])
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Skipping unreadable state file {state_file}: {e}")

        return sorted(tables)

    def _get_state_file(self, table: str) -> Path:
        """Get state file path for table."""
        safe_table_name = re.sub(r'[/\\:*?"<>|]', '_', table)
        return self.state_dir / f"{safe_table_name}_watermark.json"
