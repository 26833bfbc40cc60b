"""
Run report formatting and export.

This module renders a SyncRunResult for the terminal and exports it as
JSON for schedulers and dashboards.
"""

import json
from pathlib import Path

from .models import SyncRunResult


def export_run_json(result: SyncRunResult, output_path: str) -> None:
    """
    Export a run result to a JSON file

    Args:
        result: Outcome of a sync run
        output_path: Path to output file; parent directories are created
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)


def format_run_console(result: SyncRunResult) -> str:
    """
    Format a run result for console output

    Args:
        result: Outcome of a sync run

    Returns:
        Formatted string for console display
    """
    report = result.to_dict()
    totals = report["totals"]
    lines = []

    lines.append("=" * 80)
    lines.append("DATA SYNC REPORT")
    lines.append("=" * 80)
    lines.append(f"Status: {report['status']}")
    lines.append(f"Started: {report['started_at']}")
    lines.append(f"Schema: {report['schema']}")
    lines.append(f"Workers: {report['workers']}")
    lines.append(f"Duration: {report['duration_seconds']:.2f}s")
    lines.append(
        f"Rows: +{totals['inserted']:,} / ~{totals['updated']:,} / -{totals['deleted']:,}"
    )
    lines.append("")

    if report["tables"]:
        lines.append("TABLES")
        lines.append("-" * 80)
        lines.append(
            f"{'Table':<36} {'Strategy':<12} {'Inserted':>9} {'Updated':>9} {'Deleted':>9}"
        )
        for table in report["tables"]:
            marker = "✓" if table["error"] is None else "✗"
            lines.append(
                f"{marker} {table['table']:<34} {table['strategy']:<12} "
                f"{table['inserted']:>9,} {table['updated']:>9,} {table['deleted']:>9,}"
            )
        lines.append("")

    if report["dropped_tables"]:
        lines.append("DROPPED FROM STANDBY")
        lines.append("-" * 80)
        for table in report["dropped_tables"]:
            lines.append(f"  {table}")
        lines.append("")

    failed = [t for t in report["tables"] if t["error"] is not None]
    if failed:
        lines.append("FAILURES")
        lines.append("-" * 80)
        for table in failed:
            lines.append(f"Table: {table['table']}")
            lines.append(f"  Failed chunks: {table['failed_chunks']} of {table['chunks']}")
            lines.append(f"  Error: {table['error']}")
        lines.append("")

    if report["error"] and not failed:
        lines.append(f"Error: {report['error']}")
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)
