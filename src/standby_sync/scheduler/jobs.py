"""
Job wrapper for scheduled data sync runs.

The scheduler calls sync_job_wrapper on every trigger; it runs one sync
and saves the run report to the output directory.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from ..config import SyncConfig
from ..errors import DataSyncError
from ..orchestrator import run_data_sync
from ..report import export_run_json

logger = logging.getLogger(__name__)


def sync_job_wrapper(config: SyncConfig, output_dir: str) -> bool:
    """
    Run one scheduled data sync and save its report

    A failed run is logged and reported, never raised, so the scheduler
    keeps firing later runs.

    Args:
        config: Run configuration
        output_dir: Directory to save run reports

    Returns:
        True if the run succeeded
    """
    timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    output_path = Path(output_dir) / f"sync_{timestamp}.json"

    logger.info(f"Starting scheduled data sync at {timestamp}")

    try:
        result = run_data_sync(config)
    except DataSyncError as e:
        logger.error(f"Scheduled data sync failed: {e}")
        if e.result is not None:
            export_run_json(e.result, str(output_path))
            logger.info(f"Report saved to {output_path}")
        return False
    except Exception as e:
        logger.error(f"Scheduled data sync could not run: {e}", exc_info=True)
        return False

    export_run_json(result, str(output_path))
    totals = result.totals()
    logger.info(
        f"Scheduled data sync complete: {len(result.tables)} tables, "
        f"+{totals['inserted']} / ~{totals['updated']} / -{totals['deleted']}. "
        f"Report saved to {output_path}"
    )
    return True
