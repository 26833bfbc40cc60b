"""
CLI command implementations.

This module contains the implementation of the CLI commands:
- run: One data sync
- schedule: Periodic scheduled data syncs
"""

import argparse
import json
import logging

from sync_utils.metrics import ApplicationInfo, MetricsPublisher

from ..config import SyncConfig, parse_sync_time, split_names
from ..errors import ConfigurationError, DataSyncError
from ..orchestrator import run_data_sync
from ..report import export_run_json, format_run_console
from ..scheduler import SyncScheduler, sync_job_wrapper
from .credentials import get_dsns_from_vault_or_env

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> SyncConfig:
    """
    Layer command-line flags over the environment configuration

    Args:
        args: Parsed command-line arguments

    Returns:
        Validated run configuration

    Raises:
        ConfigurationError: On an invalid value
    """
    main_dsn, standin_dsn = get_dsns_from_vault_or_env(args)

    config = SyncConfig.from_env().with_overrides(
        source_dsn=main_dsn,
        target_dsn=standin_dsn,
        schema=args.schema,
        chunk_size=args.chunk_size,
        workers=args.workers,
        clean_extra=args.clean_extra,
        fdw_mode=args.fdw_mode,
        use_updated_at=args.use_updated_at,
        updated_at_column=args.updated_at_column,
        last_sync_time=parse_sync_time(args.last_sync_time) if args.last_sync_time else None,
        delete_policy=args.delete_policy,
        tables=split_names(args.tables) or None,
        exclude_tables=split_names(args.exclude_tables) or None,
        state_dir=args.state_dir,
    )
    return config.validate()


def _start_metrics(port: int | None) -> None:
    if port is None:
        return
    try:
        MetricsPublisher(port=port).start()
    except RuntimeError as e:
        raise ConfigurationError(str(e)) from e
    ApplicationInfo()


def cmd_run(args: argparse.Namespace) -> int:
    """
    Run one data sync

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code: 0 on success, 1 if any table failed
    """
    config = build_config(args)
    _start_metrics(args.metrics_port)

    logger.info(
        f"Starting data sync of schema {config.schema} "
        f"(chunk size {config.chunk_size}, {config.workers} workers)"
    )

    try:
        result = run_data_sync(config)
        exit_code = 0
    except DataSyncError as e:
        if e.result is None:
            raise
        result = e.result
        exit_code = 1

    if args.format == "json":
        if args.output:
            export_run_json(result, args.output)
            logger.info(f"Report saved to {args.output}")
        else:
            print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_run_console(result))
        if args.output:
            export_run_json(result, args.output)
            logger.info(f"Report saved to {args.output}")

    return exit_code


def cmd_schedule(args: argparse.Namespace) -> int:
    """
    Schedule periodic data syncs

    Args:
        args: Parsed command-line arguments

    Returns:
        Process exit code once the scheduler stops
    """
    config = build_config(args)
    _start_metrics(args.metrics_port)

    scheduler = SyncScheduler()

    try:
        if args.cron:
            scheduler.add_cron_job(
                sync_job_wrapper,
                args.cron,
                "standby_sync_job",
                config=config,
                output_dir=args.output_dir,
            )
            logger.info(f"Scheduled data sync with cron: {args.cron}")
        else:
            scheduler.add_interval_job(
                sync_job_wrapper,
                args.interval,
                "standby_sync_job",
                config=config,
                output_dir=args.output_dir,
            )
            logger.info(f"Scheduled data sync every {args.interval} seconds")
    except ValueError as e:
        raise ConfigurationError(f"Invalid schedule: {e}") from e

    logger.info("Starting scheduler (press Ctrl+C to stop)")
    scheduler.start()
    return 0
