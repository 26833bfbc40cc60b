"""
Command-line interface for standby data synchronization.

Available commands:
- run: Execute one data sync
- schedule: Set up periodic data syncs
"""

import logging
import os
import sys

import psycopg2

from sync_utils.db_pool import ConnectionPoolError
from sync_utils.logging import setup_logging, shutdown_logging
from sync_utils.tracing import initialize_tracing, shutdown_tracing

from ..errors import SyncError
from .commands import build_config, cmd_run, cmd_schedule
from .credentials import get_dsns_from_vault_or_env
from .parser import create_parser

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the standby-sync CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command not in ('run', 'schedule'):
        parser.print_help()
        sys.exit(1)

    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        json_format=args.log_json,
    )
    if os.getenv("OTLP_ENDPOINT") or os.getenv("TRACE_CONSOLE"):
        initialize_tracing()

    try:
        if args.command == 'run':
            exit_code = cmd_run(args)
        else:
            exit_code = cmd_schedule(args)
    except (SyncError, psycopg2.Error, ConnectionPoolError) as e:
        logger.error(f"standby-sync failed: {e}")
        exit_code = 1
    finally:
        shutdown_tracing()
        shutdown_logging()

    sys.exit(exit_code)


__all__ = [
    'main',
    'build_config',
    'get_dsns_from_vault_or_env',
    'cmd_run',
    'cmd_schedule',
    'create_parser',
]
