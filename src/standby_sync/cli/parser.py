"""
Command-line argument parser configuration.

This module sets up the argument parser for the standby-sync CLI tool,
defining all commands and their options.
"""

import argparse


def _add_sync_options(parser: argparse.ArgumentParser) -> None:
    """Options shared by every command that runs a sync."""
    parser.add_argument(
        '--main-dsn',
        help='Connection string of the main database (default: MAIN_DSN env var)'
    )
    parser.add_argument(
        '--standin-dsn',
        help='Connection string of the standby database (default: STANDIN_DSN env var)'
    )
    parser.add_argument(
        '--use-vault',
        action='store_true',
        help='Fetch both connection strings from HashiCorp Vault'
    )
    parser.add_argument(
        '--schema',
        help='Schema to synchronize (default: public)'
    )
    parser.add_argument(
        '--chunk-size',
        type=int,
        help='Primary key values per chunk (default: 10000)'
    )
    parser.add_argument(
        '--workers',
        type=int,
        help='Number of tables synchronized concurrently (default: 4)'
    )
    parser.add_argument(
        '--clean-extra',
        action='store_true',
        default=None,
        help='Drop standby tables that do not exist on main'
    )
    parser.add_argument(
        '--fdw-mode',
        action='store_true',
        default=None,
        help='Skip table data, it is copied through a foreign data wrapper'
    )
    parser.add_argument(
        '--use-updated-at',
        action='store_true',
        default=None,
        help='Only sync rows modified after the last sync time'
    )
    parser.add_argument(
        '--updated-at-column',
        help='Modification timestamp column (default: updated_at)'
    )
    parser.add_argument(
        '--last-sync-time',
        help='Watermark for --use-updated-at, format "YYYY-MM-DD HH:MM:SS"'
    )
    parser.add_argument(
        '--delete-policy',
        choices=['best_effort', 'strict'],
        help='best_effort keeps upserts when a delete fails; strict rolls the chunk back'
    )
    parser.add_argument(
        '--tables',
        help='Comma-separated list of tables to synchronize (default: all)'
    )
    parser.add_argument(
        '--exclude-tables',
        help='Comma-separated list of tables to skip'
    )
    parser.add_argument(
        '--state-dir',
        help='Directory for per-table incremental watermarks'
    )


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog='standby-sync',
        description="Synchronize the data of a standby PostgreSQL database with its main",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One-shot sync of the public schema
  standby-sync run --main-dsn postgres://main/db --standin-dsn postgres://standin/db

  # Drop standby tables that were removed on main, 8 workers, JSON report
  standby-sync run --clean-extra --workers 8 --format json --output sync.json

  # Only rows modified since the last run
  standby-sync run --use-updated-at --state-dir ./sync_state

  # Sync every 15 minutes
  standby-sync schedule --interval 900 --output-dir ./sync_reports

  # Nightly sync with credentials from Vault
  standby-sync schedule --cron "0 2 * * *" --use-vault
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-json',
        action='store_true',
        help='Emit structured JSON logs'
    )
    parser.add_argument(
        '--log-file',
        help='Also write logs to this file (rotated)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== Run command ==========
    run_parser = subparsers.add_parser('run', help='Run one data sync')
    _add_sync_options(run_parser)
    run_parser.add_argument(
        '--output',
        help='Output file path for the run report'
    )
    run_parser.add_argument(
        '--format',
        choices=['console', 'json'],
        default='console',
        help='Report format (default: console)'
    )
    run_parser.add_argument(
        '--metrics-port',
        type=int,
        help='Expose Prometheus metrics on this port during the run'
    )

    # ========== Schedule command ==========
    schedule_parser = subparsers.add_parser('schedule', help='Schedule periodic data syncs')
    _add_sync_options(schedule_parser)
    trigger = schedule_parser.add_mutually_exclusive_group(required=True)
    trigger.add_argument(
        '--cron',
        help='Cron expression, e.g. "0 */6 * * *" for every 6 hours'
    )
    trigger.add_argument(
        '--interval',
        type=int,
        help='Interval in seconds between runs'
    )
    schedule_parser.add_argument(
        '--output-dir',
        default='./sync_reports',
        help='Directory for run reports (default: ./sync_reports)'
    )
    schedule_parser.add_argument(
        '--metrics-port',
        type=int,
        help='Expose Prometheus metrics on this port'
    )

    return parser
