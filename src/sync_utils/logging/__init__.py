"""
Structured logging for the standby sync tool.

JSON records for log shipping, a colored console format for interactive
runs, and ContextLogger for carrying table and chunk fields on every
record of a table's sync.

Usage:
    from sync_utils.logging import ContextLogger, setup_logging

    setup_logging(level="INFO", json_format=True)

    log = ContextLogger(__name__, table="public.orders")
    log.info("Chunk applied", lo=1, hi=10000)
"""

from .config import configure_from_env, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "configure_from_env",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
