"""
Root logger setup for sync runs and the scheduler daemon.
"""

import logging
import logging.handlers
import os
import sys

from .formatters import ConsoleFormatter, JSONFormatter

DEFAULT_APP_NAME = "standby-sync"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"

# Libraries that log every HTTP request or scheduler tick at INFO
QUIET_LOGGERS = ("urllib3", "requests", "apscheduler", "opentelemetry")


def _formatter(json_format: bool, app_name: str, console: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter(app_name=app_name)
    if console:
        return ConsoleFormatter(use_colors=True)
    return logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = DEFAULT_APP_NAME,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Replace the root logger's handlers.

    Console output goes to stderr so reports printed on stdout stay
    machine readable. Files rotate at max_bytes.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_file: Rotating log file path, or None for no file
        console_output: Log to stderr
        json_format: Emit JSON records on every handler
        app_name: Value of the "app" field of JSON records
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handlers: list[logging.Handler] = []
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_formatter(json_format, app_name, console=True))
        handlers.append(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter(json_format, app_name, console=False))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging initialized: level={level}, file={log_file or 'none'}, json={json_format}"
    )


def shutdown_logging() -> None:
    """
    Close and detach every root handler.

    The scheduler daemon calls this on exit so the rotating file handler
    releases its descriptor.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.close()
        except OSError as e:
            sys.stderr.write(f"Failed to close log handler {handler!r}: {e}\n")
        root_logger.removeHandler(handler)

    logging.shutdown()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def configure_from_env() -> None:
    """
    Configure logging from LOG_LEVEL, LOG_FILE, LOG_JSON and LOG_CONSOLE.
    """
    setup_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE"),
        console_output=_env_flag("LOG_CONSOLE", "true"),
        json_format=_env_flag("LOG_JSON", "false"),
    )
