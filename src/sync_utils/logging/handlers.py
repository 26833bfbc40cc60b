"""
Logger wrapper carrying per-table fields.
"""

import logging
from typing import Any


class ContextLogger:
    """
    Logger that attaches fixed fields to every record.

    Keyword arguments of a call are added as extra fields on top of the
    bound ones, so a table's chunk loop can log its bounds without
    repeating the table name:

        log = ContextLogger(__name__, table="public.orders")
        log.info("Chunk applied", lo=1, hi=10000)
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def log(self, level: int, msg: str, *args, exc_info=None, **fields) -> None:
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra={**self.context, **fields},
            stacklevel=3,
        )

    def debug(self, msg: str, *args, **fields) -> None:
        self.log(logging.DEBUG, msg, *args, **fields)

    def info(self, msg: str, *args, **fields) -> None:
        self.log(logging.INFO, msg, *args, **fields)

    def warning(self, msg: str, *args, exc_info=None, **fields) -> None:
        self.log(logging.WARNING, msg, *args, exc_info=exc_info, **fields)

    def error(self, msg: str, *args, exc_info=None, **fields) -> None:
        self.log(logging.ERROR, msg, *args, exc_info=exc_info, **fields)

    def bind(self, **context) -> "ContextLogger":
        """New logger with extra fields layered over this one's."""
        return ContextLogger(self.logger.name, **{**self.context, **context})

    def update_context(self, **context) -> None:
        self.context.update(context)

    def get_context(self) -> dict[str, Any]:
        return self.context.copy()
