"""structlog setup for the CLI and any embedding process.

Journal and ledger events carry ``user_id`` through a context var bound
with ``user_context`` rather than passing it to every log call.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog

from tradelog.shell.config import Config


def setup_logging(config: Config) -> None:
    """Configure structlog from ``config.log_level`` and ``config.json_logs``."""
    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_logs
        else structlog.dev.ConsoleRenderer()
    )
    level = logging.getLevelName(config.log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Statement-level chatter from the sqlite driver
    logging.getLogger("aiosqlite").setLevel(max(level, logging.WARNING))


@contextmanager
def user_context(user_id: str) -> Iterator[None]:
    """Tag every event logged inside the block with ``user_id``."""
    with structlog.contextvars.bound_contextvars(user_id=user_id):
        yield
