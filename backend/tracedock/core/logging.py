# tracedock/core/logging.py
"""
Logging setup for the server process.

All modules log through `logging.getLogger(__name__)`; this module only
decides where records go (stdout, one line each) and how loud the
third-party loggers are.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that drown the application output at INFO.
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "uvicorn.access")


def configure_logging(level: str = "INFO", *, sql_echo: bool = False) -> None:
    """
    Route every record to stdout at `level`.

    Calling it again (tests, reloads) replaces the handler instead of
    stacking a second one. With `sql_echo`, SQLAlchemy statements are logged
    at INFO regardless of `level`.
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(stream)

    threshold = logging.getLevelName(level.upper())
    if not isinstance(threshold, int):
        threshold = logging.INFO
    root.setLevel(threshold)

    for name in _QUIET_LOGGERS:
        if sql_echo and name == "sqlalchemy.engine":
            logging.getLogger(name).setLevel(logging.INFO)
        else:
            logging.getLogger(name).setLevel(max(threshold, logging.WARNING))
