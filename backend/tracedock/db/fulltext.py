# tracedock/db/fulltext.py
"""
SQLite FTS5 full-text index over logs.

`logs_fts` is an external-content table (it stores only the index, the text
lives in `logs`) over message, app_name, metadata and stack_trace. The log id
is carried as an UNINDEXED column so a token never matches on it. Three
triggers mirror every insert/delete/update on `logs` into the index inside
the same transaction, so the index can never drift from the base table.

Substring LIKE scans over message/metadata do not scale to realistic log
volumes; the FTS path is used whenever a search has a free-text component.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.elements import TextClause

logger = logging.getLogger(__name__)

FTS_TABLE = "logs_fts"

_FTS_COLUMNS = "id, message, app_name, metadata, stack_trace"
_FTS_SCHEMA = "id UNINDEXED, message, app_name, metadata, stack_trace"
_NEW_VALUES = "NEW.rowid, NEW.id, NEW.message, NEW.app_name, COALESCE(NEW.metadata, ''), COALESCE(NEW.stack_trace, '')"
_OLD_VALUES = "OLD.rowid, OLD.id, OLD.message, OLD.app_name, COALESCE(OLD.metadata, ''), COALESCE(OLD.stack_trace, '')"

CREATE_FTS_TABLE = f"""
CREATE VIRTUAL TABLE {FTS_TABLE} USING fts5(
    {_FTS_SCHEMA},
    content='logs',
    content_rowid='rowid'
)
"""

CREATE_TRIGGERS = (
    f"""
    CREATE TRIGGER IF NOT EXISTS logs_fts_insert AFTER INSERT ON logs BEGIN
        INSERT INTO {FTS_TABLE}(rowid, {_FTS_COLUMNS}) VALUES ({_NEW_VALUES});
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS logs_fts_delete AFTER DELETE ON logs BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, {_FTS_COLUMNS}) VALUES ('delete', {_OLD_VALUES});
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS logs_fts_update AFTER UPDATE ON logs BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, {_FTS_COLUMNS}) VALUES ('delete', {_OLD_VALUES});
        INSERT INTO {FTS_TABLE}(rowid, {_FTS_COLUMNS}) VALUES ({_NEW_VALUES});
    END
    """,
)

REBUILD_INDEX = f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')"


def setup_fulltext(conn: Connection) -> bool:
    """
    Create the FTS table and sync triggers if missing (sync connection).

    An index created with an older column layout is dropped and rebuilt.
    Returns False when this SQLite build has no FTS5 module; callers then
    fall back to substring search.
    """
    existing = conn.execute(
        text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
        {"name": FTS_TABLE},
    ).first()

    if existing is not None and _FTS_SCHEMA not in (existing[0] or ""):
        logger.info("Rebuilding %s with the current column layout", FTS_TABLE)
        conn.exec_driver_sql(f"DROP TABLE {FTS_TABLE}")
        existing = None

    if existing is None:
        try:
            conn.exec_driver_sql(CREATE_FTS_TABLE)
        except OperationalError as exc:
            logger.warning("FTS5 unavailable (%s); using substring search", exc.orig)
            return False
        # Index rows written before the FTS table existed.
        conn.exec_driver_sql(REBUILD_INDEX)
        logger.info("Created %s full-text index", FTS_TABLE)

    for ddl in CREATE_TRIGGERS:
        conn.exec_driver_sql(ddl)
    return True


def fts_condition(match_expression: str) -> TextClause:
    """WHERE fragment restricting logs to FTS hits for `match_expression`."""
    return text(
        f"logs.rowid IN (SELECT rowid FROM {FTS_TABLE} WHERE {FTS_TABLE} MATCH :fts_query)"
    ).bindparams(fts_query=match_expression)
