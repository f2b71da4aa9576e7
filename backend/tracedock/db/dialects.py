# tracedock/db/dialects.py
"""
Per-engine capability records.

The repository is written against one set of SQLAlchemy tables. Everything
that differs between engines is described here, selected once at startup
from DB_TYPE, and refined by capability probes (see `Database.init`):

- supports_fulltext: an FTS index over logs exists and is kept in sync
- supports_json_query: JSON-path extraction can be used in WHERE clauses
- reclaims_space: run VACUUM after large deletions
- size_query: SQL returning the database size in bytes (None = unknown)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional

from sqlalchemy.engine import make_url


@dataclass(frozen=True)
class Dialect:
    kind: str
    driver: str
    supports_fulltext: bool = False
    supports_json_query: bool = True
    reclaims_space: bool = False
    size_query: Optional[str] = None

    def with_capabilities(self, **changes) -> "Dialect":
        return replace(self, **changes)


SQLITE = Dialect(
    kind="sqlite",
    driver="sqlite+aiosqlite",
    # Both are probed at init: FTS5 and JSON1 are compile-time options.
    supports_fulltext=True,
    supports_json_query=True,
    reclaims_space=True,
    size_query="SELECT page_count * page_size FROM pragma_page_count(), pragma_page_size()",
)

POSTGRESQL = Dialect(
    kind="postgresql",
    driver="postgresql+asyncpg",
    size_query="SELECT pg_database_size(current_database())",
)

MYSQL = Dialect(
    kind="mysql",
    driver="mysql+aiomysql",
    size_query=(
        "SELECT COALESCE(SUM(data_length + index_length), 0) "
        "FROM information_schema.tables WHERE table_schema = DATABASE()"
    ),
)

DIALECTS: Dict[str, Dialect] = {d.kind: d for d in (SQLITE, POSTGRESQL, MYSQL)}

# VACUUM pauses concurrent access; skip it for small cleanups.
VACUUM_THRESHOLD = 100


def get_dialect(kind: str) -> Dialect:
    try:
        return DIALECTS[kind]
    except KeyError:
        raise ValueError(f"Unsupported database type: {kind}") from None


def build_async_url(dialect: Dialect, target: str) -> str:
    """
    Turn a user-facing connection target into an async SQLAlchemy URL.

    - SQLite accepts a plain path (`./data/x.sqlite`), `:memory:`, or a full URL.
    - PostgreSQL/MySQL accept `postgres://`, `postgresql://`, `mysql://` or a
      URL that already names a driver.
    """
    target = target.strip()

    if dialect.kind == "sqlite":
        if "://" not in target:
            return f"{dialect.driver}:///{target}"
        url = make_url(target)
        return str(url.set(drivername=dialect.driver))

    url = make_url(target.replace("postgres://", "postgresql://", 1) if target.startswith("postgres://") else target)
    if "+" in url.drivername:
        return url.render_as_string(hide_password=False)
    return url.set(drivername=dialect.driver).render_as_string(hide_password=False)
