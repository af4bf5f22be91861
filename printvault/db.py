# printvault/db.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Set

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from printvault.log import debug

# -------------------------------------------------------------------
# Engine / connection helpers
# -------------------------------------------------------------------


def make_engine(database_path: Path, lock_timeout: float = 5.0) -> Engine:
    """
    SQLite engine for the archive database.

    Every connection waits at most `lock_timeout` seconds on a locked
    database and enforces foreign keys. NullPool means no connection
    outlives its use, so a restored file is never read through a stale handle.
    """
    eng = create_engine(
        f"sqlite:///{database_path}",
        future=True,
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": lock_timeout},
    )
    busy_ms = int(lock_timeout * 1000)

    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_conn, _record) -> None:
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute(f"PRAGMA busy_timeout={busy_ms}")
        cur.close()

    return eng


# -------------------------------------------------------------------
# Schema bootstrap / migrations (idempotent, additive-only)
# -------------------------------------------------------------------

REQUIRED_TABLES = ("projects", "last_printed_dates")

_REQUIRED_PROJECT_COLS: dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "name": "TEXT NOT NULL",
    "project_type": "TEXT",
    "file_path": "TEXT",
    "description": "TEXT",
    "created_date": "TEXT",
    # added after the first release
    "recipient": "TEXT DEFAULT ''",
    "tags": "TEXT DEFAULT ''",
}

_REQUIRED_PRINT_DATE_COLS: dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "project_id": "INTEGER",
    "print_date": "TEXT",
}


def _table_exists(conn: Connection, table: str) -> bool:
    row = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    ).fetchone()
    return bool(row)


def _table_columns(conn: Connection, table: str) -> Set[str]:
    """
    Return existing column names for `table`.

    NOTE: SQLite PRAGMA does not accept bound parameters,
    so the table name is inlined after validation.
    """
    if not table.replace("_", "").isalnum():
        raise ValueError(f"Invalid table name: {table!r}")
    rows = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
    return {r[1] for r in rows}


def _ensure_columns(conn: Connection, table: str, required: dict[str, str]) -> None:
    existing = _table_columns(conn, table)
    to_add: Iterable[tuple[str, str]] = (
        (col, coltype) for col, coltype in required.items() if col not in existing
    )
    for col, coltype in to_add:
        # SQLite cannot ALTER in a key or a NOT NULL without default
        safe_coltype = (
            coltype.replace("PRIMARY KEY", "").replace("AUTOINCREMENT", "").replace("NOT NULL", "").strip()
        )
        debug(f"migrating {table}: adding column {col}")
        if safe_coltype:
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col} {safe_coltype}"))
        else:
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col}"))


def init_schema(engine: Engine) -> None:
    """Create/upgrade the archive tables without destructive changes."""
    with engine.begin() as conn:
        if not _table_exists(conn, "projects"):
            conn.execute(
                text(
                    """
                    CREATE TABLE projects (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        project_type TEXT,
                        file_path TEXT,
                        description TEXT,
                        created_date TEXT,
                        recipient TEXT DEFAULT '',
                        tags TEXT DEFAULT ''
                    )
                    """
                )
            )
        else:
            _ensure_columns(conn, "projects", _REQUIRED_PROJECT_COLS)

        if not _table_exists(conn, "last_printed_dates"):
            conn.execute(
                text(
                    """
                    CREATE TABLE last_printed_dates (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        project_id INTEGER NOT NULL,
                        print_date TEXT NOT NULL,
                        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
                    )
                    """
                )
            )
        else:
            _ensure_columns(conn, "last_printed_dates", _REQUIRED_PRINT_DATE_COLS)

        conn.execute(text("CREATE INDEX IF NOT EXISTS idx_projects_name ON projects(name)"))
        conn.execute(
            text("CREATE INDEX IF NOT EXISTS idx_print_dates_project ON last_printed_dates(project_id)")
        )
