# printvault/store.py
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, Row

from printvault.db import REQUIRED_TABLES, init_schema, make_engine
from printvault.errors import ArchiveError, ProjectNotFound, TransactionFailed, ValidationError
from printvault.log import debug, err, warn
from printvault.model import Project, ProjectDraft, join_tags, split_tags
from printvault import validation

T = TypeVar("T")

UPDATABLE_FIELDS = ("name", "project_type", "description", "recipient", "tags")

_INSERT_PROJECT_SQL = text(
    """
    INSERT INTO projects (name, project_type, file_path, description, created_date, recipient, tags)
    VALUES (:name, :project_type, :file_path, :description, :created_date, :recipient, :tags)
    """
)
_INSERT_DATE_SQL = text("INSERT INTO last_printed_dates (project_id, print_date) VALUES (:project_id, :print_date)")
_SELECT_PROJECT_SQL = """
    SELECT id, name, COALESCE(project_type, '') AS project_type, COALESCE(file_path, '') AS file_path,
           COALESCE(description, '') AS description, COALESCE(created_date, '') AS created_date,
           COALESCE(recipient, '') AS recipient, COALESCE(tags, '') AS tags
    FROM projects
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _to_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class ArchiveStore:
    """
    Transactional access to the projects/last_printed_dates tables.

    Writes that take a `conn` join the caller's transaction; without one
    they run in a transaction of their own. Nothing here retries.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def open(cls, database_path, lock_timeout: float = 5.0) -> "ArchiveStore":
        store = cls(make_engine(database_path, lock_timeout))
        init_schema(store.engine)
        return store

    def dispose(self) -> None:
        self.engine.dispose()

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    def run_transaction(self, work: Callable[[Connection], T]) -> T:
        """
        Run `work(conn)` on one connection and commit only if it returns.
        Any error rolls the whole unit back; ArchiveErrors propagate as-is,
        everything else surfaces as TransactionFailed.
        """
        with self.engine.connect() as conn:
            trans = conn.begin()
            try:
                result = work(conn)
                trans.commit()
                return result
            except ArchiveError:
                trans.rollback()
                raise
            except Exception as e:
                trans.rollback()
                err(f"transaction rolled back: {e}", e)
                raise TransactionFailed(f"Database write rolled back: {e}") from e

    def _in_tx(self, conn: Optional[Connection], work: Callable[[Connection], T]) -> T:
        if conn is not None:
            return work(conn)
        return self.run_transaction(work)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def insert_project(self, draft: ProjectDraft, file_path: str, conn: Optional[Connection] = None) -> int:
        """Insert one project row and return its id (pass `conn` to join a transaction)."""

        def _work(c: Connection) -> int:
            res = c.execute(
                _INSERT_PROJECT_SQL,
                {
                    "name": draft.name,
                    "project_type": draft.project_type,
                    "file_path": str(file_path),
                    "description": draft.description or "",
                    "created_date": _now_iso(),
                    "recipient": draft.recipient or "",
                    "tags": join_tags(draft.tags),
                },
            )
            new_id = res.lastrowid
            if new_id is None:
                raise TransactionFailed(f"Insert of project {draft.name!r} returned no id")
            debug(f"inserted project {new_id} ({draft.name})")
            return int(new_id)

        return self._in_tx(conn, _work)

    def add_print_dates(self, project_id: int, dates: Iterable[date | str], conn: Optional[Connection] = None) -> int:
        rows = [{"project_id": project_id, "print_date": _to_date(d).isoformat()} for d in dates]

        def _work(c: Connection) -> int:
            if rows:
                c.execute(_INSERT_DATE_SQL, rows)
            return len(rows)

        return self._in_tx(conn, _work)

    def update_project(self, project_id: int, fields: Dict[str, Any], conn: Optional[Connection] = None) -> Project:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        values: Dict[str, Any] = {}
        if "name" in fields:
            values["name"] = validation.validate_name(fields["name"])
        if "project_type" in fields:
            values["project_type"] = validation.validate_project_type(fields["project_type"])
        if "description" in fields:
            values["description"] = validation.validate_description(fields["description"])
        if "recipient" in fields:
            values["recipient"] = (fields["recipient"] or "").strip()
        if "tags" in fields:
            values["tags"] = join_tags(validation.validate_tags(fields["tags"]))

        def _work(c: Connection) -> Project:
            if values:
                assignments = ", ".join(f"{k} = :{k}" for k in values)
                res = c.execute(text(f"UPDATE projects SET {assignments} WHERE id = :id"), {**values, "id": project_id})
                if res.rowcount == 0:
                    raise ProjectNotFound(project_id)
            project = self._load(c, project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            return project

        return self._in_tx(conn, _work)

    def delete_project(self, project_id: int, conn: Optional[Connection] = None) -> bool:
        def _work(c: Connection) -> bool:
            res = c.execute(text("DELETE FROM projects WHERE id = :id"), {"id": project_id})
            return res.rowcount > 0

        return self._in_tx(conn, _work)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def _row_to_project(self, conn: Connection, r: Row) -> Project:
        return Project(
            id=r.id,
            name=r.name,
            project_type=r.project_type,
            file_path=r.file_path,
            description=r.description,
            recipient=r.recipient,
            tags=split_tags(r.tags),
            created_date=r.created_date,
            print_dates=self._print_dates(conn, r.id),
        )

    def _print_dates(self, conn: Connection, project_id: int) -> List[date]:
        rows = conn.execute(
            text("SELECT print_date FROM last_printed_dates WHERE project_id = :pid ORDER BY id"),
            {"pid": project_id},
        ).fetchall()
        return [_to_date(r[0]) for r in rows]

    def _load(self, conn: Connection, project_id: int) -> Optional[Project]:
        row = conn.execute(text(_SELECT_PROJECT_SQL + " WHERE id = :id"), {"id": project_id}).fetchone()
        return self._row_to_project(conn, row) if row else None

    def load_project_by_id(self, project_id: int) -> Optional[Project]:
        with self.engine.connect() as conn:
            return self._load(conn, project_id)

    def find_project_by_name(self, name: str, conn: Optional[Connection] = None) -> Optional[Project]:
        def _work(c: Connection) -> Optional[Project]:
            row = c.execute(
                text(_SELECT_PROJECT_SQL + " WHERE name = :name ORDER BY id LIMIT 1"), {"name": name}
            ).fetchone()
            return self._row_to_project(c, row) if row else None

        if conn is not None:
            return _work(conn)
        with self.engine.connect() as c:
            return _work(c)

    def list_projects(self) -> List[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(_SELECT_PROJECT_SQL + " ORDER BY id")).fetchall()
            return [self._row_to_project(conn, r) for r in rows]

    def print_dates(self, project_id: int) -> List[date]:
        with self.engine.connect() as conn:
            return self._print_dates(conn, project_id)

    def count_rows(self, table: str) -> int:
        if table not in REQUIRED_TABLES:
            raise ValueError(f"Unknown table: {table!r}")
        with self.engine.connect() as conn:
            return int(conn.execute(text(f"SELECT COUNT(1) FROM {table}")).scalar() or 0)

    # -------------------------------------------------------------------
    # Corruption probes
    # -------------------------------------------------------------------

    def is_corrupted(self) -> bool:
        """Any failure to run the simplest read counts as corruption."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT COUNT(1) FROM projects")).scalar()
            return False
        except Exception as e:
            warn(f"database probe failed, treating as corrupted: {e}")
            return True

    def verify_integrity(self) -> Dict[str, bool]:
        """Probe each required table; failures are logged, never raised."""
        status: Dict[str, bool] = {}
        for table in REQUIRED_TABLES:
            try:
                with self.engine.connect() as conn:
                    conn.execute(text(f"SELECT 1 FROM {table} LIMIT 1")).fetchall()
                status[table] = True
            except Exception as e:
                warn(f"table {table} is missing or unreadable: {e}")
                status[table] = False
        return status

    def integrity_check(self) -> str:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text("PRAGMA integrity_check")).fetchone()
            return str(row[0]) if row else "unknown"
        except Exception as e:
            return f"ERR({e.__class__.__name__})"
