from datetime import date

import pytest
from sqlalchemy import text

from printvault.db import init_schema, make_engine
from printvault.errors import ProjectNotFound, TransactionFailed, ValidationError
from printvault.model import ProjectDraft
from printvault.store import ArchiveStore


@pytest.fixture
def store(tmp_path):
    s = ArchiveStore.open(tmp_path / "print_jobs.db", lock_timeout=1.0)
    yield s
    s.dispose()


def _draft(name="Box", **kw):
    return ProjectDraft(name=name, **kw)


def test_insert_and_load(store):
    pid = store.insert_project(
        _draft(description="a box", recipient="Ms. Rivera", tags=["Math", "ECC"]), "/archive/Box"
    )
    store.add_print_dates(pid, [date(2024, 1, 2), "2024-03-04"])

    p = store.load_project_by_id(pid)
    assert p.name == "Box"
    assert p.project_type == "Prototype"
    assert p.file_path == "/archive/Box"
    assert p.tags == ["Math", "ECC"]
    assert p.recipient == "Ms. Rivera"
    assert p.created_date
    assert p.print_dates == [date(2024, 1, 2), date(2024, 3, 4)]


def test_load_missing_returns_none(store):
    assert store.load_project_by_id(42) is None


def test_failed_transaction_leaves_no_rows(store):
    def work(conn):
        pid = store.insert_project(_draft(), "/archive/Box", conn=conn)
        store.add_print_dates(pid, [date(2024, 1, 2)], conn=conn)
        raise RuntimeError("disk went away")

    with pytest.raises(TransactionFailed) as exc:
        store.run_transaction(work)

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert store.count_rows("projects") == 0
    assert store.count_rows("last_printed_dates") == 0


def test_failure_on_print_dates_rolls_back_project(store):
    def work(conn):
        pid = store.insert_project(_draft(), "/archive/Box", conn=conn)
        store.add_print_dates(pid, ["not-a-date"], conn=conn)

    with pytest.raises(TransactionFailed):
        store.run_transaction(work)
    assert store.count_rows("projects") == 0


def test_archive_errors_propagate_unchanged(store):
    def work(conn):
        store.insert_project(_draft(), "/archive/Box", conn=conn)
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        store.run_transaction(work)
    assert store.count_rows("projects") == 0


def test_transaction_commits_and_returns(store):
    def work(conn):
        pid = store.insert_project(_draft(), "/archive/Box", conn=conn)
        store.add_print_dates(pid, [date(2024, 1, 2)], conn=conn)
        return pid

    pid = store.run_transaction(work)
    assert store.load_project_by_id(pid).print_dates == [date(2024, 1, 2)]


def test_delete_cascades_print_dates(store):
    pid = store.insert_project(_draft(), "/archive/Box")
    store.add_print_dates(pid, [date(2024, 1, 2), date(2024, 1, 3)])
    assert store.delete_project(pid)
    assert store.count_rows("last_printed_dates") == 0
    assert not store.delete_project(pid)


def test_print_date_requires_live_project(store):
    with pytest.raises(TransactionFailed):
        store.add_print_dates(999, [date(2024, 1, 2)])


def test_update_project(store):
    pid = store.insert_project(_draft(tags=["Math"]), "/archive/Box")
    p = store.update_project(pid, {"description": "updated", "tags": ["ELA", "Braille"], "project_type": "Final Print"})
    assert p.description == "updated"
    assert p.tags == ["ELA", "Braille"]
    assert p.project_type == "Final Print"
    assert p.file_path == "/archive/Box"


def test_update_rejects_immutable_and_bad_fields(store):
    pid = store.insert_project(_draft(), "/archive/Box")
    with pytest.raises(ValidationError):
        store.update_project(pid, {"id": 7})
    with pytest.raises(ValidationError):
        store.update_project(pid, {"name": "bad/name"})
    with pytest.raises(ProjectNotFound):
        store.update_project(pid + 1, {"description": "x"})


def test_find_and_list(store):
    a = store.insert_project(_draft("Alpha"), "/archive/Alpha")
    b = store.insert_project(_draft("Beta"), "/archive/Beta")
    assert store.find_project_by_name("Beta").id == b
    assert store.find_project_by_name("Gamma") is None
    assert [p.id for p in store.list_projects()] == [a, b]


def test_fresh_database_is_not_corrupted(store):
    assert not store.is_corrupted()
    assert store.verify_integrity() == {"projects": True, "last_printed_dates": True}
    assert store.integrity_check() == "ok"


def test_garbage_file_is_corrupted(tmp_path):
    db = tmp_path / "print_jobs.db"
    store = ArchiveStore.open(db)
    store.dispose()
    db.write_bytes(b"this is not a database " * 200)

    assert store.is_corrupted()
    assert store.verify_integrity() == {"projects": False, "last_printed_dates": False}


def test_verify_integrity_reports_missing_table(store):
    with store.engine.begin() as conn:
        conn.execute(text("DROP TABLE last_printed_dates"))
    assert store.verify_integrity() == {"projects": True, "last_printed_dates": False}
    assert not store.is_corrupted()


def test_migration_adds_missing_columns(tmp_path):
    db = tmp_path / "old.db"
    eng = make_engine(db)
    with eng.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE projects (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL,"
                " project_type TEXT, file_path TEXT, description TEXT, created_date TEXT)"
            )
        )
        conn.execute(text("INSERT INTO projects (name, file_path) VALUES ('Legacy', '/archive/Legacy')"))
    init_schema(eng)
    init_schema(eng)  # idempotent

    store = ArchiveStore(eng)
    legacy = store.find_project_by_name("Legacy")
    assert legacy.recipient == ""
    assert legacy.tags == []
    assert store.verify_integrity()["last_printed_dates"]
    store.dispose()
