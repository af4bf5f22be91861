import pytest

from printvault.model import ProjectDraft
from printvault.recovery import EXIT_FATAL, RecoveryState


def _corrupt(archive):
    archive.store.dispose()
    archive.settings.database_path.write_bytes(b"\x00garbage\xff" * 400)


def test_healthy_database_is_ready(archive):
    outcome = archive.recovery().run(decide=False)
    assert outcome.state is RecoveryState.READY
    assert outcome.corruption is None
    assert outcome.snapshot_usable is None  # no snapshots yet


def test_corrupted_database_recovers_from_newest_snapshot(archive):
    archive.store.insert_project(ProjectDraft(name="Box"), "/archive/Box")
    snap = archive.create_snapshot()
    _corrupt(archive)
    asked = []

    outcome = archive.recovery().run(decide=lambda problem: asked.append(problem) or True)

    assert len(asked) == 1
    assert outcome.state is RecoveryState.READY
    assert outcome.restored_from == snap
    assert outcome.snapshot_usable is True
    assert archive.settings.database_path.read_bytes() == snap.read_bytes()
    assert not archive.store.is_corrupted()
    assert archive.store.find_project_by_name("Box") is not None
    assert outcome.transitions == [
        RecoveryState.START,
        RecoveryState.AWAITING_DECISION,
        RecoveryState.RECOVERING,
        RecoveryState.READY,
    ]


def test_declining_recovery_is_fatal(archive):
    archive.create_snapshot()
    _corrupt(archive)
    garbage = archive.settings.database_path.read_bytes()

    outcome = archive.recovery().run(decide=False)

    assert outcome.state is RecoveryState.FATAL
    assert "declined" in outcome.reason
    assert archive.settings.database_path.read_bytes() == garbage


def test_no_snapshot_is_fatal(archive):
    _corrupt(archive)
    outcome = archive.recovery().run(decide=True)
    assert outcome.state is RecoveryState.FATAL
    assert "no data source" in outcome.reason


def test_snapshot_that_is_also_corrupted_is_fatal(archive):
    _corrupt(archive)
    archive.create_snapshot()  # snapshot of garbage
    outcome = archive.recovery().run(decide=True)
    assert outcome.state is RecoveryState.FATAL
    assert outcome.restored_from is not None


def test_run_or_exit_terminates_on_fatal(archive):
    _corrupt(archive)
    with pytest.raises(SystemExit) as exc:
        archive.recovery().run_or_exit(decide=False)
    assert exc.value.code == EXIT_FATAL


def test_unusable_newest_snapshot_is_only_a_warning(archive):
    snap = archive.create_snapshot()
    snap.write_bytes(b"")
    outcome = archive.recovery().run_or_exit(decide=False)
    assert outcome.state is RecoveryState.READY
    assert outcome.snapshot_usable is False
