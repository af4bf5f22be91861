import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

from printvault.archive.copier import AtomicDirectoryCopier, has_enough_space, retry_file_operation
from printvault.archive.integrity import verify_integrity
from printvault.errors import CopyCancelled, CopyVerificationFailed, InsufficientSpace
from printvault.model import CopyStatus

from conftest import make_tree


def _snapshot_tree(root: Path) -> dict:
    return {str(p.relative_to(root)): p.read_bytes() for p in root.rglob("*") if p.is_file()}


def test_copy_round_trip(tmp_path):
    src = make_tree(
        tmp_path / "src",
        {"model.stl": b"0123456789", "renders/img.png": b"x" * 20, "renders/empty": None},
    )
    dst = tmp_path / "archive" / "Box"
    op = AtomicDirectoryCopier(retry_delay=0).copy(src, dst)

    assert op.status is CopyStatus.VERIFIED
    assert op.required_bytes == 30
    assert op.copied_files == 2
    assert verify_integrity(src, dst)
    assert (dst / "renders" / "empty").is_dir()


def test_insufficient_space_creates_nothing(tmp_path):
    src = make_tree(tmp_path / "src", {"model.stl": b"0123456789"})
    dst = tmp_path / "archive" / "Box"
    copier = AtomicDirectoryCopier(disk_usage=lambda p: SimpleNamespace(total=100, used=100, free=5))

    with pytest.raises(InsufficientSpace) as exc:
        copier.copy(src, dst)

    assert exc.value.required == 10
    assert exc.value.available == 5
    assert not dst.exists()
    assert not (tmp_path / "archive").exists()


def test_verification_failure_rolls_back(tmp_path):
    src = make_tree(tmp_path / "src", {"model.stl": b"0123456789", "sub/part.stl": b"abc"})
    before = _snapshot_tree(src)
    dst = tmp_path / "archive" / "Box"

    def truncating_copy(s, d):
        Path(d).write_bytes(Path(s).read_bytes()[:-1])

    with pytest.raises(CopyVerificationFailed) as exc:
        AtomicDirectoryCopier(copy_file=truncating_copy).copy(src, dst)

    assert not dst.exists()
    assert _snapshot_tree(src) == before
    assert any("size mismatch" in p for p in exc.value.problems)


def test_existing_files_are_replaced(tmp_path):
    src = make_tree(tmp_path / "src", {"test_file.txt": b"Test content"})
    dst = make_tree(tmp_path / "dst", {"test_file.txt": b"Old content"})

    AtomicDirectoryCopier().copy(src, dst)

    assert (dst / "test_file.txt").read_bytes() == b"Test content"


def test_declined_conflict_keeps_existing_file(tmp_path):
    src = make_tree(tmp_path / "src", {"a.stl": b"new!", "b.stl": b"fresh"})
    dst = make_tree(tmp_path / "dst", {"a.stl": b"old!"})
    asked = []

    def decline(path):
        asked.append(path.name)
        return False

    op = AtomicDirectoryCopier().copy(src, dst, resolve_conflict=decline)

    assert asked == ["a.stl"]
    assert (dst / "a.stl").read_bytes() == b"old!"
    assert (dst / "b.stl").read_bytes() == b"fresh"
    assert op.skipped == [str(dst / "a.stl")]


def test_declined_conflict_with_different_size_fails_verification(tmp_path):
    src = make_tree(tmp_path / "src", {"a.stl": b"much longer content", "b.stl": b"new"})
    dst = make_tree(tmp_path / "dst", {"a.stl": b"short"})

    with pytest.raises(CopyVerificationFailed) as exc:
        AtomicDirectoryCopier().copy(src, dst, resolve_conflict=lambda p: False)

    # only what this copy added is removed; the existing folder stays
    assert exc.value.rolled_back
    assert (dst / "a.stl").read_bytes() == b"short"
    assert not (dst / "b.stl").exists()


def test_single_failing_file_is_logged_and_detected(tmp_path):
    src = make_tree(tmp_path / "src", {"good.stl": b"good", "locked.stl": b"locked"})
    dst = tmp_path / "dst"
    copied = []

    def flaky_copy(s, d):
        if s.endswith("locked.stl"):
            raise PermissionError(13, "locked", s)
        copied.append(Path(s).name)
        Path(d).write_bytes(Path(s).read_bytes())

    with pytest.raises(CopyVerificationFailed) as exc:
        AtomicDirectoryCopier(max_retries=2, retry_delay=0, copy_file=flaky_copy).copy(src, dst)

    # the walk went on past the failing entry
    assert copied == ["good.stl"]
    assert any("locked.stl" in p for p in exc.value.problems)
    assert not dst.exists()


def test_cancel_rolls_back(tmp_path):
    src = make_tree(tmp_path / "src", {"a.stl": b"a", "b.stl": b"b", "c.stl": b"c"})
    dst = tmp_path / "dst"
    cancel = threading.Event()

    def copy_then_cancel(s, d):
        Path(d).write_bytes(Path(s).read_bytes())
        cancel.set()

    with pytest.raises(CopyCancelled):
        AtomicDirectoryCopier(copy_file=copy_then_cancel).copy(src, dst, cancel=cancel)
    assert not dst.exists()


def test_retry_file_operation_retries_then_succeeds():
    calls = []

    def op():
        calls.append(1)
        if len(calls) < 3:
            raise OSError("busy")
        return "done"

    assert retry_file_operation(op, max_retries=3, delay=0) == "done"
    assert len(calls) == 3


def test_retry_file_operation_reraises_last_error():
    calls = []

    def op():
        calls.append(1)
        raise OSError(f"attempt {len(calls)}")

    with pytest.raises(OSError, match="attempt 2"):
        retry_file_operation(op, max_retries=2, delay=0)


def test_has_enough_space(tmp_path):
    src = make_tree(tmp_path / "src", {"a": b"x" * 10})
    assert has_enough_space(src, tmp_path / "not" / "yet" / "there")
    assert not has_enough_space(src, tmp_path, disk_usage=lambda p: SimpleNamespace(free=9))


def test_rollback_into_existing_folder_keeps_earlier_entries(tmp_path):
    src = make_tree(tmp_path / "src", {"model.stl": b"0123456789", "renders/img.png": b"x" * 20})
    dst = make_tree(tmp_path / "dst", {"notes.txt": b"mine", "renders/old.png": b"old"})

    def truncating_copy(s, d):
        Path(d).write_bytes(Path(s).read_bytes()[:-1])

    with pytest.raises(CopyVerificationFailed):
        AtomicDirectoryCopier(copy_file=truncating_copy).copy(src, dst)

    assert _snapshot_tree(dst) == {"notes.txt": b"mine", str(Path("renders") / "old.png"): b"old"}


def test_failed_rollback_is_reported(tmp_path, monkeypatch):
    src = make_tree(tmp_path / "src", {"model.stl": b"0123456789"})
    dst = tmp_path / "archive" / "Box"

    def truncating_copy(s, d):
        Path(d).write_bytes(Path(s).read_bytes()[:-1])

    def no_rmtree(path, *a, **kw):
        raise PermissionError(13, "in use", str(path))

    monkeypatch.setattr("printvault.archive.copier.shutil.rmtree", no_rmtree)
    with pytest.raises(CopyVerificationFailed) as exc:
        AtomicDirectoryCopier(copy_file=truncating_copy).copy(src, dst)

    assert not exc.value.rolled_back
    assert "could not remove" in exc.value.problems[0]
    assert "NOT" in str(exc.value)
    assert dst.exists()
