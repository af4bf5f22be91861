from printvault.ingest import orphan_dir, write_orphan_marker
from printvault.model import ProjectDraft
from printvault.sweep import sweep

from conftest import make_tree


def test_clean_archive(archive, box_folder):
    archive.pipeline.ingest(ProjectDraft(name="Box"), box_folder)
    report = sweep(archive.store, archive.settings.archive_root)
    assert report.clean


def test_orphan_is_reported_then_removed(archive):
    root = archive.settings.archive_root
    leftover = make_tree(root / "Box", {"model.stl": b"x"})
    marker = write_orphan_marker(root, "Box", leftover, "database is locked")

    report = sweep(archive.store, root)
    assert report.orphans == [leftover]
    assert report.untracked == []
    assert leftover.exists()

    report = sweep(archive.store, root, delete=True)
    assert report.removed == [leftover]
    assert not leftover.exists()
    assert not marker.exists()
    assert sweep(archive.store, root).clean


def test_marker_for_referenced_folder_is_stale(archive, box_folder):
    pid = archive.pipeline.ingest(ProjectDraft(name="Box"), box_folder)
    root = archive.settings.archive_root
    path = archive.store.load_project_by_id(pid).file_path
    marker = write_orphan_marker(root, "Box", path, "old failure")

    report = sweep(archive.store, root, delete=True)

    assert report.stale_markers == [marker]
    assert report.removed == []
    assert not marker.exists()
    assert (root / "Box" / "model.stl").exists()


def test_untracked_and_missing(archive):
    root = archive.settings.archive_root
    make_tree(root / "Stray", {"a.stl": b"a"})
    archive.store.insert_project(ProjectDraft(name="Gone"), str(root / "Gone"))

    report = sweep(archive.store, root)

    assert report.untracked == [root / "Stray"]
    assert len(report.missing) == 1 and "Gone" in report.missing[0]
    assert not report.clean


def test_unreadable_marker_is_an_error(archive):
    d = orphan_dir(archive.settings.archive_root)
    d.mkdir()
    (d / "broken.json").write_text("{", encoding="utf-8")
    report = sweep(archive.store, archive.settings.archive_root)
    assert report.errors


def test_marker_outside_archive_is_never_deleted(archive, tmp_path):
    root = archive.settings.archive_root
    elsewhere = make_tree(tmp_path / "elsewhere", {"precious.txt": b"x"})
    marker = write_orphan_marker(root, "Box", elsewhere, "hand edited")

    report = sweep(archive.store, root, delete=True)

    assert (elsewhere / "precious.txt").exists()
    assert marker.exists()
    assert report.removed == []
    assert any("outside" in e for e in report.errors)
