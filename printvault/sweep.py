# printvault/sweep.py
from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set, Union

from printvault.ingest import ORPHANS_DIR, orphan_dir
from printvault.log import err, info, warn
from printvault.store import ArchiveStore

PathLike = Union[str, Path]


@dataclass
class SweepReport:
    orphans: List[Path] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)
    stale_markers: List[Path] = field(default_factory=list)
    untracked: List[Path] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.orphans or self.untracked or self.missing or self.errors)


def _norm(p: PathLike) -> str:
    return str(Path(p).absolute())


def _inside(root: Path, target: Path) -> bool:
    """True when target resolves to a strict descendant of root (and is not the orphans dir)."""
    r = root.resolve()
    t = target.resolve()
    return r in t.parents and t != (r / ORPHANS_DIR) and (r / ORPHANS_DIR) not in t.parents


def sweep(store: ArchiveStore, archive_root: PathLike, delete: bool = False) -> SweepReport:
    """Reconcile archive folders, orphan markers and project rows."""
    root = Path(archive_root)
    report = SweepReport()
    projects = store.list_projects()
    referenced: Set[str] = {_norm(p.file_path) for p in projects if p.file_path}

    for p in projects:
        if not p.file_path or not Path(p.file_path).is_dir():
            report.missing.append(f"{p.id}:{p.name}:{p.file_path}")
            warn(f"project {p.id} ({p.name}) has no folder at {p.file_path}")

    markers = sorted(orphan_dir(root).glob("*.json")) if orphan_dir(root).is_dir() else []
    marked: Set[str] = set()
    for marker in markers:
        try:
            data = json.loads(marker.read_text(encoding="utf-8"))
            target = Path(data["path"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            report.errors.append(f"{marker}: unreadable marker ({e})")
            continue
        if _norm(target) in referenced:
            report.stale_markers.append(marker)
            if delete:
                marker.unlink(missing_ok=True)
            continue
        marked.add(_norm(target))
        report.orphans.append(target)
        if delete and not _inside(root, target):
            report.errors.append(f"{marker}: {target} is outside {root}; not removed")
            warn(f"orphan marker {marker.name} points outside the archive: {target}")
            continue
        if delete:
            try:
                if target.exists():
                    shutil.rmtree(target)
                marker.unlink(missing_ok=True)
                report.removed.append(target)
                info(f"removed orphan {target}")
            except OSError as e:
                report.errors.append(f"{target}: {e}")
                err(f"could not remove orphan {target}: {e}", e)

    if root.is_dir():
        for child in sorted(root.iterdir()):
            if child.name == ORPHANS_DIR or not child.is_dir():
                continue
            key = _norm(child)
            if key not in referenced and key not in marked:
                report.untracked.append(child)
                warn(f"untracked folder {child}")

    return report
