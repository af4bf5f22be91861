# printvault/ingest.py
from __future__ import annotations

import json
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from sqlalchemy.engine import Connection

from printvault.archive.copier import AtomicDirectoryCopier, ConflictResolver
from printvault.errors import ArchiveError, TransactionFailed, ValidationError
from printvault.log import err, info, warn
from printvault.model import ProjectDraft
from printvault.store import ArchiveStore
from printvault.validation import validate_draft

PathLike = Union[str, Path]

ORPHANS_DIR = ".orphans"


def orphan_dir(archive_root: PathLike) -> Path:
    return Path(archive_root) / ORPHANS_DIR


def write_orphan_marker(archive_root: PathLike, name: str, path: Path, reason: str) -> Path:
    d = orphan_dir(archive_root)
    d.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc)
    marker = d / f"{name}_{stamp.strftime('%Y%m%d_%H%M%S_%f')}.json"
    marker.write_text(
        json.dumps(
            {
                "name": name,
                "path": str(path),
                "reason": reason,
                "created_at": stamp.isoformat(timespec="seconds"),
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    return marker


class IngestPipeline:
    """
    Validate, copy into the archive, then commit metadata.

    The copy and the database write are two separate steps; when the write
    fails the copied folder is deleted again, and if that fails too an orphan
    marker is left for `sweep`.
    """

    def __init__(
        self,
        store: ArchiveStore,
        copier: AtomicDirectoryCopier,
        archive_root: PathLike,
        require_print_date: bool = False,
    ) -> None:
        self.store = store
        self.copier = copier
        self.archive_root = Path(archive_root)
        self.require_print_date = require_print_date

    def ingest(
        self,
        draft: ProjectDraft,
        source_folder: PathLike,
        resolve_conflict: Optional[ConflictResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        clean, source = validate_draft(draft, source_folder, require_print_date=self.require_print_date)
        if self.store.find_project_by_name(clean.name) is not None:
            raise ValidationError(f"A project named {clean.name!r} already exists.", field="name")

        destination = (self.archive_root / clean.name).absolute()
        resolved = destination.resolve()
        if source == resolved or resolved in source.parents or source in resolved.parents:
            raise ValidationError(f"Folder {source} overlaps the archive location {destination}.", field="folder")
        # an untracked folder of that name (see sweep) is never merged into or removed
        if os.path.lexists(destination):
            raise ValidationError(
                f"Archive folder {destination} already exists; choose another name or run sweep.",
                field="name",
                path=destination,
            )

        # step 1: files (raises CopyError subclasses; nothing persisted)
        self.copier.copy(source, destination, resolve_conflict=resolve_conflict, cancel=cancel)

        # step 2: metadata
        def _work(conn: Connection) -> int:
            project_id = self.store.insert_project(clean, str(destination), conn=conn)
            self.store.add_print_dates(project_id, clean.print_dates, conn=conn)
            return project_id

        try:
            project_id = self.store.run_transaction(_work)
        except ArchiveError as e:
            self._compensate(clean.name, destination, e)
            if isinstance(e, TransactionFailed):
                raise
            raise TransactionFailed(f"Saving project {clean.name!r} failed: {e}", destination) from e

        info(f"ingested project {project_id} ({clean.name}) into {destination}")
        return project_id

    def _compensate(self, name: str, destination: Path, cause: Exception) -> None:
        try:
            shutil.rmtree(destination)
            warn(f"removed {destination} after failed database write")
        except OSError as e:
            err(f"could not remove {destination} after failed database write: {e}", e)
            try:
                marker = write_orphan_marker(self.archive_root, name, destination, str(cause))
                warn(f"orphan marker written to {marker}")
            except OSError as e2:
                err(f"could not write orphan marker for {destination}: {e2}", e2)
