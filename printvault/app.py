# printvault/app.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from printvault.archive.copier import AtomicDirectoryCopier
from printvault.backup import BackupManager, BackupScheduler
from printvault.config import Settings, load_settings
from printvault.db import init_schema, make_engine
from printvault.errors import SnapshotError
from printvault.ingest import IngestPipeline
from printvault.log import debug, setup_file_logging, warn
from printvault.model import DEFAULT_PROJECT_TYPE, ProjectDraft
from printvault.recovery import RecoveryCoordinator
from printvault.store import ArchiveStore


@dataclass
class Archive:
    """Everything a caller needs, opened once by open_archive()."""

    settings: Settings
    store: ArchiveStore
    backups: BackupManager
    copier: AtomicDirectoryCopier
    pipeline: IngestPipeline

    def create_snapshot(self) -> Path:
        return self.backups.create_snapshot(self.settings.database_path)

    def restore_snapshot(self, snapshot: Union[str, Path]) -> None:
        self.store.dispose()
        self.backups.restore_snapshot(snapshot, self.settings.database_path)

    def recovery(self) -> RecoveryCoordinator:
        return RecoveryCoordinator(self.store, self.backups, self.settings.database_path)

    def scheduler(self, interval_hours: Optional[float] = None) -> BackupScheduler:
        hours = interval_hours or self.settings.backup_interval_hours
        return BackupScheduler(self.backups, self.settings.database_path, hours * 3600.0)

    def close(self) -> None:
        self.store.dispose()


def open_archive(settings: Optional[Settings] = None, migrate: bool = True) -> Archive:
    """
    Create the directories, open the database and (unless migrate=False)
    run the schema migration. Startup recovery passes migrate=False so a
    corrupted file is probed before anything writes to it.
    """
    settings = settings or load_settings()
    settings.ensure_dirs()
    setup_file_logging(settings.logs_dir)

    store = ArchiveStore(make_engine(settings.database_path, settings.lock_timeout))
    if migrate:
        init_schema(store.engine)
    copier = AtomicDirectoryCopier()
    debug(f"archive opened at {settings.home}")
    return Archive(
        settings=settings,
        store=store,
        backups=BackupManager(settings.backups_dir),
        copier=copier,
        pipeline=IngestPipeline(store, copier, settings.archive_root, settings.require_print_date),
    )


def import_folder(
    archive: Archive,
    folder: Union[str, Path],
    recipient: str = "Bulk_Import",
    project_type: str = DEFAULT_PROJECT_TYPE,
) -> Dict[str, object]:
    """Ingest a folder under its own name, snapshotting the database first."""
    src = Path(folder).absolute()
    try:
        archive.create_snapshot()
    except SnapshotError as e:
        # non-fatal: backups may be managed elsewhere
        warn(f"pre-import backup skipped: {e}")
    draft = ProjectDraft(
        name=src.name,
        project_type=project_type,
        description=f"Imported via bulk import by {recipient}",
        recipient=recipient,
    )
    project_id = archive.pipeline.ingest(draft, src)
    return {"projectId": project_id, "name": src.name}
