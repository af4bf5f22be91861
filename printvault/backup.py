# printvault/backup.py
from __future__ import annotations

import os
import shutil
import tempfile
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from printvault.errors import BackupUnavailable, SnapshotError
from printvault.log import debug, err, info, warn
from printvault.model import Snapshot

PathLike = Union[str, Path]

SNAPSHOT_PREFIX = "backup_"
SNAPSHOT_SUFFIX = ".db"
_SIDECARS = ("-journal", "-wal", "-shm")

# one mutex per database file, shared by every BackupManager in the process
_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def lock_for(database_path: PathLike) -> threading.RLock:
    key = str(Path(database_path).resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.RLock()
        return lock


def ts() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S_%f")


class BackupManager:
    """Whole-file snapshots of the database in a backups directory."""

    def __init__(self, backups_dir: PathLike) -> None:
        self.backups_dir = Path(backups_dir)

    # -------------------------------------------------------------------
    # Create / restore
    # -------------------------------------------------------------------

    def create_snapshot(self, live_path: PathLike) -> Path:
        live = Path(live_path)
        with lock_for(live):
            if not live.is_file():
                raise SnapshotError(f"Database file {live} not found; nothing to back up", live)
            try:
                self.backups_dir.mkdir(parents=True, exist_ok=True)
                target = self.backups_dir / f"{SNAPSHOT_PREFIX}{ts()}{SNAPSHOT_SUFFIX}"
                # plain content copy: the snapshot's mtime is its creation time
                shutil.copyfile(live, target)
            except OSError as e:
                raise SnapshotError(f"Backup of {live} failed: {e}", live) from e
        info(f"backup created at {target}")
        return target

    def restore_snapshot(self, snapshot_path: PathLike, live_path: PathLike) -> None:
        """
        Replace the live file with the snapshot's bytes. The caller must
        have closed every connection to the live file. On failure the live
        file is left as it was.
        """
        snap = Path(snapshot_path)
        live = Path(live_path)
        with lock_for(live):
            if not snap.is_file():
                raise SnapshotError(f"Snapshot {snap} does not exist", snap)
            staged: Optional[Path] = None
            try:
                live.parent.mkdir(parents=True, exist_ok=True)
                fd, name = tempfile.mkstemp(prefix=f".{live.name}.", suffix=".restore", dir=live.parent)
                os.close(fd)
                staged = Path(name)
                shutil.copyfile(snap, staged)
                os.replace(staged, live)
                staged = None
            except OSError as e:
                raise SnapshotError(f"Restore of {snap} over {live} failed: {e}", snap) from e
            finally:
                if staged is not None and staged.exists():
                    try:
                        staged.unlink()
                    except OSError as e:
                        warn(f"could not remove staged restore file {staged}: {e}")
            self._drop_sidecars(live)
        info(f"restored {live} from {snap}")

    def _drop_sidecars(self, live: Path) -> None:
        # a leftover journal would be replayed onto the restored bytes
        for sfx in _SIDECARS:
            side = live.with_name(live.name + sfx)
            if side.exists():
                try:
                    side.unlink()
                    debug(f"removed stale {side}")
                except OSError as e:
                    warn(f"could not remove {side}: {e}")

    # -------------------------------------------------------------------
    # Verification / listing
    # -------------------------------------------------------------------

    def verify_snapshot_usable(self, snapshot_path: PathLike) -> bool:
        """Trial restore into a scratch directory; usable means a non-empty copy."""
        snap = Path(snapshot_path)
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix="temp_restore_", dir=self.backups_dir) as tmp:
                trial = Path(tmp) / "test_restore.db"
                shutil.copyfile(snap, trial)
                ok = trial.stat().st_size > 0
        except Exception as e:
            warn(f"backup verification failed for {snap}: {e}")
            return False
        if not ok:
            warn(f"backup {snap} is empty")
        return ok

    def list_snapshots(self) -> List[Snapshot]:
        """Snapshots oldest first."""
        if not self.backups_dir.is_dir():
            return []
        out: List[Snapshot] = []
        for p in self.backups_dir.glob(f"{SNAPSHOT_PREFIX}*{SNAPSHOT_SUFFIX}"):
            try:
                if not p.is_file():
                    continue
                st = p.stat()
            except OSError as e:
                warn(f"skipping unreadable snapshot {p}: {e}")
                continue
            out.append(Snapshot(path=p, created=st.st_mtime, size=st.st_size))
        out.sort(key=lambda s: (s.created, s.path.name))
        return out

    def newest_snapshot(self) -> Snapshot:
        snaps = self.list_snapshots()
        if not snaps:
            raise BackupUnavailable(f"No snapshots in {self.backups_dir}", self.backups_dir)
        return snaps[-1]


class BackupScheduler:
    """Daemon thread that snapshots the database every `interval` seconds."""

    def __init__(self, manager: BackupManager, live_path: PathLike, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.manager = manager
        self.live_path = Path(live_path)
        self.interval = interval
        self.runs = 0
        self.last_snapshot: Optional[Path] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Optional[Path]:
        try:
            self.last_snapshot = self.manager.create_snapshot(self.live_path)
            return self.last_snapshot
        except Exception as e:
            err(f"scheduled backup failed: {e}", e)
            return None
        finally:
            self.runs += 1

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="printvault-backup", daemon=True)
        self._thread.start()
        info(f"backup scheduler started (every {self.interval:.0f}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait(self) -> None:
        """Block until stop() or Ctrl+C."""
        try:
            while self._thread is not None and self._thread.is_alive():
                time.sleep(0.5)
        except KeyboardInterrupt:
            self.stop()
