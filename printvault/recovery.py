# printvault/recovery.py
"""
Startup corruption check and snapshot recovery.

    START -> READY                       database answers
    START -> AWAITING_DECISION           database does not answer
    AWAITING_DECISION -> RECOVERING      caller chose to recover
    AWAITING_DECISION -> FATAL           caller declined
    RECOVERING -> READY                  newest snapshot restored and probe passes
    RECOVERING -> FATAL                  no snapshot, restore I/O error, or still corrupted

The coordinator never asks a user anything itself; the decision is an input.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from printvault.backup import BackupManager
from printvault.errors import BackupUnavailable, CorruptionDetected, SnapshotError
from printvault.log import err, info, warn
from printvault.store import ArchiveStore

EXIT_FATAL = 3

Decision = Union[bool, Callable[[CorruptionDetected], bool]]


class RecoveryState(str, Enum):
    START = "start"
    READY = "ready"
    AWAITING_DECISION = "awaiting-decision"
    RECOVERING = "recovering"
    FATAL = "fatal"


@dataclass
class RecoveryOutcome:
    state: RecoveryState
    corruption: Optional[CorruptionDetected] = None
    restored_from: Optional[Path] = None
    snapshot_usable: Optional[bool] = None
    reason: str = ""
    transitions: List[RecoveryState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is RecoveryState.READY


class RecoveryCoordinator:
    def __init__(self, store: ArchiveStore, backups: BackupManager, database_path: Path) -> None:
        self.store = store
        self.backups = backups
        self.database_path = Path(database_path)

    def check_newest_snapshot(self) -> Optional[bool]:
        """Diagnostics only: None when there is no snapshot at all."""
        try:
            newest = self.backups.newest_snapshot()
        except BackupUnavailable as e:
            warn(f"{e}")
            return None
        usable = self.backups.verify_snapshot_usable(newest.path)
        if usable:
            info(f"newest backup {newest.path.name} is usable")
        else:
            warn(f"newest backup {newest.path.name} failed verification")
        return usable

    def run(self, decide: Decision) -> RecoveryOutcome:
        out = RecoveryOutcome(state=RecoveryState.START, transitions=[RecoveryState.START])

        def move(state: RecoveryState, reason: str = "") -> RecoveryOutcome:
            out.state = state
            out.transitions.append(state)
            if reason:
                out.reason = reason
            return out

        out.snapshot_usable = self.check_newest_snapshot()

        if not self.store.is_corrupted():
            return move(RecoveryState.READY)

        corruption = CorruptionDetected(f"Database {self.database_path} appears to be corrupted", self.database_path)
        out.corruption = corruption
        move(RecoveryState.AWAITING_DECISION)
        warn(str(corruption))

        try:
            proceed = decide(corruption) if callable(decide) else bool(decide)
        except Exception as e:
            err(f"recovery decision failed: {e}", e)
            proceed = False
        if not proceed:
            return move(RecoveryState.FATAL, "recovery declined; refusing to run against a corrupted database")

        move(RecoveryState.RECOVERING)
        try:
            newest = self.backups.newest_snapshot()
        except BackupUnavailable as e:
            return move(RecoveryState.FATAL, f"no data source available: {e}")

        self.store.dispose()
        try:
            self.backups.restore_snapshot(newest.path, self.database_path)
        except SnapshotError as e:
            err(f"restore failed: {e}", e)
            return move(RecoveryState.FATAL, str(e))
        out.restored_from = newest.path

        if self.store.is_corrupted():
            return move(RecoveryState.FATAL, f"database still unreadable after restoring {newest.path.name}")
        info(f"database recovered from {newest.path.name}")
        return move(RecoveryState.READY)

    def run_or_exit(self, decide: Decision) -> RecoveryOutcome:
        """Like run(), but a FATAL outcome ends the process with EXIT_FATAL."""
        out = self.run(decide)
        if out.state is RecoveryState.FATAL:
            err(f"fatal: {out.reason}")
            sys.exit(EXIT_FATAL)
        return out
