# printvault/errors.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class ArchiveError(Exception):
    """Base class for every failure the archive core reports to a caller."""

    def __init__(self, message: str, path: Optional[Path | str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = Path(path) if path is not None else None

    def __str__(self) -> str:
        return self.message


class ValidationError(ArchiveError):
    """Bad input. Raised before anything touches the disk or the database."""

    def __init__(self, message: str, field: Optional[str] = None, path: Optional[Path | str] = None) -> None:
        super().__init__(message, path)
        self.field = field


class CopyError(ArchiveError):
    pass


class InsufficientSpace(CopyError):
    def __init__(self, path: Path | str, required: int, available: int) -> None:
        super().__init__(
            f"Not enough free space at {path}: {required:,} bytes required, {available:,} available",
            path,
        )
        self.required = required
        self.available = available


class CopyVerificationFailed(CopyError):
    """The copy ran but the destination did not match; `rolled_back` says whether cleanup succeeded."""

    def __init__(
        self,
        source: Path | str,
        destination: Path | str,
        problems: Sequence[str] = (),
        rolled_back: bool = True,
    ) -> None:
        self.source = Path(source)
        self.problems = list(problems)
        self.rolled_back = rolled_back
        detail = f" ({'; '.join(self.problems[:5])})" if self.problems else ""
        outcome = "was rolled back" if rolled_back else "could NOT be fully rolled back"
        super().__init__(f"Copy of {source} to {destination} failed verification and {outcome}{detail}", destination)


class CopyCancelled(CopyError):
    def __init__(self, destination: Path | str, leftovers: Sequence[str] = ()) -> None:
        self.leftovers = list(leftovers)
        if self.leftovers:
            msg = f"Copy into {destination} was cancelled; rollback left {'; '.join(self.leftovers[:5])}"
        else:
            msg = f"Copy into {destination} was cancelled and rolled back"
        super().__init__(msg, destination)


class TransactionFailed(ArchiveError):
    """A database unit of work was rolled back."""


class ProjectNotFound(ArchiveError):
    def __init__(self, project_id: int) -> None:
        super().__init__(f"No project with id {project_id}")
        self.project_id = project_id


class CorruptionDetected(ArchiveError):
    pass


class SnapshotError(ArchiveError):
    """Creating, restoring or reading a database snapshot failed."""


class BackupUnavailable(SnapshotError):
    pass
