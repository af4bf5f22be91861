# printvault/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

PROJECT_TYPES = ("Prototype", "Final Print")
DEFAULT_PROJECT_TYPE = "Prototype"

# Suggested tags shown by the form; the vocabulary is open.
KNOWN_TAGS = ("ECC", "O&M", "Math", "Biology", "Chemistry", "ELA", "Braille", "Communication")

NAME_MAX = 255
DESCRIPTION_MAX = 1000


@dataclass
class ProjectDraft:
    """A project as submitted by a caller: no id, no archive path yet."""

    name: str
    project_type: str = DEFAULT_PROJECT_TYPE
    description: str = ""
    recipient: str = ""
    tags: List[str] = field(default_factory=list)
    print_dates: List[date] = field(default_factory=list)


@dataclass
class Project:
    id: int
    name: str
    project_type: str
    file_path: str
    description: str = ""
    recipient: str = ""
    tags: List[str] = field(default_factory=list)
    created_date: str = ""
    print_dates: List[date] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_type": self.project_type,
            "file_path": self.file_path,
            "description": self.description,
            "created_date": self.created_date,
            "recipient": self.recipient,
            "tags": list(self.tags),
            "print_dates": [d.isoformat() for d in self.print_dates],
        }


def split_tags(raw: Optional[str]) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


def join_tags(tags: List[str]) -> str:
    return ",".join(t.strip() for t in tags if t and t.strip())


class CopyStatus(str, Enum):
    PENDING = "pending"
    COPIED = "copied"
    VERIFIED = "verified"
    ROLLED_BACK = "rolled-back"


@dataclass
class CopyOperation:
    """Bookkeeping for one directory copy; never persisted."""

    source: Path
    destination: Path
    required_bytes: int = 0
    status: CopyStatus = CopyStatus.PENDING
    copied_files: int = 0
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    # rollback removes only what this copy created
    created_destination: bool = False
    created: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class Snapshot:
    path: Path
    created: float  # mtime, seconds since epoch
    size: int
