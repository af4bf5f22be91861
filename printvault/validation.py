# printvault/validation.py
"""
Single place for draft validation. Every check raises ValidationError
before anything touches the disk or the database.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from printvault.errors import ValidationError
from printvault.model import DESCRIPTION_MAX, NAME_MAX, PROJECT_TYPES, ProjectDraft

NAME_RX = re.compile(r"^[A-Za-z0-9 _-]+$")

DateLike = Union[date, str]


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Project name is required.", field="name")
    if len(name) > NAME_MAX:
        raise ValidationError(f"Project name must be {NAME_MAX} characters or less.", field="name")
    if not NAME_RX.match(name):
        raise ValidationError(
            "Project name contains invalid characters (letters, digits, space, '_' and '-' only).",
            field="name",
        )
    return name


def validate_project_type(project_type: str) -> str:
    if project_type not in PROJECT_TYPES:
        raise ValidationError(
            f"Unknown project type {project_type!r}; expected one of {', '.join(PROJECT_TYPES)}.",
            field="project_type",
        )
    return project_type


def validate_description(description: Optional[str]) -> str:
    description = description or ""
    if len(description) > DESCRIPTION_MAX:
        raise ValidationError(f"Project description must be {DESCRIPTION_MAX} characters or less.", field="description")
    return description


def validate_tags(tags: Iterable[str]) -> List[str]:
    out: List[str] = []
    for t in tags or []:
        t = (t or "").strip()
        if not t:
            continue
        # tags are stored comma-delimited
        if "," in t:
            raise ValidationError(f"Tag {t!r} must not contain a comma.", field="tags")
        if t not in out:
            out.append(t)
    return out


def parse_print_date(value: DateLike, today: Optional[date] = None) -> date:
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        try:
            value = datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
        except ValueError as e:
            raise ValidationError(f"Invalid date {value!r}. Use yyyy-MM-dd.", field="print_dates") from e
    if value > (today or date.today()):
        raise ValidationError(f"Date {value.isoformat()} cannot be in the future.", field="print_dates")
    return value


def validate_print_dates(dates: Iterable[DateLike], require_one: bool = False, today: Optional[date] = None) -> List[date]:
    parsed: List[date] = []
    for d in dates or []:
        pd = parse_print_date(d, today=today)
        if pd in parsed:
            raise ValidationError(f"Duplicate print date {pd.isoformat()}.", field="print_dates")
        parsed.append(pd)
    if require_one and not parsed:
        raise ValidationError("At least one print date is required.", field="print_dates")
    return parsed


def validate_source_folder(folder: Union[str, Path]) -> Path:
    p = Path(folder)
    if not p.exists() or not p.is_dir():
        raise ValidationError("Selected folder does not exist or is not a directory.", field="folder", path=p)
    return p.resolve()


def validate_draft(
    draft: ProjectDraft,
    folder: Union[str, Path],
    require_print_date: bool = False,
    today: Optional[date] = None,
) -> tuple[ProjectDraft, Path]:
    """Return a normalized copy of the draft and the resolved source folder."""
    clean = ProjectDraft(
        name=validate_name(draft.name),
        project_type=validate_project_type(draft.project_type),
        description=validate_description(draft.description),
        recipient=(draft.recipient or "").strip(),
        tags=validate_tags(draft.tags),
        print_dates=validate_print_dates(draft.print_dates, require_one=require_print_date, today=today),
    )
    return clean, validate_source_folder(folder)
