# printvault/transfer.py
"""JSON export/import of project metadata (files are not included)."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from sqlalchemy.engine import Connection

from printvault.errors import ValidationError
from printvault.log import info, warn
from printvault.model import DEFAULT_PROJECT_TYPE, ProjectDraft, split_tags
from printvault.store import ArchiveStore
from printvault import validation

PathLike = Union[str, Path]


def export_projects(store: ArchiveStore, path: PathLike, compact: bool = False) -> int:
    projects = [p.as_dict() for p in store.list_projects()]
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        if compact:
            json.dump(projects, f, separators=(",", ":"))
        else:
            json.dump(projects, f, indent=4)
    info(f"exported {len(projects)} project(s) to {out}")
    return len(projects)


def _coerce_record(raw: Any, index: int) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValidationError(f"Record {index} is not an object")
    for key in ("name", "file_path"):
        if not isinstance(raw.get(key), str) or not raw[key].strip():
            raise ValidationError(f"Record {index} is missing {key!r}", field=key)
    for key in ("project_type", "description", "created_date", "recipient"):
        if raw.get(key) is not None and not isinstance(raw[key], str):
            raise ValidationError(f"Record {index}: {key!r} must be a string", field=key)
    tags = raw.get("tags") or []
    if isinstance(tags, str):
        tags = split_tags(tags)
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError(f"Record {index}: 'tags' must be a list of strings", field="tags")
    dates = raw.get("print_dates") or []
    if not isinstance(dates, list) or not all(isinstance(d, str) for d in dates):
        raise ValidationError(f"Record {index}: 'print_dates' must be a list of yyyy-MM-dd strings", field="print_dates")
    return {
        "id": raw.get("id", -1),
        "name": raw["name"].strip(),
        "project_type": raw.get("project_type") or DEFAULT_PROJECT_TYPE,
        "file_path": raw["file_path"].strip(),
        "description": raw.get("description") or "",
        "created_date": raw.get("created_date") or "",
        "recipient": raw.get("recipient") or "",
        "tags": list(tags),
        "print_dates": list(dates),
    }


def read_projects(path: PathLike) -> List[Dict[str, Any]]:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ValidationError(f"Cannot read project JSON {p}: {e}", path=p) from e
    if not isinstance(data, list):
        raise ValidationError(f"{p} must contain a JSON array of projects", path=p)
    return [_coerce_record(r, i) for i, r in enumerate(data)]


def validate_json_structure(path: PathLike) -> bool:
    try:
        read_projects(path)
        return True
    except ValidationError:
        return False


def import_projects(store: ArchiveStore, records: List[Dict[str, Any]]) -> List[int]:
    """Insert records whose name is not yet present, all-or-nothing."""
    drafts = []
    for i, raw in enumerate(records):
        r = _coerce_record(raw, i)
        draft = ProjectDraft(
            name=validation.validate_name(r["name"]),
            project_type=validation.validate_project_type(r["project_type"]),
            description=validation.validate_description(r["description"]),
            recipient=r["recipient"],
            tags=validation.validate_tags(r["tags"]),
            print_dates=validation.validate_print_dates(r["print_dates"]),
        )
        drafts.append((draft, r["file_path"]))

    def _work(conn: Connection) -> List[int]:
        ids: List[int] = []
        for draft, file_path in drafts:
            if store.find_project_by_name(draft.name, conn=conn) is not None:
                warn(f"skipping {draft.name!r}: already present")
                continue
            pid = store.insert_project(draft, file_path, conn=conn)
            store.add_print_dates(pid, draft.print_dates, conn=conn)
            ids.append(pid)
        return ids

    ids = store.run_transaction(_work)
    info(f"imported {len(ids)} project(s)")
    return ids
