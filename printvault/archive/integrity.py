# printvault/archive/integrity.py
"""
Structural comparison of two directory trees.

A destination matches its source when every source entry has an entry of the
same kind at the same relative path, and every file has the same byte size.
Contents are not hashed. Nothing here raises; problems come back as values.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Union

from printvault.log import debug

PathLike = Union[str, Path]


def tree_size(root: PathLike) -> int:
    """Total size in bytes of the regular files under root (0 if unreadable)."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for fn in filenames:
            fp = os.path.join(dirpath, fn)
            try:
                if os.path.isfile(fp):
                    total += os.path.getsize(fp)
            except OSError as e:
                debug(f"size skipped for {fp}: {e}")
    return total


def find_mismatches(source: PathLike, destination: PathLike, limit: int = 50) -> List[str]:
    """
    Return human-readable mismatch descriptions, empty when the trees match.
    Stops after `limit` problems.
    """
    src = Path(source)
    dst = Path(destination)
    problems: List[str] = []

    if not src.is_dir():
        return [f"source {src} is not a directory"]
    if not dst.is_dir():
        return [f"destination {dst} does not exist"]

    def _walk_error(e: OSError) -> None:
        problems.append(f"cannot read {getattr(e, 'filename', src)}: {e.strerror or e}")

    for dirpath, dirnames, filenames in os.walk(src, onerror=_walk_error):
        rel = Path(dirpath).relative_to(src)
        for d in dirnames:
            target = dst / rel / d
            if not target.is_dir():
                problems.append(f"missing directory {rel / d}")
        for fn in filenames:
            source_file = Path(dirpath) / fn
            target = dst / rel / fn
            try:
                if not target.is_file():
                    problems.append(f"missing file {rel / fn}")
                    continue
                expected = source_file.stat().st_size
                actual = target.stat().st_size
            except OSError as e:
                problems.append(f"cannot stat {rel / fn}: {e.strerror or e}")
                continue
            if expected != actual:
                problems.append(f"size mismatch {rel / fn}: {actual} != {expected}")
        if len(problems) >= limit:
            break
    return problems[:limit]


def verify_integrity(source: PathLike, destination: PathLike) -> bool:
    try:
        return not find_mismatches(source, destination, limit=1)
    except Exception as e:  # a probe must answer, never raise
        debug(f"integrity check aborted: {e!r}")
        return False
