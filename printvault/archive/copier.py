# printvault/archive/copier.py
from __future__ import annotations

import os
import shutil
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

from printvault.archive.integrity import find_mismatches, tree_size
from printvault.errors import CopyCancelled, CopyVerificationFailed, InsufficientSpace
from printvault.log import debug, err, info, warn
from printvault.model import CopyOperation, CopyStatus

PathLike = Union[str, Path]
T = TypeVar("T")

# Called with the destination path of a conflicting file; True means overwrite.
ConflictResolver = Callable[[Path], bool]


def retry_file_operation(operation: Callable[[], T], max_retries: int = 3, delay: float = 1.0) -> T:
    """Run `operation`, retrying on OSError; the last error is re-raised."""
    attempt = 0
    while True:
        try:
            return operation()
        except OSError:
            attempt += 1
            if attempt >= max_retries:
                raise
            time.sleep(delay)


def _existing_ancestor(path: Path) -> Path:
    p = path.absolute()
    while not p.exists() and p != p.parent:
        p = p.parent
    return p


def free_space(path: PathLike, disk_usage=shutil.disk_usage) -> int:
    return int(disk_usage(str(_existing_ancestor(Path(path)))).free)


def has_enough_space(source: PathLike, destination: PathLike, disk_usage=shutil.disk_usage) -> bool:
    try:
        return free_space(destination, disk_usage) >= tree_size(source)
    except OSError as e:
        warn(f"free-space check failed for {destination}: {e}")
        return False


class AtomicDirectoryCopier:
    """
    Copy a tree with a free-space preflight, per-file conflict policy and
    rollback of what it created when verification fails.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        disk_usage=shutil.disk_usage,
        copy_file: Callable[[str, str], object] = shutil.copy2,
    ) -> None:
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = retry_delay
        self._disk_usage = disk_usage
        self._copy_file = copy_file

    def copy(
        self,
        source: PathLike,
        destination: PathLike,
        resolve_conflict: Optional[ConflictResolver] = None,
        cancel: Optional[threading.Event] = None,
    ) -> CopyOperation:
        src = Path(source).resolve()
        dst = Path(destination).absolute()
        op = CopyOperation(source=src, destination=dst)

        # 1-2. preflight; nothing is created when this fails
        op.required_bytes = tree_size(src)
        available = free_space(dst, self._disk_usage)
        if available < op.required_bytes:
            raise InsufficientSpace(dst, op.required_bytes, available)

        # 3-4. walk
        debug(f"copying {src} -> {dst} ({op.required_bytes:,} bytes)")
        op.created_destination = not dst.exists()
        try:
            dst.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            op.errors.append(f"{dst}: {e}")
            err(f"cannot create {dst}: {e}", e)

        for dirpath, dirnames, filenames in os.walk(src):
            dirnames.sort()
            rel = Path(dirpath).relative_to(src)
            for d in dirnames:
                self._check_cancel(cancel, op)
                self._make_dir(dst / rel / d, op)
            for fn in sorted(filenames):
                self._check_cancel(cancel, op)
                self._copy_one(Path(dirpath) / fn, dst / rel / fn, op, resolve_conflict)
        op.status = CopyStatus.COPIED

        # 5. verify or roll back
        problems = find_mismatches(src, dst)
        if problems:
            for p in problems:
                warn(f"verification: {p}")
            leftovers = self._rollback(op)
            raise CopyVerificationFailed(src, dst, leftovers + problems + op.errors, rolled_back=not leftovers)

        op.status = CopyStatus.VERIFIED
        info(f"copied {op.copied_files} file(s) into {dst}")
        return op

    # ------------------------------------------------------------------

    def _check_cancel(self, cancel: Optional[threading.Event], op: CopyOperation) -> None:
        if cancel is not None and cancel.is_set():
            warn(f"copy into {op.destination} cancelled")
            leftovers = self._rollback(op)
            raise CopyCancelled(op.destination, leftovers)

    def _make_dir(self, target: Path, op: CopyOperation) -> None:
        try:
            if not target.exists():
                target.mkdir(parents=True)
                op.created.append(target)
        except OSError as e:
            op.errors.append(f"{target}: {e.strerror or e}")
            err(f"failed to create directory {target}: {e}", e)

    def _copy_one(
        self,
        source_file: Path,
        target: Path,
        op: CopyOperation,
        resolve_conflict: Optional[ConflictResolver],
    ) -> None:
        if resolve_conflict is not None and target.exists():
            try:
                overwrite = resolve_conflict(target)
            except Exception as e:
                op.errors.append(f"{target}: conflict resolver failed: {e}")
                err(f"conflict resolver failed for {target}", e)
                return
            if not overwrite:
                op.skipped.append(str(target))
                info(f"kept existing {target}")
                return
        existed = target.exists()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            retry_file_operation(
                lambda: self._copy_file(str(source_file), str(target)),
                max_retries=self.max_retries,
                delay=self.retry_delay,
            )
            op.copied_files += 1
            if not existed:
                op.created.append(target)
        except OSError as e:
            # keep walking; verification reports the hole
            op.errors.append(f"{source_file}: {e.strerror or e}")
            if not existed and target.exists():
                op.created.append(target)
            err(f"failed to copy {source_file}: {e}", e)

    def _rollback(self, op: CopyOperation) -> List[str]:
        """
        Remove what this copy created and return what could not be removed.
        A destination that already existed keeps its earlier entries;
        overwritten files keep their new contents.
        """
        if op.created_destination:
            targets = [op.destination]
        else:
            targets = list(reversed(op.created))
        leftovers: List[str] = []
        for target in targets:
            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                elif target.exists():
                    target.unlink()
            except OSError as e:
                leftovers.append(f"rollback could not remove {target}: {e.strerror or e}")
                err(f"rollback could not remove {target}: {e}", e)
        if leftovers:
            return leftovers
        op.status = CopyStatus.ROLLED_BACK
        info(f"rolled back {op.destination}")
        return leftovers
