"""
formula-test-bot — filesystem utilities

File: src/formula_test_bot/utils/fs.py

Purpose
- Atomic writes for report and cache files, and guarded moves/deletes for
  artifacts inside the working directory.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Moves and deletes refuse paths outside the given root.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "move_into",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        mode = "wb" if isinstance(data, bytes) else "w"
        kwargs = {} if isinstance(data, bytes) else {"encoding": encoding}
        with os.fdopen(fd, mode, **kwargs) as file_handle:
            file_handle.write(data)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    resolved_parent = Path(parent).resolve()
    resolved_child = Path(child).resolve()
    return resolved_child == resolved_parent or resolved_parent in resolved_child.parents


def safe_delete(path: PathLike, root: PathLike) -> None:
    """Delete ``path`` only if it is contained within ``root``. Missing paths are ignored."""

    target = Path(path)
    if not is_within(target.parent, root):
        raise ValueError(f"refusing to delete path outside {root!s}: {target!s}")
    if target.is_symlink() or target.is_file():
        target.unlink()
    elif target.is_dir():
        shutil.rmtree(target)


def move_into(path: PathLike, directory: PathLike) -> Path:
    """Move ``path`` into ``directory`` (created on demand) and return the new location."""

    source = Path(path)
    destination_dir = Path(directory)
    destination_dir.mkdir(parents=True, exist_ok=True)
    destination = destination_dir / source.name
    if destination.exists():
        destination.unlink()
    shutil.move(str(source), str(destination))
    return destination
