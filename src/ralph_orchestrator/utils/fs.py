"""
ralph-orchestrator — filesystem utilities

Purpose
- Provide two-phase (stage then commit) writes for the sandbox overlay flush.

Functional requirements
- Staged writes use temp files in the destination directory and never touch the
  destination until ``commit_staged`` runs.
- A failed stage leaves no temp files behind.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

PathLike = str | os.PathLike[str]

__all__ = [
    "StagedWrite",
    "commit_staged",
    "discard_staged",
    "stage_write",
]


@dataclass(frozen=True, slots=True)
class StagedWrite:
    """A fully written temp file waiting to replace ``target``."""

    target: Path
    temp_path: Path


def stage_write(
    path: PathLike,
    data: bytes | str,
    *,
    encoding: str = "utf-8",
    create_parents: bool = True,
) -> StagedWrite:
    """
    Write ``data`` to a temp file beside ``path`` without replacing ``path``.

    The temp file is created in the same directory, written, flushed and
    fsynced, so ``commit_staged`` only has to ``os.replace`` it.
    """

    target = Path(path)
    if create_parents:
        target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    return StagedWrite(target=target_parent / target.name, temp_path=temp_path)


def commit_staged(staged: Iterable[StagedWrite]) -> None:
    """Move each staged temp file over its target."""

    parents: set[Path] = set()
    for item in staged:
        os.replace(item.temp_path, item.target)
        parents.add(item.target.parent)
    for parent in sorted(parents):
        _fsync_directory(parent)


def discard_staged(staged: Iterable[StagedWrite]) -> None:
    """Remove temp files of writes that will not be committed."""

    for item in staged:
        with contextlib.suppress(OSError):
            item.temp_path.unlink(missing_ok=True)


def _fsync_directory(path: Path) -> None:
    """Best-effort directory fsync for metadata durability after ``os.replace``."""

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
