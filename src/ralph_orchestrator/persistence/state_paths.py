"""
ralph-orchestrator — state directory layout

Purpose
- Resolve where the append-only task and progress logs live for a workdir.

Functional requirements
- Default (unscoped) layout is ``state/tasks.jsonl`` and ``state/progress.jsonl``.
- Scoped layout is ``state/core/`` for core mode and
  ``state/delivery/<repo-slug>/`` for delivery mode.
- When scoping is requested but only the legacy ``state/`` layout holds logs,
  the legacy layout wins so existing history is not orphaned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ralph_orchestrator.security.policy import PolicyMode

STATE_DIR: Final[str] = "state"
_STATE_FILES: Final[tuple[str, ...]] = ("tasks.jsonl", "progress.jsonl", "learning.jsonl")
_SLUG_INVALID_RE = re.compile(r"[^a-z0-9._-]+")
_DASH_RUN_RE = re.compile(r"-+")


@dataclass(frozen=True, slots=True)
class StatePaths:
    base_dir: Path
    tasks: Path
    progress: Path
    mode: PolicyMode
    repo: str
    scoped: bool

    @classmethod
    def under(cls, base_dir: Path, *, mode: PolicyMode, repo: str, scoped: bool) -> StatePaths:
        return cls(
            base_dir=base_dir,
            tasks=base_dir / "tasks.jsonl",
            progress=base_dir / "progress.jsonl",
            mode=mode,
            repo=repo,
            scoped=scoped,
        )

    def has_state(self) -> bool:
        return any((self.base_dir / name).is_file() for name in _STATE_FILES)


def slugify_repo_name(workdir: str | Path) -> str:
    """Lowercase basename with runs of unsafe characters collapsed to ``-``."""

    raw = Path(workdir).name.lower()
    slug = _SLUG_INVALID_RE.sub("-", raw).strip("-")
    slug = _DASH_RUN_RE.sub("-", slug)
    return slug or "repo"


def resolve_state_paths(
    workdir: str | Path,
    *,
    mode: PolicyMode = PolicyMode.CORE,
    scoped: bool = False,
    state_dir: str | Path = STATE_DIR,
) -> StatePaths:
    root = Path(workdir)
    base = Path(state_dir)
    if not base.is_absolute():
        base = root / base
    repo = slugify_repo_name(root.resolve())
    legacy = StatePaths.under(base, mode=mode, repo=repo, scoped=False)
    if not scoped:
        return legacy

    scoped_base = base / "core" if mode is PolicyMode.CORE else base / "delivery" / repo
    scoped_paths = StatePaths.under(scoped_base, mode=mode, repo=repo, scoped=True)
    if scoped_paths.has_state():
        return scoped_paths
    if legacy.has_state():
        return legacy
    return scoped_paths


__all__ = ["STATE_DIR", "StatePaths", "resolve_state_paths", "slugify_repo_name"]
