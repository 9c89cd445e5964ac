"""Utility exports for filesystem helpers."""

from ralph_orchestrator.utils.fs import (
    StagedWrite,
    commit_staged,
    discard_staged,
    stage_write,
)

__all__ = [
    "StagedWrite",
    "commit_staged",
    "discard_staged",
    "stage_write",
]
