"""Append-only JSONL state: task operation log, progress events, state layout."""

from ralph_orchestrator.persistence.state_paths import (
    STATE_DIR,
    StatePaths,
    resolve_state_paths,
    slugify_repo_name,
)
from ralph_orchestrator.persistence.task_log import TaskStateStore, derive_task_state, is_blocked

__all__ = [
    "STATE_DIR",
    "StatePaths",
    "TaskStateStore",
    "derive_task_state",
    "is_blocked",
    "resolve_state_paths",
    "slugify_repo_name",
]
