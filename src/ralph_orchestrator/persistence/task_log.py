"""
ralph-orchestrator — append-only task and progress logs

Purpose
- Persist task operations (``tasks.jsonl``) and progress events
  (``progress.jsonl``) as one JSON object per line, and derive current task
  state by folding the operation log.

Functional requirements
- Current task state is a left fold over the log; the fold never mutates a
  previously produced ``Task``.
- Updates, links and relations for unknown task ids are ignored.
- Corrupt or invalid lines are skipped with a warning, never fatal.
- Orchestrator bookkeeping is written straight to disk, not through the agent
  overlay, so a sandbox rollback never erases it.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, assert_never

import structlog

from ralph_orchestrator.domain.models import (
    FINISHED_STATUSES,
    JSONValue,
    Task,
    TaskCreateOp,
    TaskLinkOp,
    TaskOperation,
    TaskRelateOp,
    TaskRelation,
    TaskUpdateOp,
    parse_task_operation,
    utc_now_iso,
)

if TYPE_CHECKING:
    from ralph_orchestrator.persistence.state_paths import StatePaths

logger = structlog.get_logger(__name__)


def derive_task_state(operations: Iterable[TaskOperation]) -> dict[str, Task]:
    """Fold the operation log into ``{task_id: Task}`` preserving creation order."""

    tasks: dict[str, Task] = {}
    for op in operations:
        match op:
            case TaskCreateOp():
                tasks[op.task.id] = op.task
            case TaskUpdateOp():
                current = tasks.get(op.id)
                if current is None:
                    continue
                changes = {**op.changes, "updatedAt": op.timestamp}
                try:
                    tasks[op.id] = current.with_changes(changes)
                except ValueError as exc:
                    logger.warning("task_update_rejected", task_id=op.id, error=str(exc))
            case TaskLinkOp():
                current = tasks.get(op.id)
                if current is None:
                    continue
                tasks[op.id] = current.with_changes(
                    {
                        "externalId": op.external_id,
                        "externalUrl": op.external_url,
                        "updatedAt": op.timestamp,
                    }
                )
            case TaskRelateOp():
                current = tasks.get(op.id)
                if current is None:
                    continue
                tasks[op.id] = _apply_relation(current, op)
            case _:
                assert_never(op)
    return tasks


def _apply_relation(task: Task, op: TaskRelateOp) -> Task:
    changes: dict[str, object] = {"updatedAt": op.timestamp}
    match op.relation:
        case TaskRelation.BLOCKS:
            changes["blocks"] = [*task.blocks, op.target_id]
        case TaskRelation.BLOCKED_BY:
            changes["blockedBy"] = [*task.blocked_by, op.target_id]
        case TaskRelation.PARENT:
            changes["parent"] = op.target_id
        case TaskRelation.SUBTASK:
            changes["subtasks"] = [*task.subtasks, op.target_id]
        case _:
            assert_never(op.relation)
    return task.with_changes(changes)


def is_blocked(task: Task, all_tasks: Mapping[str, Task]) -> bool:
    """True when any known ``blocked_by`` task is not yet finished."""

    for blocker_id in task.blocked_by:
        blocker = all_tasks.get(blocker_id)
        if blocker is not None and blocker.status not in FINISHED_STATUSES:
            return True
    return False


class TaskStateStore:
    """JSONL-backed task log and progress log for one state directory."""

    def __init__(self, paths: StatePaths) -> None:
        self.paths = paths

    def read_operations(self) -> list[TaskOperation]:
        operations: list[TaskOperation] = []
        for line_no, payload in _read_jsonl(self.paths.tasks):
            try:
                operations.append(parse_task_operation(payload))
            except ValueError as exc:
                logger.warning(
                    "task_log_line_invalid",
                    path=str(self.paths.tasks),
                    line=line_no,
                    error=str(exc),
                )
        return operations

    def tasks(self) -> dict[str, Task]:
        return derive_task_state(self.read_operations())

    def append_operation(self, op: TaskOperation) -> None:
        _append_jsonl(self.paths.tasks, op.to_dict())

    def create_task(self, task: Task) -> TaskCreateOp:
        op = TaskCreateOp(task=task)
        self.append_operation(op)
        return op

    def append_progress(self, event_type: str, **fields: JSONValue) -> dict[str, JSONValue]:
        """Append ``{"type": event_type, **fields, "timestamp": ...}`` to the progress log."""

        event: dict[str, JSONValue] = {"type": event_type}
        event.update({key: value for key, value in fields.items() if value is not None})
        event.setdefault("timestamp", utc_now_iso())
        _append_jsonl(self.paths.progress, event)
        return event

    def read_progress(self) -> list[dict[str, Any]]:
        return [payload for _, payload in _read_jsonl(self.paths.progress)]


def _read_jsonl(path: Path) -> list[tuple[int, dict[str, Any]]]:
    if not path.is_file():
        return []
    rows: list[tuple[int, dict[str, Any]]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("jsonl_line_corrupt", path=str(path), line=line_no, error=str(exc))
                continue
            if not isinstance(payload, dict):
                logger.warning("jsonl_line_not_object", path=str(path), line=line_no)
                continue
            rows.append((line_no, payload))
    return rows


def _append_jsonl(path: Path, payload: Mapping[str, JSONValue]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    with path.open("a", encoding="utf-8") as handle:
        handle.write(line + "\n")


__all__ = ["TaskStateStore", "derive_task_state", "is_blocked"]
