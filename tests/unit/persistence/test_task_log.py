"""
ralph-orchestrator — unit tests for the append-only task and progress logs

Purpose
- Validate the fold from operations to task state, tolerance of corrupt lines,
  and progress-event shape.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from ralph_orchestrator.domain.models import (
    Task,
    TaskCreateOp,
    TaskLinkOp,
    TaskRelateOp,
    TaskRelation,
    TaskStatus,
    TaskUpdateOp,
)
from ralph_orchestrator.persistence import derive_task_state, is_blocked

if TYPE_CHECKING:
    from ralph_orchestrator.persistence import TaskStateStore


@pytest.mark.unit
def test_fold_applies_operations_in_order_without_mutating() -> None:
    original = Task(id="T-1", title="Build parser")
    ops = [
        TaskCreateOp(task=original),
        TaskCreateOp(task=Task(id="T-2", title="Wire CLI")),
        TaskUpdateOp(id="T-1", changes={"status": "in_progress"}, timestamp="2026-01-01T00:00:00Z"),
        TaskLinkOp(id="T-1", external_id="GH-7", external_url="https://example.invalid/7"),
        TaskRelateOp(id="T-2", relation=TaskRelation.BLOCKED_BY, target_id="T-1"),
        TaskUpdateOp(id="missing", changes={"status": "done"}),
    ]

    tasks = derive_task_state(ops)

    assert list(tasks) == ["T-1", "T-2"]
    assert tasks["T-1"].status is TaskStatus.IN_PROGRESS
    assert tasks["T-1"].external_id == "GH-7"
    assert tasks["T-2"].blocked_by == ("T-1",)
    assert original.status is TaskStatus.PENDING


@pytest.mark.unit
def test_invalid_update_is_skipped() -> None:
    ops = [
        TaskCreateOp(task=Task(id="T-1", title="x")),
        TaskUpdateOp(id="T-1", changes={"status": "exploded"}),
    ]

    assert derive_task_state(ops)["T-1"].status is TaskStatus.PENDING


@pytest.mark.unit
def test_is_blocked_only_by_unfinished_known_tasks() -> None:
    blocker = Task(id="A", title="a")
    task = Task(id="B", title="b", blocked_by=("A", "ghost"))

    assert is_blocked(task, {"A": blocker, "B": task})
    assert not is_blocked(task, {"A": Task(id="A", title="a", status=TaskStatus.DONE)})


@pytest.mark.unit
def test_store_round_trips_tasks_and_skips_corrupt_lines(state_store: TaskStateStore) -> None:
    state_store.create_task(Task(id="T-1", title="First", priority=2))
    with state_store.paths.tasks.open("a", encoding="utf-8") as handle:
        handle.write("{not json\n")
        handle.write("[1, 2]\n")
        handle.write(json.dumps({"op": "bogus"}) + "\n")
    state_store.append_operation(TaskUpdateOp(id="T-1", changes={"status": "done"}))

    tasks = state_store.tasks()

    assert list(tasks) == ["T-1"]
    assert tasks["T-1"].status is TaskStatus.DONE
    assert tasks["T-1"].priority == 2


@pytest.mark.unit
def test_progress_events_drop_none_fields_and_stamp_time(state_store: TaskStateStore) -> None:
    state_store.append_progress("task_started", taskId="T-1", note=None)
    state_store.append_progress("task_completed", taskId="T-1", iterations=2)

    events = state_store.read_progress()

    assert [event["type"] for event in events] == ["task_started", "task_completed"]
    assert "note" not in events[0]
    assert events[1]["iterations"] == 2
    assert all(event["timestamp"].endswith("Z") for event in events)
