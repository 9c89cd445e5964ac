"""Dataclass domain models with strict validation and camelCase wire serialization."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 65536
_MAX_COLLECTION = 512
MAX_REASON_CHARS = 500


class TaskType(StrEnum):
    EPIC = "epic"
    FEATURE = "feature"
    TASK = "task"
    SUBTASK = "subtask"
    BUG = "bug"
    REFACTOR = "refactor"
    DOCS = "docs"
    TEST = "test"
    SPIKE = "spike"


class TaskStatus(StrEnum):
    DISCOVERED = "discovered"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    DONE = "done"
    CANCELLED = "cancelled"


FINISHED_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED})
SELECTABLE_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.DISCOVERED}
)


class IterationStatus(StrEnum):
    COMPLETE = "complete"
    BLOCKED = "blocked"
    FAILED = "failed"
    CONTINUE = "continue"


class ActionType(StrEnum):
    READ = "read"
    WRITE = "write"
    BASH = "bash"
    EVAL = "eval"


class TaskRelation(StrEnum):
    BLOCKS = "blocks"
    BLOCKED_BY = "blockedBy"
    PARENT = "parent"
    SUBTASK = "subtask"


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with a ``Z`` suffix."""

    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def truncate_reason(text: str, limit: int = MAX_REASON_CHARS) -> str:
    """Cap a diagnostic string at ``limit`` characters."""

    return text if len(text) <= limit else text[:limit]


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(value: object, path: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item
    return parsed


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_text(value: object, path: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    return value


def _as_optional_float(value: object, path: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    return parsed


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        _fail(path, f"expected array, got {type(value).__name__}")
    if len(value) > _MAX_COLLECTION:
        _fail(path, f"too many items (>{_MAX_COLLECTION})")
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(value))


# --- completion criteria -----------------------------------------------------


@dataclass(frozen=True, slots=True)
class TestPassingCriteria:
    """Task is complete when a test command exits 0."""

    __test__ = False

    command: str | None = None
    grep: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {"type": "test_passing"}
        if self.command is not None:
            payload["command"] = self.command
        if self.grep is not None:
            payload["grep"] = self.grep
        return payload


@dataclass(frozen=True, slots=True)
class FileExistsCriteria:
    """Task is complete when an artifact exists with non-empty content."""

    path: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"type": "file_exists", "path": self.path}


@dataclass(frozen=True, slots=True)
class ValidateCriteria:
    """Task is complete when a custom validation script exits 0."""

    script: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"type": "validate", "script": self.script}


CompletionCriteria = TestPassingCriteria | FileExistsCriteria | ValidateCriteria


def parse_completion_criteria(value: object, path: str = "completion") -> CompletionCriteria:
    payload = _expect_object(value, path)
    kind = payload.get("type")
    if kind == "test_passing":
        return TestPassingCriteria(
            command=_as_optional_str(payload.get("command"), f"{path}.command"),
            grep=_as_optional_str(payload.get("grep"), f"{path}.grep"),
        )
    if kind == "file_exists":
        return FileExistsCriteria(path=_as_str(payload.get("path"), f"{path}.path"))
    if kind == "validate":
        return ValidateCriteria(script=_as_str(payload.get("script"), f"{path}.script"))
    _fail(f"{path}.type", f"unknown completion criteria type {kind!r}")


@dataclass(frozen=True, slots=True)
class CompletionCheckResult:
    complete: bool
    reason: str
    artifacts: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "reason", truncate_reason(self.reason))


# --- tasks -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Task:
    """Current state of one unit of work, as produced by folding the task log."""

    id: str
    title: str
    type: TaskType = TaskType.TASK
    status: TaskStatus = TaskStatus.PENDING
    description: str = ""
    completion: CompletionCriteria | None = None
    parent: str | None = None
    spec: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    tags: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    blocks: tuple[str, ...] = ()
    subtasks: tuple[str, ...] = ()
    priority: int = 0
    estimate: float | None = None
    complexity: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    completed_at: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _as_str(self.id, "task.id", max_len=256))
        object.__setattr__(self, "title", _as_str(self.title, "task.title"))
        object.__setattr__(self, "type", _as_enum(TaskType, self.type, "task.type"))
        object.__setattr__(self, "status", _as_enum(TaskStatus, self.status, "task.status"))

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Task:
        payload = _expect_object(data, "task")
        completion_raw = payload.get("completion")
        now = utc_now_iso()
        priority = payload.get("priority")
        return cls(
            id=_as_str(payload.get("id"), "task.id", max_len=256),
            title=_as_str(payload.get("title"), "task.title"),
            type=_as_enum(TaskType, payload.get("type", TaskType.TASK.value), "task.type"),
            status=_as_enum(
                TaskStatus, payload.get("status", TaskStatus.PENDING.value), "task.status"
            ),
            description=_as_text(payload.get("description"), "task.description"),
            completion=(
                parse_completion_criteria(completion_raw, "task.completion")
                if completion_raw is not None
                else None
            ),
            parent=_as_optional_str(payload.get("parent"), "task.parent"),
            spec=_as_optional_str(payload.get("spec"), "task.spec"),
            external_id=_as_optional_str(payload.get("externalId"), "task.externalId"),
            external_url=_as_optional_str(payload.get("externalUrl"), "task.externalUrl"),
            tags=_as_str_tuple(payload.get("tags"), "task.tags"),
            blocked_by=_as_str_tuple(payload.get("blockedBy"), "task.blockedBy"),
            blocks=_as_str_tuple(payload.get("blocks"), "task.blocks"),
            subtasks=_as_str_tuple(payload.get("subtasks"), "task.subtasks"),
            priority=0 if priority is None else _as_int(priority, "task.priority"),
            estimate=_as_optional_float(payload.get("estimate"), "task.estimate"),
            complexity=_as_optional_str(payload.get("complexity"), "task.complexity"),
            created_at=_as_optional_str(payload.get("createdAt"), "task.createdAt") or now,
            updated_at=_as_optional_str(payload.get("updatedAt"), "task.updatedAt") or now,
            completed_at=_as_optional_str(payload.get("completedAt"), "task.completedAt"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        optional: dict[str, JSONValue] = {
            "completion": self.completion.to_dict() if self.completion is not None else None,
            "parent": self.parent,
            "spec": self.spec,
            "externalId": self.external_id,
            "externalUrl": self.external_url,
            "estimate": self.estimate,
            "complexity": self.complexity,
            "completedAt": self.completed_at,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        if self.priority:
            payload["priority"] = self.priority
        for key, values in (
            ("tags", self.tags),
            ("blockedBy", self.blocked_by),
            ("blocks", self.blocks),
            ("subtasks", self.subtasks),
        ):
            if values:
                payload[key] = list(values)
        return payload

    def with_changes(self, changes: Mapping[str, object]) -> Task:
        """Return a new task with camelCase wire ``changes`` merged in."""

        merged: dict[str, object] = dict(self.to_dict())
        merged.update(changes)
        merged["id"] = self.id
        return Task.from_dict(merged)


# --- task log operations -----------------------------------------------------


@dataclass(frozen=True, slots=True)
class TaskCreateOp:
    task: Task
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        return {"op": "create", "task": self.task.to_dict(), "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class TaskUpdateOp:
    id: str
    changes: Mapping[str, JSONValue]
    source: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "op": "update",
            "id": self.id,
            "changes": dict(self.changes),
            "timestamp": self.timestamp,
        }
        if self.source is not None:
            payload["source"] = self.source
        return payload


@dataclass(frozen=True, slots=True)
class TaskLinkOp:
    id: str
    external_id: str
    external_url: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "op": "link",
            "id": self.id,
            "externalId": self.external_id,
            "timestamp": self.timestamp,
        }
        if self.external_url is not None:
            payload["externalUrl"] = self.external_url
        return payload


@dataclass(frozen=True, slots=True)
class TaskRelateOp:
    id: str
    relation: TaskRelation
    target_id: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "op": "relate",
            "id": self.id,
            "relation": self.relation.value,
            "targetId": self.target_id,
            "timestamp": self.timestamp,
        }


TaskOperation = TaskCreateOp | TaskUpdateOp | TaskLinkOp | TaskRelateOp


def parse_task_operation(value: object) -> TaskOperation:
    """Parse one ``tasks.jsonl`` line payload into a typed operation."""

    payload = _expect_object(value, "operation")
    timestamp = _as_optional_str(payload.get("timestamp"), "operation.timestamp") or utc_now_iso()
    op = payload.get("op")
    if op == "create":
        task = Task.from_dict(_expect_object(payload.get("task"), "task"))
        return TaskCreateOp(task=task, timestamp=timestamp)
    if op == "update":
        changes = _expect_object(payload.get("changes", {}), "operation.changes")
        return TaskUpdateOp(
            id=_as_str(payload.get("id"), "operation.id"),
            changes=changes,  # type: ignore[arg-type]
            source=_as_optional_str(payload.get("source"), "operation.source"),
            timestamp=timestamp,
        )
    if op == "link":
        return TaskLinkOp(
            id=_as_str(payload.get("id"), "operation.id"),
            external_id=_as_str(payload.get("externalId"), "operation.externalId"),
            external_url=_as_optional_str(payload.get("externalUrl"), "operation.externalUrl"),
            timestamp=timestamp,
        )
    if op == "relate":
        return TaskRelateOp(
            id=_as_str(payload.get("id"), "operation.id"),
            relation=_as_enum(TaskRelation, payload.get("relation"), "operation.relation"),
            target_id=_as_str(payload.get("targetId"), "operation.targetId"),
            timestamp=timestamp,
        )
    _fail("operation.op", f"unknown operation {op!r}")


# --- iteration results and actions -------------------------------------------


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class IterationComplete:
    artifacts: tuple[str, ...] = ()
    usage: TokenUsage | None = None

    @property
    def status(self) -> IterationStatus:
        return IterationStatus.COMPLETE

    @property
    def detail(self) -> str:
        return ", ".join(self.artifacts)


@dataclass(frozen=True, slots=True)
class IterationBlocked:
    blocker: str
    usage: TokenUsage | None = None

    @property
    def status(self) -> IterationStatus:
        return IterationStatus.BLOCKED

    @property
    def detail(self) -> str:
        return self.blocker


@dataclass(frozen=True, slots=True)
class IterationFailed:
    error: str
    usage: TokenUsage | None = None

    @property
    def status(self) -> IterationStatus:
        return IterationStatus.FAILED

    @property
    def detail(self) -> str:
        return self.error


@dataclass(frozen=True, slots=True)
class IterationContinue:
    reason: str
    usage: TokenUsage | None = None

    @property
    def status(self) -> IterationStatus:
        return IterationStatus.CONTINUE

    @property
    def detail(self) -> str:
        return self.reason


IterationResult = IterationComplete | IterationBlocked | IterationFailed | IterationContinue


@dataclass(frozen=True, slots=True)
class Action:
    """Audit record of one executed agent action."""

    type: ActionType
    target: str
    duration_ms: int
    input: str | None = None
    output: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "type": self.type.value,
            "target": self.target,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }
        if self.input is not None:
            payload["input"] = self.input
        if self.output is not None:
            payload["output"] = self.output
        return payload


__all__ = [
    "FINISHED_STATUSES",
    "MAX_REASON_CHARS",
    "SELECTABLE_STATUSES",
    "Action",
    "ActionType",
    "CompletionCheckResult",
    "CompletionCriteria",
    "FileExistsCriteria",
    "IterationBlocked",
    "IterationComplete",
    "IterationContinue",
    "IterationFailed",
    "IterationResult",
    "IterationStatus",
    "JSONValue",
    "Task",
    "TaskCreateOp",
    "TaskLinkOp",
    "TaskOperation",
    "TaskRelateOp",
    "TaskRelation",
    "TaskStatus",
    "TaskType",
    "TaskUpdateOp",
    "TestPassingCriteria",
    "TokenUsage",
    "ValidateCriteria",
    "parse_completion_criteria",
    "parse_task_operation",
    "truncate_reason",
    "utc_now_iso",
]
