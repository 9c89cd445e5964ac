"""Domain models: tasks, task-log operations, completion criteria and iteration results."""

from ralph_orchestrator.domain.models import (
    Action,
    ActionType,
    CompletionCheckResult,
    CompletionCriteria,
    FileExistsCriteria,
    IterationBlocked,
    IterationComplete,
    IterationContinue,
    IterationFailed,
    IterationResult,
    IterationStatus,
    Task,
    TaskCreateOp,
    TaskLinkOp,
    TaskOperation,
    TaskRelateOp,
    TaskRelation,
    TaskStatus,
    TaskType,
    TaskUpdateOp,
    TestPassingCriteria,
    TokenUsage,
    ValidateCriteria,
)

__all__ = [
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
]
