"""
ralph-orchestrator — completion detection

Purpose
- Decide programmatically whether a task's declared completion criteria hold.

Functional requirements
- ``check_completion`` returns ``None`` when the task declares no criteria, so
  callers fall back to the agent's explicit completion signal.
- Failure reasons are capped at 500 characters.
- Thrown command failures become incomplete results; an exception without a
  message is reported as ``Unknown error``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, assert_never

from ralph_orchestrator.domain.models import (
    CompletionCheckResult,
    CompletionCriteria,
    FileExistsCriteria,
    Task,
    TestPassingCriteria,
    ValidateCriteria,
    truncate_reason,
)

if TYPE_CHECKING:
    from ralph_orchestrator.sandbox.overlay import BashResult


class CompletionContext(Protocol):
    """The narrow executor surface completion strategies need."""

    async def bash(self, command: str) -> BashResult: ...

    async def file_exists(self, path: str) -> bool: ...


class _FileReader(Protocol):
    async def bash(self, command: str) -> BashResult: ...

    async def read_file(self, path: str) -> str: ...


class _ExecutorCompletionContext:
    __slots__ = ("_executor",)

    def __init__(self, executor: _FileReader) -> None:
        self._executor = executor

    async def bash(self, command: str) -> BashResult:
        return await self._executor.bash(command)

    async def file_exists(self, path: str) -> bool:
        try:
            content = await self._executor.read_file(path)
        except Exception:  # noqa: BLE001 - any read failure means "missing".
            return False
        return len(content) > 0


def create_completion_context(executor: _FileReader) -> CompletionContext:
    """Adapt an executor; an empty or unreadable file counts as missing."""

    return _ExecutorCompletionContext(executor)


async def check_completion(task: Task, ctx: CompletionContext) -> CompletionCheckResult | None:
    if task.completion is None:
        return None
    return await check_criteria(task, task.completion, ctx)


async def check_criteria(
    task: Task, criteria: CompletionCriteria, ctx: CompletionContext
) -> CompletionCheckResult:
    match criteria:
        case TestPassingCriteria():
            return await check_test_passing(task, criteria, ctx)
        case FileExistsCriteria():
            return await check_file_exists(criteria, ctx)
        case ValidateCriteria():
            return await check_validate(task, criteria, ctx)
        case _:
            assert_never(criteria)


async def check_test_passing(
    task: Task, criteria: TestPassingCriteria, ctx: CompletionContext
) -> CompletionCheckResult:
    command = criteria.command or f'npm test -- --grep "{criteria.grep or task.id}"'
    try:
        result = await ctx.bash(command)
    except Exception as exc:  # noqa: BLE001 - command errors become incomplete results.
        return CompletionCheckResult(
            complete=False, reason=f"Test command error: {_error_message(exc)}"
        )
    if result.exit_code == 0:
        return CompletionCheckResult(complete=True, reason=f"Tests passed: {command}", artifacts=())
    output = result.stderr or result.stdout
    return CompletionCheckResult(
        complete=False,
        reason=truncate_reason(f"Tests failed (exit {result.exit_code}): {output}"),
    )


async def check_file_exists(
    criteria: FileExistsCriteria, ctx: CompletionContext
) -> CompletionCheckResult:
    if await ctx.file_exists(criteria.path):
        return CompletionCheckResult(
            complete=True,
            reason=f"Artifact exists: {criteria.path}",
            artifacts=(criteria.path,),
        )
    return CompletionCheckResult(complete=False, reason=f"Artifact missing: {criteria.path}")


async def check_validate(
    task: Task, criteria: ValidateCriteria, ctx: CompletionContext
) -> CompletionCheckResult:
    command = f"RALPH_TASK_ID={task.id} {criteria.script}"
    try:
        result = await ctx.bash(command)
    except Exception as exc:  # noqa: BLE001 - command errors become incomplete results.
        return CompletionCheckResult(
            complete=False, reason=f"Validation error: {_error_message(exc)}"
        )
    if result.exit_code == 0:
        artifacts = tuple(line.strip() for line in result.stdout.split("\n") if line.strip())
        return CompletionCheckResult(
            complete=True,
            reason=f"Validation passed: {criteria.script}",
            artifacts=artifacts,
        )
    output = result.stderr or result.stdout
    return CompletionCheckResult(
        complete=False,
        reason=truncate_reason(f"Validation failed (exit {result.exit_code}): {output}"),
    )


def _error_message(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


__all__ = [
    "CompletionContext",
    "check_completion",
    "check_criteria",
    "check_file_exists",
    "check_test_passing",
    "check_validate",
    "create_completion_context",
]
