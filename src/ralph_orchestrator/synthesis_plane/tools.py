"""
ralph-orchestrator — agent tool surface

Purpose
- Tool definitions offered to the model and their execution against the
  policy-gated executor.

Functional requirements
- Every tool call produces an ``Action`` audit record and a text result for
  the model; tool failures (including policy rejections) are recorded in the
  action, never raised.
- ``task_complete`` and ``task_blocked`` are signals only; they touch nothing.
- Unknown tools are recorded as ``eval`` actions.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Protocol

from ralph_orchestrator.domain.models import Action, ActionType, JSONValue, utc_now_iso
from ralph_orchestrator.synthesis_plane.providers.base import ToolDefinition

if TYPE_CHECKING:
    from ralph_orchestrator.sandbox.overlay import BashResult
    from ralph_orchestrator.synthesis_plane.providers.base import ToolCall

TASK_COMPLETE: Final[str] = "task_complete"
TASK_BLOCKED: Final[str] = "task_blocked"
UNKNOWN_BLOCKER: Final[str] = "Unknown blocker"

AGENT_TOOLS: Final[tuple[ToolDefinition, ...]] = (
    ToolDefinition(
        name="read_file",
        description="Read the contents of a file in the workspace",
        parameters={
            "type": "object",
            "properties": {"path": {"type": "string", "description": "Relative path to the file"}},
            "required": ["path"],
        },
    ),
    ToolDefinition(
        name="write_file",
        description=(
            "Write content to a file in the workspace. Creates the file if it does not exist."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to the file"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["path", "content"],
        },
    ),
    ToolDefinition(
        name="run_bash",
        description="Execute a bash command in the sandboxed environment",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The bash command to execute"}
            },
            "required": ["command"],
        },
    ),
    ToolDefinition(
        name=TASK_COMPLETE,
        description="Declare the task as complete with a list of artifacts produced",
        parameters={
            "type": "object",
            "properties": {
                "artifacts": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Paths to files produced or modified",
                },
                "summary": {"type": "string", "description": "Brief summary of what was done"},
            },
            "required": ["artifacts"],
        },
    ),
    ToolDefinition(
        name=TASK_BLOCKED,
        description="Declare the task as blocked due to a dependency or missing resource",
        parameters={
            "type": "object",
            "properties": {
                "blocker": {
                    "type": "string",
                    "description": "Description of what is blocking the task",
                }
            },
            "required": ["blocker"],
        },
    ),
)


class ToolExecutor(Protocol):
    async def read_file(self, path: str) -> str: ...

    async def write_file(self, path: str, content: str) -> None: ...

    async def bash(self, command: str) -> BashResult: ...


@dataclass(frozen=True, slots=True)
class ToolExecution:
    action: Action
    output: str


def artifacts_argument(arguments: Mapping[str, JSONValue]) -> tuple[str, ...]:
    raw = arguments.get("artifacts")
    if not isinstance(raw, list):
        return ()
    return tuple(item for item in raw if isinstance(item, str))


def blocker_argument(arguments: Mapping[str, JSONValue]) -> str:
    raw = arguments.get("blocker")
    return raw if isinstance(raw, str) and raw else UNKNOWN_BLOCKER


class _ActionClock:
    __slots__ = ("_started", "_timestamp")

    def __init__(self) -> None:
        self._started = time.monotonic()
        self._timestamp = utc_now_iso()

    def action(
        self,
        action_type: ActionType,
        target: str,
        *,
        input: str | None = None,
        output: str | None = None,
    ) -> Action:
        return Action(
            type=action_type,
            target=target,
            duration_ms=int((time.monotonic() - self._started) * 1000),
            input=input,
            output=output,
            timestamp=self._timestamp,
        )


async def execute_tool_call(executor: ToolExecutor, call: ToolCall) -> ToolExecution:
    clock = _ActionClock()
    args = call.arguments

    if call.name == "read_file":
        path = _str_arg(args, "path")
        try:
            content = await executor.read_file(path)
        except Exception as exc:  # noqa: BLE001 - tool failures are reported to the model.
            message = _error_message(exc)
            return ToolExecution(
                clock.action(ActionType.READ, path, output=f"Error: {message}"),
                f"Error reading {path}: {message}",
            )
        return ToolExecution(
            clock.action(ActionType.READ, path, output=f"{len(content)} bytes"), content
        )

    if call.name == "write_file":
        path = _str_arg(args, "path")
        content = _str_arg(args, "content")
        size = f"{len(content)} bytes"
        try:
            await executor.write_file(path, content)
        except Exception as exc:  # noqa: BLE001 - tool failures are reported to the model.
            message = _error_message(exc)
            return ToolExecution(
                clock.action(ActionType.WRITE, path, input=size, output=f"Error: {message}"),
                f"Error writing {path}: {message}",
            )
        return ToolExecution(
            clock.action(ActionType.WRITE, path, input=size, output="OK"),
            f"Successfully wrote {len(content)} bytes to {path}",
        )

    if call.name == "run_bash":
        command = _str_arg(args, "command")
        try:
            result = await executor.bash(command)
        except Exception as exc:  # noqa: BLE001 - tool failures are reported to the model.
            message = _error_message(exc)
            return ToolExecution(
                clock.action(ActionType.BASH, command, output=f"Error: {message}"),
                f"Error executing command: {message}",
            )
        if result.exit_code == 0:
            output = result.stdout or "(no output)"
        else:
            output = (
                f"Exit code {result.exit_code}\nstdout: {result.stdout}\nstderr: {result.stderr}"
            )
        return ToolExecution(
            clock.action(ActionType.BASH, command, output=f"exit={result.exit_code}"), output
        )

    if call.name == TASK_COMPLETE:
        artifacts = artifacts_argument(args)
        return ToolExecution(
            clock.action(ActionType.EVAL, TASK_COMPLETE, input=", ".join(artifacts)),
            f"Task declared complete. Artifacts: {', '.join(artifacts)}",
        )

    if call.name == TASK_BLOCKED:
        blocker = blocker_argument(args)
        return ToolExecution(
            clock.action(ActionType.EVAL, TASK_BLOCKED, input=blocker),
            f"Task declared blocked: {blocker}",
        )

    return ToolExecution(
        clock.action(ActionType.EVAL, call.name, output=f"Unknown tool: {call.name}"),
        f"Unknown tool: {call.name}",
    )


def _str_arg(arguments: Mapping[str, JSONValue], key: str) -> str:
    value = arguments.get(key)
    return value if isinstance(value, str) else ""


def _error_message(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


__all__ = [
    "AGENT_TOOLS",
    "TASK_BLOCKED",
    "TASK_COMPLETE",
    "ToolExecution",
    "ToolExecutor",
    "artifacts_argument",
    "blocker_argument",
    "execute_tool_call",
]
