"""Agent tool execution against the policy-gated executor."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ralph_orchestrator.domain.models import ActionType
from ralph_orchestrator.sandbox.executor import Executor
from ralph_orchestrator.security.policy import CommandRules, FileRules, PolicyMode, RalphPolicy
from ralph_orchestrator.synthesis_plane.providers.base import ToolCall
from ralph_orchestrator.synthesis_plane.tools import AGENT_TOOLS, execute_tool_call

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def executor(tmp_path: Path) -> Executor:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.ts").write_text("console.log(1)\n", encoding="utf-8")
    policy = RalphPolicy(
        mode=PolicyMode.DELIVERY,
        files=FileRules(allow_read=("src",), allow_write=("src",)),
        commands=CommandRules(allow=("echo", "ls")),
    )
    return Executor(tmp_path, policy=policy, allow_self_modification=False)


@pytest.mark.unit
def test_tool_surface() -> None:
    assert [tool.name for tool in AGENT_TOOLS] == [
        "read_file",
        "write_file",
        "run_bash",
        "task_complete",
        "task_blocked",
    ]


@pytest.mark.unit
async def test_read_and_write(executor: Executor) -> None:
    read = await execute_tool_call(executor, ToolCall("read_file", {"path": "src/main.ts"}))
    write = await execute_tool_call(
        executor, ToolCall("write_file", {"path": "src/new.ts", "content": "abc"})
    )

    assert read.output == "console.log(1)\n"
    assert read.action.type is ActionType.READ
    assert write.output == "Successfully wrote 3 bytes to src/new.ts"
    assert write.action.output == "OK"
    assert executor.get_pending_changes() == ["src/new.ts"]


@pytest.mark.unit
async def test_policy_rejection_is_reported_not_raised(executor: Executor) -> None:
    result = await execute_tool_call(
        executor, ToolCall("write_file", {"path": "package.json", "content": "{}"})
    )

    assert result.output.startswith("Error writing package.json: Policy violation")
    assert result.action.output is not None
    assert result.action.output.startswith("Error: ")
    assert len(executor.violations) == 1


@pytest.mark.unit
async def test_run_bash_formats_output(executor: Executor) -> None:
    ok = await execute_tool_call(executor, ToolCall("run_bash", {"command": "echo hi"}))
    quiet = await execute_tool_call(
        executor, ToolCall("run_bash", {"command": "ls -d src >/dev/null"})
    )
    denied = await execute_tool_call(executor, ToolCall("run_bash", {"command": "curl x"}))

    assert ok.output == "hi\n"
    assert quiet.output == "(no output)"
    assert denied.output.startswith("Exit code 126\nstdout: \nstderr: Policy violation")
    assert denied.action.output == "exit=126"


@pytest.mark.unit
async def test_signals_and_unknown_tools(executor: Executor) -> None:
    complete = await execute_tool_call(
        executor, ToolCall("task_complete", {"artifacts": ["src/a.ts", 3, "src/b.ts"]})
    )
    blocked = await execute_tool_call(executor, ToolCall("task_blocked", {}))
    unknown = await execute_tool_call(executor, ToolCall("deploy", {}))

    assert complete.output == "Task declared complete. Artifacts: src/a.ts, src/b.ts"
    assert blocked.output == "Task declared blocked: Unknown blocker"
    assert unknown.output == "Unknown tool: deploy"
    assert unknown.action.type is ActionType.EVAL
    assert executor.get_pending_changes() == []
