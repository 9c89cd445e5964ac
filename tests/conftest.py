"""Shared offline fixtures: isolated git environment, fake git, scripted providers."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path

import pytest

from ralph_orchestrator.config.schema import RuntimeConfig
from ralph_orchestrator.control_plane.hooks import HookMap
from ralph_orchestrator.control_plane.loop import LoopContext
from ralph_orchestrator.integration_plane.git_client import CommitResult, GitCommandError
from ralph_orchestrator.persistence import TaskStateStore, resolve_state_paths
from ralph_orchestrator.sandbox.executor import Executor
from ralph_orchestrator.security.policy import RalphPolicy
from ralph_orchestrator.synthesis_plane.providers.base import (
    ChatMessage,
    ChatResponse,
    FinishReason,
    ToolCall,
    ToolDefinition,
)


@dataclass(slots=True)
class FakeGit:
    """In-memory stand-in for ``GitClient`` recording add/commit calls."""

    nothing_to_commit: bool = False
    fail_with: Exception | None = None
    added: list[tuple[str, ...]] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)

    def add(self, paths: Sequence[str] = (".",)) -> None:
        self.added.append(tuple(paths))

    def commit(self, message: str) -> CommitResult | None:
        if self.fail_with is not None:
            raise self.fail_with
        if self.nothing_to_commit:
            return None
        self.messages.append(message)
        return CommitResult(branch="main", commit=f"{len(self.messages):040d}", message=message)


class ScriptedProvider:
    """Chat provider replaying canned responses; repeats the last one when exhausted."""

    def __init__(self, responses: Sequence[ChatResponse | Exception]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[tuple[ChatMessage, ...], tuple[ToolDefinition, ...]]] = []

    async def chat(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> ChatResponse:
        self.calls.append((tuple(messages), tuple(tools)))
        index = min(len(self.calls) - 1, len(self._responses) - 1)
        item = self._responses[index]
        if isinstance(item, Exception):
            raise item
        return item


def tool_response(*calls: tuple[str, dict[str, object]], content: str = "") -> ChatResponse:
    return ChatResponse(
        content=content,
        tool_calls=tuple(ToolCall(name=name, arguments=args) for name, args in calls),
        finish_reason=FinishReason.TOOL_CALLS,
    )


@pytest.fixture
def scripted_provider() -> Callable[..., ScriptedProvider]:
    """Factory: ``scripted_provider(response, ...)``."""

    return lambda *responses: ScriptedProvider(responses)


@pytest.fixture
def tool_calls() -> Callable[..., ChatResponse]:
    """Factory: ``tool_calls(("write_file", {...}), ...)`` builds a tool-calling response."""

    return tool_response


ContextFactory = Callable[..., LoopContext]


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def git_failure() -> GitCommandError:
    return GitCommandError(
        command=("git", "commit"), returncode=128, stdout="", stderr="fatal: index.lock exists"
    )


@pytest.fixture
def state_store(tmp_path: Path) -> TaskStateStore:
    return TaskStateStore(resolve_state_paths(tmp_path / "work"))


@pytest.fixture
def make_context(tmp_path: Path, fake_git: FakeGit, state_store: TaskStateStore) -> ContextFactory:
    """Build a ``LoopContext`` over ``tmp_path/work`` with a fake git client."""

    workdir = tmp_path / "work"
    workdir.mkdir(exist_ok=True)

    def _build(
        *,
        policy: RalphPolicy | None = None,
        config: RuntimeConfig | None = None,
        provider: ScriptedProvider | None = None,
        hooks: HookMap | None = None,
        executor: Executor | None = None,
        clock: Callable[[], float] | None = None,
        **loop_overrides: object,
    ) -> LoopContext:
        runtime = config if config is not None else RuntimeConfig()
        if loop_overrides:
            runtime = replace(runtime, loop=replace(runtime.loop, **loop_overrides))
        context = LoopContext(
            config=runtime,
            executor=(
                executor
                if executor is not None
                else Executor(workdir, policy=policy, allow_self_modification=False)
            ),
            git=fake_git,
            workdir=workdir,
            state=state_store,
            provider=provider,
            hooks=hooks,
            policy=policy,
        )
        if clock is not None:
            context.clock = clock
        return context

    return _build


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate git from the developer's global config."""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)
    return home


@pytest.fixture
def git_repo(tmp_path: Path, git_env: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(
        ["git", "init", "--initial-branch=main"], cwd=repo, check=True, capture_output=True
    )
    return repo

