"""
ralph-orchestrator — unit tests for the commit gate

Purpose
- Validate that required checks run against the flushed tree before any
  commit, that failures never commit, and that every rejection leaves a
  progress event behind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ralph_orchestrator.config.schema import ChecksConfig, GitConfig, RuntimeConfig
from ralph_orchestrator.control_plane.gate import (
    CHECKS_FAILED_RULE,
    commit_message,
    run_policy_checks_before_commit,
)
from ralph_orchestrator.domain.models import Task
from ralph_orchestrator.security.policy import CheckRules, CheckType, PolicyMode, RalphPolicy

if TYPE_CHECKING:
    from conftest import ContextFactory, FakeGit

    from ralph_orchestrator.integration_plane.git_client import GitCommandError
    from ralph_orchestrator.persistence import TaskStateStore

TASK = Task(id="T-1", title="Add widget")


def _checked_policy(*, rollback: bool) -> RalphPolicy:
    return RalphPolicy(
        mode=PolicyMode.CORE,
        checks=CheckRules(required=(CheckType.TEST,), rollback_on_fail=rollback),
    )


def _config(test_command: str) -> RuntimeConfig:
    return RuntimeConfig(checks=ChecksConfig(test=test_command, build="", lint="", typecheck=""))


@pytest.mark.unit
def test_commit_message_is_prefix_id_and_title() -> None:
    assert commit_message("RALPH-", TASK) == "RALPH-T-1: Add widget"
    assert commit_message("", Task(id="x", title="a: b")) == "x: a: b"


@pytest.mark.unit
async def test_no_required_checks_commits_directly(
    make_context: ContextFactory, fake_git: FakeGit
) -> None:
    context = make_context()
    await context.executor.write_file("src/widget.ts", "export {}\n")

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert outcome.passed and outcome.committed
    assert fake_git.messages == ["RALPH-T-1: Add widget"]
    assert fake_git.added == [(".",)]
    assert outcome.log_lines[-1].startswith("Committed ")
    assert (context.workdir / "src" / "widget.ts").is_file()


@pytest.mark.unit
async def test_passing_checks_commit_after_flush(
    make_context: ContextFactory, fake_git: FakeGit
) -> None:
    context = make_context(policy=_checked_policy(rollback=True), config=_config("test -f a.txt"))
    await context.executor.write_file("a.txt", "flushed before checks")

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert outcome.passed
    assert outcome.committed
    assert outcome.log_lines[:2] == ("Policy: running 1 required checks", "[PASS test]")
    assert fake_git.messages == ["RALPH-T-1: Add widget"]


@pytest.mark.unit
async def test_failed_checks_never_commit_and_roll_back(
    make_context: ContextFactory, fake_git: FakeGit, state_store: TaskStateStore
) -> None:
    context = make_context(policy=_checked_policy(rollback=True), config=_config("exit 1"))

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert not outcome.passed
    assert not outcome.committed
    assert outcome.rolled_back
    assert outcome.failed_checks == ("test",)
    assert outcome.log_lines == (
        "Policy: running 1 required checks",
        "[FAIL test]",
        "Policy: required checks failed",
        "Policy: pending changes discarded after failed checks",
    )
    assert fake_git.messages == []
    [event] = state_store.read_progress()
    assert event["type"] == "policy_violation"
    assert event["taskId"] == "T-1"
    assert event["violationType"] == "checks_failed"
    assert event["target"] == "test"
    assert event["rule"] == CHECKS_FAILED_RULE
    assert event["uncommittedPaths"] == []


@pytest.mark.unit
async def test_failed_checks_report_flushed_paths_left_on_disk(
    make_context: ContextFactory, state_store: TaskStateStore
) -> None:
    context = make_context(policy=_checked_policy(rollback=True), config=_config("exit 1"))
    await context.executor.write_file("src/widget.ts", "export {}\n")

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert not outcome.passed
    assert (context.workdir / "src" / "widget.ts").is_file()
    [event] = state_store.read_progress()
    assert event["uncommittedPaths"] == ["src/widget.ts"]


@pytest.mark.unit
async def test_flush_failure_before_checks_becomes_commit_failed(
    make_context: ContextFactory, fake_git: FakeGit, state_store: TaskStateStore
) -> None:
    context = make_context(policy=_checked_policy(rollback=True), config=_config("true"))
    (context.workdir / "assets").mkdir()
    await context.executor.write_file("a.txt", "new")
    await context.executor.delete_file("assets")

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert not outcome.passed
    assert outcome.log_lines[-1].startswith("Commit failed: flush failed: ")
    assert fake_git.messages == []
    assert not (context.workdir / "a.txt").exists()
    assert [event["type"] for event in state_store.read_progress()] == ["commit_failed"]


@pytest.mark.unit
async def test_failed_checks_without_rollback_still_record_violation(
    make_context: ContextFactory, fake_git: FakeGit, state_store: TaskStateStore
) -> None:
    context = make_context(policy=_checked_policy(rollback=False), config=_config("false"))

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert not outcome.passed
    assert not outcome.rolled_back
    assert "Policy: pending changes discarded after failed checks" not in outcome.log_lines
    assert fake_git.messages == []
    assert [event["type"] for event in state_store.read_progress()] == ["policy_violation"]


@pytest.mark.unit
async def test_dry_run_logs_and_touches_nothing(
    make_context: ContextFactory, fake_git: FakeGit
) -> None:
    context = make_context()
    await context.executor.write_file("src/widget.ts", "x")

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=True)

    assert outcome.passed and not outcome.committed
    assert outcome.log_lines == ("[DRY RUN] Would commit: RALPH-T-1: Add widget",)
    assert fake_git.added == []
    assert context.executor.get_pending_changes() == ["src/widget.ts"]


@pytest.mark.unit
async def test_nothing_to_commit_still_passes(
    make_context: ContextFactory, fake_git: FakeGit
) -> None:
    fake_git.nothing_to_commit = True

    outcome = await run_policy_checks_before_commit(make_context(), TASK, dry_run=False)

    assert outcome.passed
    assert not outcome.committed
    assert outcome.log_lines == ("Nothing to commit",)


@pytest.mark.unit
async def test_auto_commit_disabled_skips_git(
    make_context: ContextFactory, fake_git: FakeGit
) -> None:
    context = make_context(config=RuntimeConfig(git=GitConfig(auto_commit=False)))

    outcome = await run_policy_checks_before_commit(context, TASK, dry_run=False)

    assert outcome.passed
    assert fake_git.added == []


@pytest.mark.unit
async def test_git_failure_becomes_commit_failed_event(
    make_context: ContextFactory,
    fake_git: FakeGit,
    git_failure: GitCommandError,
    state_store: TaskStateStore,
) -> None:
    fake_git.fail_with = git_failure

    outcome = await run_policy_checks_before_commit(make_context(), TASK, dry_run=False)

    assert not outcome.passed
    assert outcome.log_lines[-1].startswith("Commit failed: ")
    [event] = state_store.read_progress()
    assert event["type"] == "commit_failed"
    assert event["taskId"] == "T-1"
    assert event["error"]
