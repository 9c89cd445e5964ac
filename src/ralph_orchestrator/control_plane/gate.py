"""
ralph-orchestrator — commit gate

Purpose
- Turn an agent-declared completion into a commit, but only after the policy's
  required checks pass against the flushed working tree.

Functional requirements
- No policy or no required checks: commit directly (or log the dry-run line).
- Required checks: flush first, run each check, log ``[PASS <name>]`` or
  ``[FAIL <name>]``.
- Any failed check: never commit, always append a ``policy_violation``
  progress event, roll back pending changes when ``rollback_on_fail``.
- Git failures become a failed outcome plus a ``commit_failed`` progress event.
- Commit message is ``<commit_prefix><task.id>: <task.title>``, verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

import structlog

from ralph_orchestrator.integration_plane.git_client import GitClientError
from ralph_orchestrator.sandbox.overlay import SandboxError
from ralph_orchestrator.verification_plane.checks import all_checks_passed, run_required_checks

if TYPE_CHECKING:
    from ralph_orchestrator.control_plane.loop import LoopContext
    from ralph_orchestrator.domain.models import Task
    from ralph_orchestrator.integration_plane.git_client import CommitResult
    from ralph_orchestrator.verification_plane.checks import RequiredCheckResult

CHECKS_FAILED_RULE: Final[str] = "required checks must pass before commit"

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class GateOutcome:
    passed: bool
    committed: bool = False
    rolled_back: bool = False
    check_results: tuple[RequiredCheckResult, ...] = ()
    log_lines: tuple[str, ...] = ()
    commit: CommitResult | None = None

    @property
    def failed_checks(self) -> tuple[str, ...]:
        return tuple(item.name for item in self.check_results if not item.passed)


@dataclass(slots=True)
class _GateLog:
    task_id: str
    lines: list[str] = field(default_factory=list)

    def emit(self, line: str, **fields: object) -> None:
        self.lines.append(line)
        logger.info("commit_gate", task_id=self.task_id, line=line, **fields)


def commit_message(prefix: str, task: Task) -> str:
    return f"{prefix}{task.id}: {task.title}"


async def run_policy_checks_before_commit(
    context: LoopContext, task: Task, dry_run: bool
) -> GateOutcome:
    """Run required checks, then commit or reject (and optionally roll back)."""

    policy = context.policy
    log = _GateLog(task_id=task.id)

    if policy is None or not policy.checks.required:
        return await _commit(context, task, dry_run, log, flushed=False)

    try:
        flushed = await context.executor.flush()
    except (SandboxError, OSError) as exc:
        return _commit_failed(context, task, log, f"flush failed: {exc}")

    log.emit(f"Policy: running {len(policy.checks.required)} required checks")
    results = await run_required_checks(
        policy, context.config.checks.as_mapping(), context.executor
    )
    for result in results:
        status = "PASS" if result.passed else "FAIL"
        log.emit(f"[{status} {result.name}]", duration_ms=result.duration_ms)

    if all_checks_passed(results):
        outcome = await _commit(context, task, dry_run, log, flushed=True)
        return GateOutcome(
            passed=outcome.passed,
            committed=outcome.committed,
            check_results=results,
            log_lines=outcome.log_lines,
            commit=outcome.commit,
        )

    log.emit("Policy: required checks failed")
    rolled_back = False
    if policy.checks.rollback_on_fail:
        context.executor.rollback()
        rolled_back = True
        log.emit("Policy: pending changes discarded after failed checks")

    failed = [item.name for item in results if not item.passed]
    uncommitted = [change.path for change in flushed]
    if uncommitted:
        logger.warning("uncommitted_changes_on_disk", task_id=task.id, paths=uncommitted)
    context.state.append_progress(
        "policy_violation",
        taskId=task.id,
        violationType="checks_failed",
        target=", ".join(failed),
        rule=CHECKS_FAILED_RULE,
        uncommittedPaths=uncommitted,
    )
    return GateOutcome(
        passed=False,
        rolled_back=rolled_back,
        check_results=results,
        log_lines=tuple(log.lines),
    )


async def _commit(
    context: LoopContext, task: Task, dry_run: bool, log: _GateLog, *, flushed: bool
) -> GateOutcome:
    git_config = context.config.git
    message = commit_message(git_config.commit_prefix, task)
    if not git_config.auto_commit:
        return GateOutcome(passed=True, log_lines=tuple(log.lines))
    if dry_run:
        log.emit(f"[DRY RUN] Would commit: {message}")
        return GateOutcome(passed=True, log_lines=tuple(log.lines))

    try:
        if not flushed:
            await context.executor.flush()
        context.git.add(["."])
        commit = context.git.commit(message)
    except (GitClientError, SandboxError, OSError) as exc:
        return _commit_failed(context, task, log, str(exc))

    if commit is None:
        log.emit("Nothing to commit")
        return GateOutcome(passed=True, log_lines=tuple(log.lines))
    log.emit(f"Committed {commit.commit[:12]}: {message}")
    return GateOutcome(passed=True, committed=True, log_lines=tuple(log.lines), commit=commit)


def _commit_failed(context: LoopContext, task: Task, log: _GateLog, error: str) -> GateOutcome:
    log.emit(f"Commit failed: {error}")
    logger.error("commit_failed", task_id=task.id, error=error)
    context.state.append_progress("commit_failed", taskId=task.id, error=error)
    return GateOutcome(passed=False, log_lines=tuple(log.lines))


__all__ = [
    "CHECKS_FAILED_RULE",
    "GateOutcome",
    "commit_message",
    "run_policy_checks_before_commit",
]
