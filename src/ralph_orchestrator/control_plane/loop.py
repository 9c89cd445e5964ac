"""
ralph-orchestrator — task scheduler loop

Purpose
- Select tasks, drive per-task iterations, merge programmatic completion
  checks, route completions through the commit gate, and enforce budgets.

What should be included in this file
- ``run_loop``: outer loop over tasks with run-level budgets, KPIs and hooks.
- ``execute_task_loop``: bounded iterations for one task.
- ``execute_iteration``: one iteration, model-driven or deterministic.
- ``pick_next_task`` / ``update_task_status``: task-log driven scheduling.

Functional requirements
- Iterations of a task never overlap; tasks are processed one at a time.
- Hook failures never alter control flow.
- Budget exhaustion leaves the task non-terminal and emits ``limit_reached``.
- ``on_failure=stop`` aborts the task and the run on a failed iteration or a
  rejected commit; ``continue`` moves on.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, assert_never

import structlog

from ralph_orchestrator.config.schema import OnFailure
from ralph_orchestrator.control_plane.budgets import (
    LimitReached,
    RunBudget,
    TaskBudget,
    estimate_cost,
)
from ralph_orchestrator.control_plane.gate import GateOutcome, run_policy_checks_before_commit
from ralph_orchestrator.control_plane.hooks import HookMap, HookName, invoke_hook
from ralph_orchestrator.control_plane.kpis import (
    InvariantReport,
    RunKpis,
    compute_run_kpis,
    validate_induction_invariant,
)
from ralph_orchestrator.domain.models import (
    IterationBlocked,
    IterationComplete,
    IterationContinue,
    IterationFailed,
    IterationResult,
    IterationStatus,
    Task,
    TaskStatus,
    TaskUpdateOp,
    truncate_reason,
    utc_now_iso,
)
from ralph_orchestrator.integration_plane.git_client import GitClient
from ralph_orchestrator.persistence.state_paths import resolve_state_paths
from ralph_orchestrator.persistence.task_log import TaskStateStore, is_blocked
from ralph_orchestrator.sandbox.executor import build_executor
from ralph_orchestrator.security.policy import PolicyMode
from ralph_orchestrator.security.policy_loader import load_policy_or_default
from ralph_orchestrator.synthesis_plane.agent import (
    create_provider,
    execute_llm_iteration,
    load_task_context,
)
from ralph_orchestrator.verification_plane.completion import (
    check_completion,
    create_completion_context,
)

if TYPE_CHECKING:
    from ralph_orchestrator.config.schema import RuntimeConfig
    from ralph_orchestrator.integration_plane.git_client import GitOperations
    from ralph_orchestrator.integration_plane.tracker import TrackerSync
    from ralph_orchestrator.sandbox.executor import Executor
    from ralph_orchestrator.security.policy import RalphPolicy
    from ralph_orchestrator.synthesis_plane.providers.base import ChatProvider

Clock = Callable[[], float]

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class LoopContext:
    """Everything one task's iterations need; one executor per task."""

    config: RuntimeConfig
    executor: Executor
    git: GitOperations
    workdir: Path
    state: TaskStateStore
    provider: ChatProvider | None = None
    hooks: HookMap | None = None
    policy: RalphPolicy | None = None
    tracker: TrackerSync | None = None
    clock: Clock = time.monotonic

    @property
    def dry_run(self) -> bool:
        return self.config.loop.dry_run


@dataclass(frozen=True, slots=True)
class TaskLoopResult:
    success: bool
    iterations: int
    cost: float
    status: TaskStatus
    reason: str | None = None
    limit: LimitReached | None = None
    gate: GateOutcome | None = None
    stop_run: bool = False


@dataclass(frozen=True, slots=True)
class LoopResult:
    tasks_processed: int
    tasks_completed: int
    tasks_failed: int
    total_iterations: int
    duration_seconds: float
    total_cost: float
    kpis: RunKpis
    invariant: InvariantReport
    stopped_by: LimitReached | None = None


# --- scheduling ----------------------------------------------------------------


def pick_next_task(
    tasks: Mapping[str, Task],
    task_filter: str | None = None,
    exclude: Collection[str] = (),
) -> Task | None:
    """Select the next runnable task.

    An explicit ``task_filter`` returns that task even when it is blocked,
    unless it is done, cancelled or already attempted.
    """

    if task_filter:
        target = tasks.get(task_filter)
        if target is None or target.is_finished or target.id in exclude:
            return None
        return target

    candidates = [
        task
        for task in tasks.values()
        if task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.DISCOVERED)
        and task.id not in exclude
        and not is_blocked(task, tasks)
    ]
    if not candidates:
        return None
    return min(candidates, key=_selection_key)


def _selection_key(task: Task) -> tuple[int, int, float]:
    in_progress_first = 0 if task.status is TaskStatus.IN_PROGRESS else 1
    return (in_progress_first, -task.priority, _created_timestamp(task))


def _created_timestamp(task: Task) -> float:
    try:
        return datetime.fromisoformat(task.created_at).timestamp()
    except ValueError:
        return float("inf")


async def update_task_status(
    context: LoopContext, task_id: str, status: TaskStatus, reason: str | None = None
) -> None:
    changes: dict[str, str] = {"status": status.value}
    if status is TaskStatus.DONE:
        changes["completedAt"] = utc_now_iso()
    context.state.append_operation(TaskUpdateOp(id=task_id, changes=changes, source="agent"))
    logger.info("task_status_changed", task_id=task_id, status=status.value, reason=reason)
    if reason:
        context.state.append_progress(
            "status_change", taskId=task_id, status=status.value, reason=reason
        )


# --- iterations ----------------------------------------------------------------


async def execute_iteration(
    context: LoopContext,
    task: Task,
    iteration: int,
    previous_result: str | None = None,
) -> IterationResult:
    """Run one iteration; provider and executor-gate failures become ``IterationFailed``."""

    if context.provider is not None:
        try:
            task_context = await load_task_context(
                context.executor, task, context.config.paths.agent_instructions
            )
            outcome = await execute_llm_iteration(
                context.provider,
                context.executor,
                task,
                iteration,
                context=task_context,
                previous_result=previous_result,
            )
        except Exception as exc:  # noqa: BLE001 - provider failures fail the iteration only.
            message = str(exc) or "Unknown LLM error"
            logger.warning(
                "llm_iteration_failed",
                task_id=task.id,
                iteration=iteration,
                error_type=type(exc).__name__,
                error=message,
            )
            return IterationFailed(error=message)
        for action in outcome.actions:
            await invoke_hook(context.hooks, HookName.ON_ACTION, action)
        return outcome.result

    if task.status is TaskStatus.DISCOVERED:
        return IterationContinue(reason="Task discovered, needs implementation")
    return IterationContinue(reason=f"Iteration {iteration} complete, more work needed")


async def _merge_completion(
    context: LoopContext, task: Task, result: IterationResult
) -> IterationResult:
    if result.status in (IterationStatus.COMPLETE, IterationStatus.BLOCKED):
        return result
    if task.completion is None:
        return result
    check = await check_completion(task, create_completion_context(context.executor))
    if check is None or not check.complete:
        return result
    logger.info("completion_criteria_met", task_id=task.id, reason=check.reason)
    return IterationComplete(artifacts=check.artifacts or (), usage=result.usage)


async def execute_task_loop(
    context: LoopContext, task: Task, *, run_cost_so_far: float = 0.0
) -> TaskLoopResult:
    config = context.config
    budget = TaskBudget.from_config(config.loop)
    stop_on_failure = config.loop.on_failure is OnFailure.STOP
    started = context.clock()
    iterations = 0
    task_cost = 0.0
    previous: str | None = None

    while True:
        limit = budget.check(
            iterations_done=iterations,
            elapsed_seconds=context.clock() - started,
            task_cost=task_cost,
            run_cost=run_cost_so_far + task_cost,
        )
        if limit is not None:
            await _signal_limit(context.state, context.hooks, limit, task_id=task.id)
            return TaskLoopResult(
                success=False,
                iterations=iterations,
                cost=task_cost,
                status=TaskStatus.IN_PROGRESS,
                reason=limit.detail,
                limit=limit,
            )

        iterations += 1
        log = logger.bind(task_id=task.id, iteration=iterations)
        await invoke_hook(context.hooks, HookName.ON_ITERATION_START, task, iterations)

        result = await execute_iteration(context, task, iterations, previous)
        iteration_cost = estimate_cost(result.usage, config.llm)
        task_cost += iteration_cost
        result = await _merge_completion(context, task, result)

        context.state.append_progress(
            "iteration",
            taskId=task.id,
            iteration=iterations,
            result=result.status.value,
            detail=truncate_reason(result.detail) or None,
            cost=iteration_cost,
            taskCostSoFar=task_cost,
        )
        await invoke_hook(context.hooks, HookName.ON_ITERATION_END, task, iterations, result)

        match result:
            case IterationComplete():
                log.info("task_iteration_complete", artifacts=list(result.artifacts))
                gate = await run_policy_checks_before_commit(context, task, context.dry_run)
                if gate.passed:
                    await update_task_status(context, task.id, TaskStatus.DONE)
                    return TaskLoopResult(
                        success=True,
                        iterations=iterations,
                        cost=task_cost,
                        status=TaskStatus.DONE,
                        gate=gate,
                    )
                reason = (
                    f"required checks failed: {', '.join(gate.failed_checks)}"
                    if gate.failed_checks
                    else "commit failed"
                )
                log.warning("task_commit_rejected", reason=reason, stop_run=stop_on_failure)
                context.state.append_progress("task_failed", taskId=task.id, reason=reason)
                return TaskLoopResult(
                    success=False,
                    iterations=iterations,
                    cost=task_cost,
                    status=TaskStatus.IN_PROGRESS,
                    reason=reason,
                    gate=gate,
                    stop_run=stop_on_failure,
                )
            case IterationBlocked():
                await update_task_status(context, task.id, TaskStatus.BLOCKED, result.blocker)
                return TaskLoopResult(
                    success=False,
                    iterations=iterations,
                    cost=task_cost,
                    status=TaskStatus.BLOCKED,
                    reason=result.blocker,
                )
            case IterationFailed():
                log.warning("task_iteration_failed", error=result.error)
                if stop_on_failure:
                    context.state.append_progress(
                        "task_failed", taskId=task.id, reason=result.error
                    )
                    return TaskLoopResult(
                        success=False,
                        iterations=iterations,
                        cost=task_cost,
                        status=TaskStatus.IN_PROGRESS,
                        reason=result.error,
                        stop_run=True,
                    )
            case IterationContinue():
                log.debug("task_iteration_continue", reason=result.reason)
            case _:
                assert_never(result)

        previous = f"{result.status.value}: {result.detail}"


async def _signal_limit(
    state: TaskStateStore,
    hooks: HookMap | None,
    limit: LimitReached,
    *,
    task_id: str | None = None,
) -> None:
    logger.warning("limit_reached", task_id=task_id, limit=limit.kind.value, detail=limit.detail)
    state.append_progress("limit_reached", taskId=task_id, **limit.to_dict())
    await invoke_hook(hooks, HookName.ON_LIMIT_REACHED, limit.kind.value, limit.detail)


# --- run -----------------------------------------------------------------------


async def run_loop(
    config: RuntimeConfig,
    workdir: str | Path,
    *,
    provider: ChatProvider | None = None,
    hooks: HookMap | None = None,
    git: GitOperations | None = None,
    tracker: TrackerSync | None = None,
    policy: RalphPolicy | None = None,
    clock: Clock = time.monotonic,
) -> LoopResult:
    root = Path(workdir).resolve()
    active_policy = policy if policy is not None else load_policy_or_default(config.paths.policy)
    mode = active_policy.mode
    state = TaskStateStore(
        resolve_state_paths(root, mode=mode, scoped=config.state.scoped, state_dir=config.state.dir)
    )
    git_ops: GitOperations = git if git is not None else GitClient(root)
    chat_provider = provider if provider is not None else create_provider(config.llm)
    run_budget = RunBudget.from_config(config.loop)
    log = logger.bind(workdir=str(root), mode=mode.value, dry_run=config.loop.dry_run)

    if config.loop.parallelism > 1:
        log.warning("parallelism_sequential", parallelism=config.loop.parallelism)
    log.info(
        "run_started",
        policy_checks=[check.value for check in active_policy.checks.required],
        task_filter=config.loop.task_filter,
        llm=chat_provider is not None,
    )

    started = clock()
    processed = completed = failed = total_iterations = 0
    rollback_count = escaped_defects = 0
    total_cost = 0.0
    durations: list[float] = []
    attempted: set[str] = set()
    stopped_by: LimitReached | None = None

    while True:
        limit = run_budget.check(
            tasks_processed=processed, elapsed_seconds=clock() - started, run_cost=total_cost
        )
        if limit is not None:
            stopped_by = limit
            await _signal_limit(state, hooks, limit)
            break

        task = pick_next_task(state.tasks(), config.loop.task_filter, exclude=attempted)
        if task is None:
            log.info("no_runnable_tasks")
            break

        attempted.add(task.id)
        processed += 1
        context = LoopContext(
            config=config,
            executor=build_executor(config, root, active_policy),
            git=git_ops,
            workdir=root,
            state=state,
            provider=chat_provider,
            hooks=hooks,
            policy=active_policy,
            tracker=tracker,
            clock=clock,
        )
        log.info("task_started", task_id=task.id, title=task.title)
        await invoke_hook(hooks, HookName.ON_TASK_START, task)

        if task.status is TaskStatus.DISCOVERED:
            await update_task_status(context, task.id, TaskStatus.PENDING)
        await update_task_status(context, task.id, TaskStatus.IN_PROGRESS)

        task_started = clock()
        outcome = await execute_task_loop(context, task, run_cost_so_far=total_cost)
        durations.append(clock() - task_started)
        total_iterations += outcome.iterations
        total_cost += outcome.cost

        if outcome.success:
            completed += 1
        else:
            failed += 1
            if outcome.gate is not None and outcome.gate.check_results:
                escaped_defects += 1
            if outcome.gate is not None and outcome.gate.rolled_back:
                rollback_count += 1
            elif context.executor.get_pending_changes():
                context.executor.rollback()
                rollback_count += 1
                log.info("task_changes_rolled_back", task_id=task.id)

        log.info(
            "task_finished",
            task_id=task.id,
            success=outcome.success,
            iterations=outcome.iterations,
            cost=outcome.cost,
            reason=outcome.reason,
        )
        await invoke_hook(hooks, HookName.ON_TASK_END, task, outcome.success)

        if outcome.success and tracker is not None and not config.loop.dry_run:
            await _sync_tracker(context, task)

        if outcome.stop_run:
            log.warning("run_stopped_on_failure", task_id=task.id)
            break

    kpis = compute_run_kpis(
        tasks_processed=processed,
        tasks_completed=completed,
        task_durations_seconds=durations,
        rollback_count=rollback_count,
        escaped_defects=escaped_defects,
        human_interventions=0,
        max_time_per_task_seconds=config.loop.max_time_per_task_seconds,
    )
    invariant = validate_induction_invariant(kpis, mode)
    await _record_invariant(state, hooks, invariant)

    result = LoopResult(
        tasks_processed=processed,
        tasks_completed=completed,
        tasks_failed=failed,
        total_iterations=total_iterations,
        duration_seconds=clock() - started,
        total_cost=total_cost,
        kpis=kpis,
        invariant=invariant,
        stopped_by=stopped_by,
    )
    log.info(
        "run_finished",
        tasks_processed=processed,
        tasks_completed=completed,
        tasks_failed=failed,
        total_iterations=total_iterations,
        total_cost=round(total_cost, 6),
        invariant_passed=invariant.passed,
    )
    return result


async def _sync_tracker(context: LoopContext, task: Task) -> None:
    tracker = context.tracker
    if tracker is None:
        return
    current = context.state.tasks().get(task.id, task)
    try:
        link = await tracker.sync_task(current, success=True)
    except Exception as exc:  # noqa: BLE001 - tracker outages never fail a committed task.
        logger.warning("tracker_sync_failed", task_id=task.id, error=str(exc) or type(exc).__name__)
        return
    if link is not None:
        context.state.append_operation(link)


async def _record_invariant(
    state: TaskStateStore, hooks: HookMap | None, invariant: InvariantReport
) -> None:
    kpis = invariant.kpis.to_dict()
    if invariant.passed:
        state.append_progress(
            "induction_invariant_validated",
            mode=invariant.mode.value,
            enforced=invariant.enforced,
            kpis=kpis,
        )
        return
    state.append_progress(
        "induction_invariant_violation",
        mode=invariant.mode.value,
        violations=list(invariant.violations),
        kpis=kpis,
    )
    anomaly = {
        "type": "anomaly_detected",
        "anomaly": "induction_invariant_violation",
        "severity": "high" if invariant.mode is PolicyMode.DELIVERY else "low",
        "context": {"mode": invariant.mode.value, "violations": list(invariant.violations)},
        "timestamp": utc_now_iso(),
    }
    logger.warning("induction_invariant_violation", violations=list(invariant.violations))
    await invoke_hook(hooks, HookName.ON_ANOMALY, anomaly)


__all__ = [
    "Clock",
    "LoopContext",
    "LoopResult",
    "TaskLoopResult",
    "execute_iteration",
    "execute_task_loop",
    "pick_next_task",
    "run_loop",
    "update_task_status",
]
