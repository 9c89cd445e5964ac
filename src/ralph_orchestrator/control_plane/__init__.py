"""Task scheduling, budgets, hooks, the commit gate and run KPIs."""

from ralph_orchestrator.control_plane.budgets import (
    LimitKind,
    LimitReached,
    RunBudget,
    TaskBudget,
    estimate_cost,
)
from ralph_orchestrator.control_plane.gate import GateOutcome, run_policy_checks_before_commit
from ralph_orchestrator.control_plane.hooks import HookFailure, HookName, LoopHooks, invoke_hook
from ralph_orchestrator.control_plane.kpis import (
    InvariantReport,
    RunKpis,
    compute_run_kpis,
    validate_induction_invariant,
)
from ralph_orchestrator.control_plane.loop import (
    LoopContext,
    LoopResult,
    TaskLoopResult,
    execute_iteration,
    execute_task_loop,
    pick_next_task,
    run_loop,
    update_task_status,
)

__all__ = [
    "GateOutcome",
    "HookFailure",
    "HookName",
    "InvariantReport",
    "LimitKind",
    "LimitReached",
    "LoopContext",
    "LoopHooks",
    "LoopResult",
    "RunBudget",
    "RunKpis",
    "TaskBudget",
    "TaskLoopResult",
    "compute_run_kpis",
    "estimate_cost",
    "execute_iteration",
    "execute_task_loop",
    "invoke_hook",
    "pick_next_task",
    "run_loop",
    "run_policy_checks_before_commit",
    "update_task_status",
]
