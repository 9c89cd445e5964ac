"""Run-level KPIs and the delivery-mode induction invariant."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from ralph_orchestrator.domain.models import JSONValue
from ralph_orchestrator.security.policy import PolicyMode

MIN_SUCCESS_RATE = 0.80
MAX_ROLLBACK_RATE = 0.30
INTERVENTION_RATIO = 0.20


@dataclass(frozen=True, slots=True)
class RunKpis:
    success_rate: float
    avg_cycle_time_seconds: float
    escaped_defects: int
    rollback_rate: float
    human_interventions: int
    tasks_processed: int
    max_time_per_task_seconds: float

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "successRate": self.success_rate,
            "avgCycleTimeSeconds": self.avg_cycle_time_seconds,
            "escapedDefects": self.escaped_defects,
            "rollbackRate": self.rollback_rate,
            "humanInterventions": self.human_interventions,
            "tasksProcessed": self.tasks_processed,
            "maxTimePerTaskSeconds": self.max_time_per_task_seconds,
        }


@dataclass(frozen=True, slots=True)
class InvariantReport:
    passed: bool
    enforced: bool
    violations: tuple[str, ...]
    mode: PolicyMode
    kpis: RunKpis


def compute_run_kpis(
    *,
    tasks_processed: int,
    tasks_completed: int,
    task_durations_seconds: Sequence[float],
    rollback_count: int,
    escaped_defects: int,
    human_interventions: int,
    max_time_per_task_seconds: float,
) -> RunKpis:
    avg = (
        sum(task_durations_seconds) / len(task_durations_seconds)
        if task_durations_seconds
        else 0.0
    )
    denominator = tasks_processed if tasks_processed > 0 else 1
    return RunKpis(
        success_rate=tasks_completed / denominator,
        avg_cycle_time_seconds=avg,
        escaped_defects=escaped_defects,
        rollback_rate=rollback_count / denominator,
        human_interventions=human_interventions,
        tasks_processed=tasks_processed,
        max_time_per_task_seconds=max_time_per_task_seconds,
    )


def validate_induction_invariant(
    kpis: RunKpis, mode: PolicyMode = PolicyMode.DELIVERY
) -> InvariantReport:
    """Check delivery thresholds; core mode records KPIs without enforcing them."""

    if mode is PolicyMode.CORE:
        return InvariantReport(passed=True, enforced=False, violations=(), mode=mode, kpis=kpis)
    if kpis.tasks_processed == 0:
        return InvariantReport(passed=True, enforced=True, violations=(), mode=mode, kpis=kpis)

    violations: list[str] = []
    if kpis.success_rate < MIN_SUCCESS_RATE:
        violations.append(f"success_rate_below_threshold:{kpis.success_rate:.3f}<0.800")
    if kpis.avg_cycle_time_seconds > kpis.max_time_per_task_seconds:
        violations.append(
            "cycle_time_exceeds_limit:"
            f"{kpis.avg_cycle_time_seconds:.1f}>{kpis.max_time_per_task_seconds:g}"
        )
    if kpis.escaped_defects > 0:
        violations.append(f"escaped_defects_nonzero:{kpis.escaped_defects}")
    if kpis.rollback_rate > MAX_ROLLBACK_RATE:
        violations.append(f"rollback_rate_above_threshold:{kpis.rollback_rate:.3f}>0.300")
    max_interventions = max(1, math.ceil(kpis.tasks_processed * INTERVENTION_RATIO))
    if kpis.human_interventions > max_interventions:
        violations.append(
            f"human_interventions_above_threshold:{kpis.human_interventions}>{max_interventions}"
        )
    return InvariantReport(
        passed=not violations,
        enforced=True,
        violations=tuple(violations),
        mode=mode,
        kpis=kpis,
    )


__all__ = ["InvariantReport", "RunKpis", "compute_run_kpis", "validate_induction_invariant"]
