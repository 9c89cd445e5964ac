"""
Budget envelopes for the task loop.

This module enforces the loop's limits between iterations and between tasks:
- per-task caps (iterations, wall-clock seconds, cost)
- per-run caps (tasks processed, wall-clock seconds, cost)
- token-usage cost estimation from the configured per-million-token rates

Exhaustion is a value (``LimitReached``), never an exception; the loop turns
it into a ``limit_reached`` progress event and an ``on_limit_reached`` hook.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from ralph_orchestrator.domain.models import JSONValue

if TYPE_CHECKING:
    from ralph_orchestrator.config.schema import LLMConfig, LoopConfig
    from ralph_orchestrator.domain.models import TokenUsage

_TOKENS_PER_MILLION = 1_000_000


class LimitKind(StrEnum):
    ITERATIONS = "iterations"
    TASK_TIME = "task_time"
    TASK_COST = "task_cost"
    RUN_TASKS = "run_tasks"
    RUN_TIME = "run_time"
    RUN_COST = "run_cost"


@dataclass(frozen=True, slots=True)
class LimitReached:
    """A budget envelope that has been exhausted."""

    kind: LimitKind
    limit: float
    observed: float

    @property
    def detail(self) -> str:
        return f"{self.kind.value} limit reached ({_fmt(self.observed)} >= {_fmt(self.limit)})"

    def to_dict(self) -> dict[str, JSONValue]:
        return {"limit": self.kind.value, "max": self.limit, "observed": self.observed}


def estimate_cost(usage: TokenUsage | None, llm: LLMConfig) -> float:
    """USD cost of one provider call; zero when usage is unknown."""

    if usage is None:
        return 0.0
    return (
        usage.input_tokens * llm.input_usd_per_million_tokens
        + usage.output_tokens * llm.output_usd_per_million_tokens
    ) / _TOKENS_PER_MILLION


@dataclass(frozen=True, slots=True)
class TaskBudget:
    max_iterations: int
    max_seconds: float
    max_cost_usd: float
    max_run_cost_usd: float

    @classmethod
    def from_config(cls, loop: LoopConfig) -> TaskBudget:
        return cls(
            max_iterations=loop.max_iterations_per_task,
            max_seconds=loop.max_time_per_task_seconds,
            max_cost_usd=loop.max_cost_per_task_usd,
            max_run_cost_usd=loop.max_cost_per_run_usd,
        )

    def check(
        self,
        *,
        iterations_done: int,
        elapsed_seconds: float,
        task_cost: float,
        run_cost: float,
    ) -> LimitReached | None:
        """Return the first exhausted envelope before starting another iteration."""

        if iterations_done >= self.max_iterations:
            return LimitReached(LimitKind.ITERATIONS, self.max_iterations, iterations_done)
        if elapsed_seconds >= self.max_seconds:
            return LimitReached(LimitKind.TASK_TIME, self.max_seconds, elapsed_seconds)
        if task_cost >= self.max_cost_usd:
            return LimitReached(LimitKind.TASK_COST, self.max_cost_usd, task_cost)
        if run_cost >= self.max_run_cost_usd:
            return LimitReached(LimitKind.RUN_COST, self.max_run_cost_usd, run_cost)
        return None


@dataclass(frozen=True, slots=True)
class RunBudget:
    max_tasks: int
    max_seconds: float
    max_cost_usd: float

    @classmethod
    def from_config(cls, loop: LoopConfig) -> RunBudget:
        return cls(
            max_tasks=loop.max_tasks_per_run,
            max_seconds=loop.max_time_per_run_seconds,
            max_cost_usd=loop.max_cost_per_run_usd,
        )

    def check(
        self, *, tasks_processed: int, elapsed_seconds: float, run_cost: float
    ) -> LimitReached | None:
        if tasks_processed >= self.max_tasks:
            return LimitReached(LimitKind.RUN_TASKS, self.max_tasks, tasks_processed)
        if elapsed_seconds >= self.max_seconds:
            return LimitReached(LimitKind.RUN_TIME, self.max_seconds, elapsed_seconds)
        if run_cost >= self.max_cost_usd:
            return LimitReached(LimitKind.RUN_COST, self.max_cost_usd, run_cost)
        return None


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.4f}"


__all__ = [
    "LimitKind",
    "LimitReached",
    "RunBudget",
    "TaskBudget",
    "estimate_cost",
]
