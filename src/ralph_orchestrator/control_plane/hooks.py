"""
Best-effort hook fan-out for loop observers (notifications, progress loggers).

Hooks are observers, never participants in control flow: ``invoke_hook`` is
the single place where hook failures are caught, logged and dropped. Hooks
may be plain callables or coroutine functions.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

HookCallable = Callable[..., Any]

_logger = structlog.get_logger(__name__)


class HookName(StrEnum):
    ON_TASK_START = "on_task_start"
    ON_ITERATION_START = "on_iteration_start"
    ON_ACTION = "on_action"
    ON_ITERATION_END = "on_iteration_end"
    ON_TASK_END = "on_task_end"
    ON_ANOMALY = "on_anomaly"
    ON_LIMIT_REACHED = "on_limit_reached"


@dataclass(slots=True)
class LoopHooks:
    """Optional observer callbacks, one per loop event."""

    on_task_start: HookCallable | None = None
    on_iteration_start: HookCallable | None = None
    on_action: HookCallable | None = None
    on_iteration_end: HookCallable | None = None
    on_task_end: HookCallable | None = None
    on_anomaly: HookCallable | None = None
    on_limit_reached: HookCallable | None = None


HookMap = LoopHooks | Mapping[str, object]


@dataclass(frozen=True, slots=True)
class HookFailure:
    """Hook failure captured without interrupting the loop."""

    hook: str
    error_type: str
    message: str


def resolve_hook(hooks: HookMap | None, name: HookName) -> HookCallable | None:
    if hooks is None:
        return None
    if isinstance(hooks, Mapping):
        candidate = hooks.get(name.value)
    else:
        candidate = getattr(hooks, name.value, None)
    return candidate if callable(candidate) else None


async def invoke_hook(
    hooks: HookMap | None,
    name: HookName,
    *args: object,
    logger: FilteringBoundLogger | None = None,
) -> HookFailure | None:
    """Call hook ``name`` with ``args``; never raises."""

    hook = resolve_hook(hooks, name)
    if hook is None:
        return None
    log = logger if logger is not None else _logger
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
        return None
    except Exception as exc:  # noqa: BLE001 - hooks must never break the loop.
        message = str(exc)
        if message:
            log.warning(
                "hook_failed", hook=name.value, error_type=type(exc).__name__, error=message
            )
        else:
            message = "Unknown hook error"
            log.warning("hook_failed_unknown", hook=name.value, error_type=type(exc).__name__)
        return HookFailure(hook=name.value, error_type=type(exc).__name__, message=message)


__all__ = [
    "HookCallable",
    "HookFailure",
    "HookMap",
    "HookName",
    "LoopHooks",
    "invoke_hook",
    "resolve_hook",
]
