"""Required pre-commit checks (test, build, lint, typecheck) run through an executor."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from ralph_orchestrator.domain.models import JSONValue, truncate_reason

if TYPE_CHECKING:
    from ralph_orchestrator.sandbox.overlay import BashResult
    from ralph_orchestrator.security.policy import CheckType, RalphPolicy

logger = structlog.get_logger(__name__)


class CommandRunner(Protocol):
    async def bash(self, command: str) -> BashResult: ...


@dataclass(frozen=True, slots=True)
class RequiredCheckResult:
    name: str
    passed: bool
    output: str
    duration_ms: int
    command: str | None = None
    exit_code: int | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "passed": self.passed,
            "durationMs": self.duration_ms,
            "exitCode": self.exit_code,
        }


async def run_required_checks(
    policy: RalphPolicy,
    commands: Mapping[str, str],
    runner: CommandRunner,
) -> tuple[RequiredCheckResult, ...]:
    """Run each required check sequentially; failures never raise."""

    results: list[RequiredCheckResult] = []
    for check in policy.checks.required:
        results.append(await run_check(check, commands.get(check.value), runner))
    return tuple(results)


async def run_check(
    check: CheckType | str, command: str | None, runner: CommandRunner
) -> RequiredCheckResult:
    name = str(check)
    if not command:
        return RequiredCheckResult(
            name=name,
            passed=False,
            output=f"No command configured for check: {name}",
            duration_ms=0,
        )

    started_ns = time.monotonic_ns()
    try:
        result = await runner.bash(command)
    except Exception as exc:  # noqa: BLE001 - a crashing check is a failed check.
        logger.warning("required_check_error", check=name, command=command, error=str(exc))
        return RequiredCheckResult(
            name=name,
            passed=False,
            output=truncate_reason(str(exc) or "Unknown error"),
            duration_ms=(time.monotonic_ns() - started_ns) // 1_000_000,
            command=command,
        )
    return RequiredCheckResult(
        name=name,
        passed=result.exit_code == 0,
        output=truncate_reason(result.stdout or result.stderr),
        duration_ms=(time.monotonic_ns() - started_ns) // 1_000_000,
        command=command,
        exit_code=result.exit_code,
    )


def all_checks_passed(results: Sequence[RequiredCheckResult]) -> bool:
    return bool(results) and all(item.passed for item in results)


__all__ = [
    "CommandRunner",
    "RequiredCheckResult",
    "all_checks_passed",
    "run_check",
    "run_required_checks",
]
