"""Required pre-commit checks: sequencing, missing commands, and crash handling."""

from __future__ import annotations

import pytest

from ralph_orchestrator.sandbox.overlay import BashResult
from ralph_orchestrator.security.policy import CheckRules, CheckType, RalphPolicy
from ralph_orchestrator.verification_plane.checks import (
    RequiredCheckResult,
    all_checks_passed,
    run_check,
    run_required_checks,
)


class _Runner:
    def __init__(self, exit_codes: dict[str, int], *, crash_on: str | None = None) -> None:
        self.exit_codes = exit_codes
        self.crash_on = crash_on
        self.commands: list[str] = []

    async def bash(self, command: str) -> BashResult:
        self.commands.append(command)
        if command == self.crash_on:
            raise OSError("runner exploded")
        code = self.exit_codes.get(command, 0)
        return BashResult(command, code, f"{command} -> {code}", "")


@pytest.mark.unit
async def test_runs_required_checks_in_policy_order() -> None:
    policy = RalphPolicy(checks=CheckRules(required=(CheckType.LINT, CheckType.TEST)))
    runner = _Runner({"npm test": 1})

    results = await run_required_checks(
        policy, {"test": "npm test", "lint": "npm run lint"}, runner
    )

    assert runner.commands == ["npm run lint", "npm test"]
    assert [(r.name, r.passed, r.exit_code) for r in results] == [
        ("lint", True, 0),
        ("test", False, 1),
    ]
    assert not all_checks_passed(results)


@pytest.mark.unit
async def test_missing_command_fails_without_running() -> None:
    runner = _Runner({})

    result = await run_check(CheckType.TYPECHECK, None, runner)

    assert result.passed is False
    assert result.output == "No command configured for check: typecheck"
    assert runner.commands == []


@pytest.mark.unit
async def test_runner_exception_is_a_failed_check() -> None:
    result = await run_check(CheckType.BUILD, "make", _Runner({}, crash_on="make"))

    assert result.passed is False
    assert result.output == "runner exploded"
    assert result.exit_code is None


@pytest.mark.unit
def test_all_checks_passed_requires_at_least_one_result() -> None:
    ok = RequiredCheckResult(name="test", passed=True, output="", duration_ms=1)

    assert all_checks_passed([ok])
    assert not all_checks_passed([])
