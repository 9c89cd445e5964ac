"""Verification plane: completion detection and required pre-commit checks."""

from ralph_orchestrator.verification_plane.checks import (
    RequiredCheckResult,
    all_checks_passed,
    run_required_checks,
)
from ralph_orchestrator.verification_plane.completion import (
    CompletionContext,
    check_completion,
    create_completion_context,
)

__all__ = [
    "CompletionContext",
    "RequiredCheckResult",
    "all_checks_passed",
    "check_completion",
    "create_completion_context",
    "run_required_checks",
]
