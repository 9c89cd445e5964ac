"""Command-line interface router for ralph-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from ralph_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    RuntimeConfig,
    dump_effective_config,
    load_config,
)
from ralph_orchestrator.control_plane import LoopResult, run_loop
from ralph_orchestrator.domain.models import TaskStatus
from ralph_orchestrator.observability import (
    LoggingConfig,
    correlation_scope,
    setup_structured_logging,
    shutdown_logging,
)
from ralph_orchestrator.persistence import TaskStateStore, resolve_state_paths
from ralph_orchestrator.security.policy_loader import (
    PolicyLoadError,
    load_policy,
    load_policy_or_default,
)
from ralph_orchestrator.synthesis_plane.providers.base import ProviderError

EXIT_SUCCESS: Final[int] = 0
EXIT_TASKS_FAILED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_PROVIDER_ERROR: Final[int] = 3


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = EXIT_TASKS_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph",
        description=(
            "ralph-orchestrator: autonomous coding-agent delivery loop.\n\n"
            "Common workflows:\n"
            "  ralph run                     Work the task queue in this directory\n"
            "  ralph run --dry-run --task T1 Simulate one task without committing\n"
            "  ralph status                  Task counts by status\n"
            "  ralph policy check ralph.policy.json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--workdir",
        default=".",
        help="Repository the agent works in (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to ralph TOML config (default: <workdir>/ralph.toml if present).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", parents=[common], help="Run the task loop")
    run_parser.add_argument(
        "--dry-run", action="store_true", default=False, help="Never commit; log what would be."
    )
    run_parser.add_argument("--task", dest="task_id", default=None, help="Only work this task id")
    run_parser.add_argument(
        "--max-tasks", type=int, default=None, help="Override loop.max_tasks_per_run"
    )
    run_parser.add_argument("--json", action="store_true", help="Emit the run summary as JSON")
    run_parser.set_defaults(handler=_cmd_run)

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show task counts from the task log"
    )
    status_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    status_parser.set_defaults(handler=_cmd_status)

    policy_parser = subparsers.add_parser("policy", help="Policy file utilities")
    policy_sub = policy_parser.add_subparsers(dest="policy_command", required=True)
    check_parser = policy_sub.add_parser("check", help="Validate a policy file")
    check_parser.add_argument("policy_path", help="Path to a JSON or YAML policy file")
    check_parser.set_defaults(handler=_cmd_policy_check)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the redacted effective config"
    )
    config_parser.set_defaults(handler=_cmd_config)
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    workdir = _workdir(args)
    overrides: dict[str, object] = {
        "loop.dry_run": True if args.dry_run else None,
        "loop.task_filter": args.task_id,
        "loop.max_tasks_per_run": args.max_tasks,
    }
    config = _load_runtime_config(args, workdir, overrides)

    run_id = f"run-{uuid.uuid4().hex[:12]}"
    handle = setup_structured_logging(
        LoggingConfig.from_observability(config.observability, run_id=run_id)
    )
    try:
        with correlation_scope(run_id=run_id):
            result = asyncio.run(run_loop(config, workdir))
    except ProviderError as exc:
        raise CLIError(str(exc), exit_code=EXIT_PROVIDER_ERROR) from exc
    finally:
        shutdown_logging(handle)

    payload = _run_payload(run_id, result)
    if args.json:
        _emit_json(payload)
    else:
        for key, value in payload.items():
            print(f"{key}: {value}")
    return EXIT_SUCCESS if result.tasks_failed == 0 else EXIT_TASKS_FAILED


def _cmd_status(args: argparse.Namespace) -> int:
    workdir = _workdir(args)
    config = _load_runtime_config(args, workdir, {})
    policy = load_policy_or_default(config.paths.policy)
    paths = resolve_state_paths(
        workdir, mode=policy.mode, scoped=config.state.scoped, state_dir=config.state.dir
    )
    tasks = TaskStateStore(paths).tasks()
    counts = Counter(task.status.value for task in tasks.values())
    by_status = {status.value: counts.get(status.value, 0) for status in TaskStatus}

    if args.json:
        _emit_json(
            {
                "mode": policy.mode.value,
                "state_dir": str(paths.base_dir),
                "total": len(tasks),
                "by_status": by_status,
            }
        )
        return EXIT_SUCCESS

    print(f"mode: {policy.mode.value}")
    print(f"state: {paths.base_dir}")
    print(f"tasks: {len(tasks)}")
    for status, count in by_status.items():
        if count:
            print(f"  {status}: {count}")
    return EXIT_SUCCESS


def _cmd_policy_check(args: argparse.Namespace) -> int:
    path = Path(args.policy_path)
    try:
        policy = load_policy(path)
    except PolicyLoadError as exc:
        print(f"invalid policy: {path}", file=sys.stderr)
        for issue in exc.issues:
            print(f"- {issue.path}: {issue.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    checks = ", ".join(check.value for check in policy.checks.required) or "none"
    print(f"policy ok: mode={policy.mode.value} required_checks={checks}")
    return EXIT_SUCCESS


def _cmd_config(args: argparse.Namespace) -> int:
    workdir = _workdir(args)
    try:
        loaded = load_config(args.config_path, base_dir=workdir)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc
    print(dump_effective_config(loaded))
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _workdir(args: argparse.Namespace) -> Path:
    candidate = Path(args.workdir).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"workdir is not a directory: {candidate}", exit_code=EXIT_CONFIG_ERROR)
    return candidate


def _load_runtime_config(
    args: argparse.Namespace, workdir: Path, overrides: Mapping[str, object]
) -> RuntimeConfig:
    try:
        loaded = load_config(
            args.config_path,
            base_dir=workdir,
            cli_overrides=overrides,
            require_secret_env_values=True,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc
    return RuntimeConfig.from_mapping(loaded)


def _run_payload(run_id: str, result: LoopResult) -> dict[str, object]:
    return {
        "run_id": run_id,
        "tasks_processed": result.tasks_processed,
        "tasks_completed": result.tasks_completed,
        "tasks_failed": result.tasks_failed,
        "total_iterations": result.total_iterations,
        "total_cost_usd": round(result.total_cost, 6),
        "duration_seconds": round(result.duration_seconds, 3),
        "stopped_by": result.stopped_by.detail if result.stopped_by is not None else None,
        "invariant_passed": result.invariant.passed,
        "violations": list(result.invariant.violations),
    }


__all__ = ["CLIError", "build_parser", "run_cli"]
