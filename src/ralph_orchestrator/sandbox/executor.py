"""
ralph-orchestrator — policy-gated sandboxed executor

Purpose
- Interpose the policy engine on every file and command operation of the
  agent, on top of a buffered ``OverlayFilesystem``.

Functional requirements
- Denied reads and writes raise ``PolicyViolationError`` and are recorded.
- Writes into the orchestrator's own runtime tree raise
  ``SelfModificationError`` unless the self-modification capability is set,
  whatever the policy's allow lists say.
- Denied commands return exit code 126 without running and are recorded.
- Approval-required commands are logged, then executed.
- The violation log is per-instance and append-only.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Final

import structlog

from ralph_orchestrator.sandbox.overlay import (
    EXIT_COMMAND_NOT_ALLOWED,
    BashResult,
    FileChange,
    OverlayFilesystem,
    PendingChanges,
    ResourceUsage,
)
from ralph_orchestrator.security.policy import (
    DEFAULT_PROTECTED_PATHS,
    PolicyMode,
    PolicyViolation,
    RalphPolicy,
    check_command,
    check_file_read,
    check_file_write,
    check_self_modification,
    requires_approval,
)

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ralph_orchestrator.config.schema import RuntimeConfig, SandboxConfig

SELF_MODIFY_ENV: Final = "RALPH_APPROVE_SELF_MODIFY"
PACKAGE_ROOT: Final = str(Path(__file__).resolve().parent.parent)


class PolicyViolationError(PermissionError):
    """Raised by the read/write gates; carries the recorded violation."""

    def __init__(self, message: str, violation: PolicyViolation) -> None:
        super().__init__(message)
        self.violation = violation


class SelfModificationError(PolicyViolationError):
    """Raised when a write targets the orchestrator's own runtime tree."""


def self_modification_approved(environ: dict[str, str] | None = None) -> bool:
    """Read the self-modification capability from the environment."""

    source = os.environ if environ is None else environ
    return source.get(SELF_MODIFY_ENV) == "true"


class Executor:
    """Sandboxed executor owned by exactly one task run."""

    def __init__(
        self,
        workdir: str | Path,
        *,
        policy: RalphPolicy | None = None,
        sandbox: OverlayFilesystem | None = None,
        sandbox_config: SandboxConfig | None = None,
        allow_self_modification: bool | None = None,
        protected_paths: tuple[str, ...] = DEFAULT_PROTECTED_PATHS,
        protected_roots: tuple[str, ...] = (PACKAGE_ROOT,),
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._sandbox = (
            sandbox
            if sandbox is not None
            else OverlayFilesystem(workdir, sandbox_config, logger=self._logger)
        )
        self._workdir = str(self._sandbox.workdir)
        self._policy = policy
        self._violations: list[PolicyViolation] = []
        # read once; later environment changes do not affect this instance
        self._allow_self_modification = (
            self_modification_approved()
            if allow_self_modification is None
            else allow_self_modification
        )
        self._protected_paths = protected_paths
        self._protected_roots = protected_roots

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def policy(self) -> RalphPolicy | None:
        return self._policy

    @policy.setter
    def policy(self, value: RalphPolicy | None) -> None:
        self._policy = value

    @property
    def violations(self) -> tuple[PolicyViolation, ...]:
        return tuple(self._violations)

    @property
    def allow_self_modification(self) -> bool:
        return self._allow_self_modification

    @property
    def sandbox(self) -> OverlayFilesystem:
        return self._sandbox

    async def read_file(self, path: str) -> str:
        if self._policy is not None:
            decision = check_file_read(self._policy, path, self._workdir)
            if not decision.allowed and decision.violation is not None:
                self._record(decision.violation)
                raise PolicyViolationError(
                    f"Policy violation: file read denied — {decision.violation.rule}",
                    decision.violation,
                )
        return self._sandbox.read_file(path)

    async def write_file(self, path: str, content: str) -> None:
        self._gate_write(path)
        self._sandbox.write_file(path, content)

    async def delete_file(self, path: str) -> None:
        self._gate_write(path)
        self._sandbox.delete_file(path)

    async def bash(self, command: str) -> BashResult:
        if self._policy is not None:
            decision = check_command(self._policy, command)
            if not decision.allowed and decision.violation is not None:
                self._record(decision.violation)
                return BashResult(
                    command=command,
                    exit_code=EXIT_COMMAND_NOT_ALLOWED,
                    stdout="",
                    stderr=f"Policy violation: command denied — {decision.violation.rule}",
                )
            approval = requires_approval(self._policy, command)
            if approval.requires_approval and approval.approval_class is not None:
                self._logger.warning(
                    "policy_approval_required",
                    command=command,
                    approval_class=approval.approval_class.value,
                    mode=self._policy.mode.value,
                )
        return await self._sandbox.bash(command)

    async def flush(self) -> tuple[FileChange, ...]:
        return self._sandbox.flush()

    def rollback(self) -> None:
        self._sandbox.rollback()

    def get_pending_changes(self) -> list[str]:
        pending: PendingChanges = self._sandbox.pending_changes()
        return [*pending.writes, *pending.deletes]

    def resource_usage(self) -> ResourceUsage:
        return self._sandbox.resource_usage()

    def _gate_write(self, path: str) -> None:
        if self._policy is not None:
            decision = check_file_write(self._policy, path, self._workdir)
            if not decision.allowed and decision.violation is not None:
                self._record(decision.violation)
                raise PolicyViolationError(
                    f"Policy violation: file write denied — {decision.violation.rule}",
                    decision.violation,
                )
        guard = check_self_modification(
            path,
            self._workdir,
            approved=self._allow_self_modification,
            protected_paths=self._protected_paths,
            protected_roots=self._protected_roots,
        )
        if not guard.allowed and guard.violation is not None:
            self._record(guard.violation)
            raise SelfModificationError(
                f"Policy violation: {guard.violation.rule} ({path})", guard.violation
            )

    def _record(self, violation: PolicyViolation) -> None:
        self._violations.append(violation)
        self._logger.warning(
            "policy_violation",
            violation_type=violation.type.value,
            target=violation.target,
            rule=violation.rule,
            mode=self._policy.mode.value if self._policy is not None else PolicyMode.CORE.value,
        )


def build_executor(
    config: RuntimeConfig,
    workdir: str | Path,
    policy: RalphPolicy | None = None,
    *,
    allow_self_modification: bool | None = None,
) -> Executor:
    """Construct a fresh executor for one task from runtime configuration."""

    return Executor(
        workdir,
        policy=policy,
        sandbox_config=config.sandbox,
        allow_self_modification=allow_self_modification,
        protected_paths=(*DEFAULT_PROTECTED_PATHS, *config.sandbox.protected_paths),
    )


__all__ = [
    "PACKAGE_ROOT",
    "SELF_MODIFY_ENV",
    "Executor",
    "PolicyViolationError",
    "SelfModificationError",
    "build_executor",
    "self_modification_approved",
]
