"""
ralph-orchestrator — policy engine

Purpose
- Pure allow/deny decisions over a declarative ``RalphPolicy`` for file reads,
  file writes and shell commands, plus advisory approval classification.

Functional requirements
- ``delivery`` mode is default-deny: a target must match an allow rule and no
  deny rule. ``core`` mode is default-allow: only deny rules apply.
- Deny rules override allow rules in both modes.
- File rules are directory-prefix rules relative to the workdir; command allow
  rules match as a prefix and command deny rules match anywhere.
- A built-in destructive command deny list is enforced in every mode.
- Approval classes never deny anything.

Non-functional requirements
- No I/O and no state; every function is safe to call from any component.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import PurePosixPath
from typing import Final

from ralph_orchestrator.domain.models import JSONValue, utc_now_iso


class PolicyMode(StrEnum):
    DELIVERY = "delivery"
    CORE = "core"


class ApprovalClass(StrEnum):
    DESTRUCTIVE_OPS = "destructive_ops"
    DEPENDENCY_CHANGES = "dependency_changes"
    PRODUCTION_IMPACTING_EDITS = "production_impacting_edits"


class CheckType(StrEnum):
    TEST = "test"
    BUILD = "build"
    LINT = "lint"
    TYPECHECK = "typecheck"


class ViolationType(StrEnum):
    FILE_READ_DENIED = "file_read_denied"
    FILE_WRITE_DENIED = "file_write_denied"
    COMMAND_DENIED = "command_denied"
    APPROVAL_REQUIRED = "approval_required"


DEFAULT_COMMAND_DENY: Final[tuple[str, ...]] = (
    "rm -rf /",
    "sudo",
    "mkfs",
    ":(){",
    "dd if=/dev/zero",
    "git push --force",
)

DEFAULT_PROTECTED_PATHS: Final[tuple[str, ...]] = (
    "runtime",
    "types",
    "src/ralph_orchestrator",
    "ralph.toml",
    "ralph.policy.json",
    "ralph.policy.yaml",
)

SELF_MODIFICATION_RULE: Final = "self-modification blocked"

_ACTION_PATTERNS: Final[dict[ApprovalClass, tuple[re.Pattern[str], ...]]] = {
    ApprovalClass.DESTRUCTIVE_OPS: (
        re.compile(r"\brm\s+(-[rf]+\s+)?"),
        re.compile(r"\bgit\s+(reset|clean|checkout\s+--)\b"),
        re.compile(r"\bgit\s+push\s+--force\b"),
        re.compile(r"\bdrop\s+(table|database)\b", re.IGNORECASE),
        re.compile(r"\btruncate\b", re.IGNORECASE),
        re.compile(r"\bdelete\s+from\b", re.IGNORECASE),
    ),
    ApprovalClass.DEPENDENCY_CHANGES: (
        re.compile(r"\bnpm\s+(install|i|add|remove|uninstall|update)\b"),
        re.compile(r"\byarn\s+(add|remove|upgrade)\b"),
        re.compile(r"\bpnpm\s+(add|remove|update)\b"),
        re.compile(r"\bpip\s+(install|uninstall)\b"),
        re.compile(r"\bcargo\s+(add|remove)\b"),
        re.compile(r"package\.json$"),
        re.compile(r"package-lock\.json$"),
        re.compile(r"yarn\.lock$"),
        re.compile(r"pnpm-lock\.yaml$"),
    ),
    ApprovalClass.PRODUCTION_IMPACTING_EDITS: (
        re.compile(r"\b(deploy|release|publish)\b", re.IGNORECASE),
        re.compile(r"Dockerfile"),
        re.compile(r"docker-compose"),
        re.compile(r"\.github/workflows"),
        re.compile(r"\.env\.production"),
        re.compile(r"infrastructure/"),
        re.compile(r"terraform/"),
        re.compile(r"k8s/"),
        re.compile(r"kubernetes/"),
    ),
}


@dataclass(frozen=True, slots=True)
class FileRules:
    allow_read: tuple[str, ...] = (".",)
    allow_write: tuple[str, ...] = (".",)
    deny_read: tuple[str, ...] = ()
    deny_write: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CommandRules:
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ApprovalRules:
    required_for: tuple[ApprovalClass, ...] = ()
    require_reason: bool = False


@dataclass(frozen=True, slots=True)
class CheckRules:
    required: tuple[CheckType, ...] = ()
    rollback_on_fail: bool = False


@dataclass(frozen=True, slots=True)
class RalphPolicy:
    """Immutable allow/deny ruleset; executors hold a swappable reference to one."""

    version: int = 1
    mode: PolicyMode = PolicyMode.CORE
    files: FileRules = field(default_factory=FileRules)
    commands: CommandRules = field(default_factory=CommandRules)
    approval: ApprovalRules = field(default_factory=ApprovalRules)
    checks: CheckRules = field(default_factory=CheckRules)


@dataclass(frozen=True, slots=True)
class PolicyViolation:
    type: ViolationType
    target: str
    rule: str
    detail: str = ""
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "type": self.type.value,
            "target": self.target,
            "rule": self.rule,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class PolicyCheckResult:
    allowed: bool
    violation: PolicyViolation | None = None


@dataclass(frozen=True, slots=True)
class ApprovalCheck:
    requires_approval: bool
    approval_class: ApprovalClass | None = None
    violation: PolicyViolation | None = None


def default_policy() -> RalphPolicy:
    """Permissive baseline: everything allowed except the built-in destructive commands."""

    return RalphPolicy(
        version=1,
        mode=PolicyMode.CORE,
        files=FileRules(allow_read=(".",), allow_write=(".",), deny_write=(".git/objects",)),
        commands=CommandRules(allow=(), deny=DEFAULT_COMMAND_DENY),
    )


def to_relative_path(path: str, workdir: str) -> str:
    """Express ``path`` relative to ``workdir`` using POSIX separators."""

    if os.path.isabs(path):
        relative = os.path.relpath(os.path.normpath(path), os.path.normpath(workdir))
    else:
        relative = os.path.normpath(path)
    return PurePosixPath(relative.replace(os.sep, "/")).as_posix()


def path_matches(relative_path: str, pattern: str) -> bool:
    """Directory-prefix match: ``src`` covers ``src`` and ``src/**``; ``.`` covers the workdir."""

    normalized = pattern.rstrip("/") or "."
    if normalized in {".", "./"}:
        return not _escapes_workdir(relative_path)
    if normalized.startswith("./"):
        normalized = normalized[2:]
    if relative_path == normalized or relative_path.startswith(normalized + "/"):
        return True
    # dotfile rules such as ``.env`` also cover ``.env.local``
    return PurePosixPath(normalized).name.startswith(".") and relative_path.startswith(
        normalized + "."
    )


def check_file_read(policy: RalphPolicy, path: str, workdir: str) -> PolicyCheckResult:
    relative = to_relative_path(path, workdir)
    for rule in policy.files.deny_read:
        if path_matches(relative, rule):
            return _denied(ViolationType.FILE_READ_DENIED, path, f"denyRead: {rule}")
    if policy.mode is PolicyMode.CORE:
        return PolicyCheckResult(allowed=True)
    if any(path_matches(relative, rule) for rule in policy.files.allow_read):
        return PolicyCheckResult(allowed=True)
    return _denied(
        ViolationType.FILE_READ_DENIED, path, "not in allowRead list (delivery mode)"
    )


def check_file_write(policy: RalphPolicy, path: str, workdir: str) -> PolicyCheckResult:
    relative = to_relative_path(path, workdir)
    for rule in policy.files.deny_write:
        if path_matches(relative, rule):
            return _denied(ViolationType.FILE_WRITE_DENIED, path, f"denyWrite: {rule}")
    if policy.mode is PolicyMode.CORE:
        return PolicyCheckResult(allowed=True)
    if any(path_matches(relative, rule) for rule in policy.files.allow_write):
        return PolicyCheckResult(allowed=True)
    return _denied(
        ViolationType.FILE_WRITE_DENIED, path, "not in allowWrite list (delivery mode)"
    )


def check_command(policy: RalphPolicy, command: str) -> PolicyCheckResult:
    normalized = command.strip()
    for rule in (*DEFAULT_COMMAND_DENY, *policy.commands.deny):
        if rule and rule in normalized:
            return _denied(ViolationType.COMMAND_DENIED, command, f"deny: {rule}")
    if policy.mode is PolicyMode.CORE:
        return PolicyCheckResult(allowed=True)
    for rule in policy.commands.allow:
        if rule and normalized.startswith(rule):
            return PolicyCheckResult(allowed=True)
    return _denied(ViolationType.COMMAND_DENIED, command, "not in allow list (delivery mode)")


def check_self_modification(
    path: str,
    workdir: str,
    *,
    approved: bool,
    protected_paths: tuple[str, ...] = DEFAULT_PROTECTED_PATHS,
    protected_roots: tuple[str, ...] = (),
) -> PolicyCheckResult:
    """
    Deny writes into the orchestrator's own runtime tree unless ``approved``.

    ``protected_paths`` are workdir-relative prefixes; ``protected_roots`` are
    absolute directories (the installed package itself). The allow lists of a
    policy play no part in this decision.
    """

    if approved:
        return PolicyCheckResult(allowed=True)
    relative = to_relative_path(path, workdir)
    hit = next((rule for rule in protected_paths if _prefix_match(relative, rule)), None)
    if hit is None:
        absolute = os.path.realpath(os.path.join(workdir, path))
        hit = next(
            (root for root in protected_roots if _is_under(absolute, os.path.realpath(root))),
            None,
        )
    if hit is None:
        return PolicyCheckResult(allowed=True)
    return _denied(
        ViolationType.FILE_WRITE_DENIED,
        path,
        f"{SELF_MODIFICATION_RULE}: {hit}",
        detail="set RALPH_APPROVE_SELF_MODIFY=true to allow writes to the orchestrator runtime",
    )


def classify_action(action: str) -> tuple[ApprovalClass, ...]:
    """Return every approval class whose patterns match ``action`` (a command or a path)."""

    return tuple(
        approval_class
        for approval_class, patterns in _ACTION_PATTERNS.items()
        if any(pattern.search(action) for pattern in patterns)
    )


def requires_approval(policy: RalphPolicy, action: str) -> ApprovalCheck:
    """Advisory only: report the first configured approval class ``action`` falls into."""

    if not policy.approval.required_for:
        return ApprovalCheck(requires_approval=False)
    for approval_class in classify_action(action):
        if approval_class in policy.approval.required_for:
            return ApprovalCheck(
                requires_approval=True,
                approval_class=approval_class,
                violation=PolicyViolation(
                    type=ViolationType.APPROVAL_REQUIRED,
                    target=action,
                    rule=f"approval required: {approval_class.value}",
                ),
            )
    return ApprovalCheck(requires_approval=False)


def _denied(
    violation_type: ViolationType, target: str, rule: str, *, detail: str = ""
) -> PolicyCheckResult:
    return PolicyCheckResult(
        allowed=False,
        violation=PolicyViolation(type=violation_type, target=target, rule=rule, detail=detail),
    )


def _escapes_workdir(relative_path: str) -> bool:
    return relative_path == ".." or relative_path.startswith("../") or relative_path.startswith("/")


def _prefix_match(relative_path: str, rule: str) -> bool:
    normalized = rule.strip("/")
    return relative_path == normalized or relative_path.startswith(normalized + "/")


def _is_under(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


__all__ = [
    "DEFAULT_COMMAND_DENY",
    "DEFAULT_PROTECTED_PATHS",
    "SELF_MODIFICATION_RULE",
    "ApprovalCheck",
    "ApprovalClass",
    "ApprovalRules",
    "CheckRules",
    "CheckType",
    "CommandRules",
    "FileRules",
    "PolicyCheckResult",
    "PolicyMode",
    "PolicyViolation",
    "RalphPolicy",
    "ViolationType",
    "check_command",
    "check_file_read",
    "check_file_write",
    "check_self_modification",
    "classify_action",
    "default_policy",
    "path_matches",
    "requires_approval",
    "to_relative_path",
]
