"""
ralph-orchestrator — policy file loading and validation

Purpose
- Read ``ralph.policy.json`` / ``ralph.policy.yaml`` files into immutable
  ``RalphPolicy`` values, reporting every structural problem at once.

Functional requirements
- JSON for ``.json`` files, YAML (PyYAML ``safe_load``) for ``.yaml``/``.yml``.
- Wire keys are camelCase (``allowRead``, ``requiredFor``, ``rollbackOnFail``).
- ``load_policy_or_default`` never raises; it logs and falls back to
  ``default_policy()``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml

from ralph_orchestrator.domain.models import JSONValue
from ralph_orchestrator.security.policy import (
    ApprovalClass,
    ApprovalRules,
    CheckRules,
    CheckType,
    CommandRules,
    FileRules,
    PolicyMode,
    RalphPolicy,
    default_policy,
)

_FILE_KEYS = ("allowRead", "allowWrite", "denyRead", "denyWrite")
_COMMAND_KEYS = ("allow", "deny")
_TOP_LEVEL_KEYS = frozenset({"version", "mode", "files", "commands", "approval", "checks"})
_YAML_SUFFIXES = frozenset({".yaml", ".yml"})

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PolicyValidationIssue:
    """Single structured policy validation failure."""

    path: str
    message: str


class PolicyLoadError(ValueError):
    """Raised when a policy file cannot be read, parsed or validated."""

    def __init__(self, source: Path, issues: Sequence[PolicyValidationIssue]) -> None:
        self.source = source
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid policy {source}:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[PolicyValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(PolicyValidationIssue(path=path, message=message))

    def items(self) -> tuple[PolicyValidationIssue, ...]:
        return tuple(self._items)


def validate_policy(payload: object) -> tuple[PolicyValidationIssue, ...]:
    """Return every structural issue in a raw policy payload (empty when valid)."""

    issues = _IssueCollector()
    if not isinstance(payload, Mapping):
        issues.add("$", f"expected object, got {type(payload).__name__}")
        return issues.items()

    for key in sorted(str(item) for item in payload if item not in _TOP_LEVEL_KEYS):
        issues.add(key, "unknown key")

    version = payload.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        issues.add("version", "must be a positive integer")

    mode = payload.get("mode")
    if mode not in {item.value for item in PolicyMode}:
        issues.add("mode", 'must be "delivery" or "core"')

    files = payload.get("files")
    if not isinstance(files, Mapping):
        issues.add("files", "must be an object")
    else:
        for key in _FILE_KEYS:
            _check_str_list(files.get(key), f"files.{key}", issues)

    commands = payload.get("commands")
    if not isinstance(commands, Mapping):
        issues.add("commands", "must be an object")
    else:
        for key in _COMMAND_KEYS:
            _check_str_list(commands.get(key), f"commands.{key}", issues)

    approval = payload.get("approval", {})
    if not isinstance(approval, Mapping):
        issues.add("approval", "must be an object")
    else:
        allowed_classes = {item.value for item in ApprovalClass}
        required_for = approval.get("requiredFor", [])
        if _check_str_list(required_for, "approval.requiredFor", issues):
            for index, item in enumerate(required_for):
                if item not in allowed_classes:
                    issues.add(f"approval.requiredFor[{index}]", f"invalid approval class {item!r}")
        if not isinstance(approval.get("requireReason", False), bool):
            issues.add("approval.requireReason", "must be a boolean")

    checks = payload.get("checks", {})
    if not isinstance(checks, Mapping):
        issues.add("checks", "must be an object")
    else:
        allowed_checks = {item.value for item in CheckType}
        required = checks.get("required", [])
        if _check_str_list(required, "checks.required", issues):
            for index, item in enumerate(required):
                if item not in allowed_checks:
                    issues.add(f"checks.required[{index}]", f"invalid check type {item!r}")
        if not isinstance(checks.get("rollbackOnFail", False), bool):
            issues.add("checks.rollbackOnFail", "must be a boolean")

    return issues.items()


def policy_from_dict(payload: Mapping[str, Any]) -> RalphPolicy:
    """Build a policy from an already validated payload."""

    files = payload["files"]
    commands = payload["commands"]
    approval = payload.get("approval", {})
    checks = payload.get("checks", {})
    return RalphPolicy(
        version=int(payload["version"]),
        mode=PolicyMode(payload["mode"]),
        files=FileRules(
            allow_read=tuple(files["allowRead"]),
            allow_write=tuple(files["allowWrite"]),
            deny_read=tuple(files["denyRead"]),
            deny_write=tuple(files["denyWrite"]),
        ),
        commands=CommandRules(allow=tuple(commands["allow"]), deny=tuple(commands["deny"])),
        approval=ApprovalRules(
            required_for=tuple(ApprovalClass(item) for item in approval.get("requiredFor", [])),
            require_reason=bool(approval.get("requireReason", False)),
        ),
        checks=CheckRules(
            required=tuple(CheckType(item) for item in checks.get("required", [])),
            rollback_on_fail=bool(checks.get("rollbackOnFail", False)),
        ),
    )


def policy_to_dict(policy: RalphPolicy) -> dict[str, JSONValue]:
    return {
        "version": policy.version,
        "mode": policy.mode.value,
        "files": {
            "allowRead": list(policy.files.allow_read),
            "allowWrite": list(policy.files.allow_write),
            "denyRead": list(policy.files.deny_read),
            "denyWrite": list(policy.files.deny_write),
        },
        "commands": {"allow": list(policy.commands.allow), "deny": list(policy.commands.deny)},
        "approval": {
            "requiredFor": [item.value for item in policy.approval.required_for],
            "requireReason": policy.approval.require_reason,
        },
        "checks": {
            "required": [item.value for item in policy.checks.required],
            "rollbackOnFail": policy.checks.rollback_on_fail,
        },
    }


def load_policy(path: str | Path) -> RalphPolicy:
    """Load and validate a policy file; raise ``PolicyLoadError`` on any problem."""

    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise PolicyLoadError(source, [PolicyValidationIssue("$", f"cannot read: {exc}")]) from exc

    try:
        if source.suffix.lower() in _YAML_SUFFIXES:
            payload = yaml.safe_load(text)
        else:
            payload = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise PolicyLoadError(source, [PolicyValidationIssue("$", f"cannot parse: {exc}")]) from exc

    issues = validate_policy(payload)
    if issues:
        raise PolicyLoadError(source, issues)
    return policy_from_dict(payload)


def load_policy_or_default(path: str | Path | None) -> RalphPolicy:
    """Load ``path`` when it exists and is valid, otherwise return ``default_policy()``."""

    if path is None or not Path(path).is_file():
        return default_policy()
    try:
        return load_policy(path)
    except PolicyLoadError as exc:
        logger.warning(
            "policy_load_failed",
            path=str(path),
            issues=[f"{item.path}: {item.message}" for item in exc.issues],
        )
        return default_policy()


def _check_str_list(value: object, path: str, issues: _IssueCollector) -> bool:
    if not isinstance(value, list):
        issues.add(path, "must be an array")
        return False
    ok = True
    for index, item in enumerate(value):
        if not isinstance(item, str):
            issues.add(f"{path}[{index}]", "must be a string")
            ok = False
    return ok


__all__ = [
    "PolicyLoadError",
    "PolicyValidationIssue",
    "load_policy",
    "load_policy_or_default",
    "policy_from_dict",
    "policy_to_dict",
    "validate_policy",
]
