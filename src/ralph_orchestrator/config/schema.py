"""
ralph-orchestrator — configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules,
  and the frozen ``RuntimeConfig`` view the rest of the runtime consumes.

What should be included in this file
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials are referenced through ``*_env`` keys.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final, Literal, TypedDict

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "policy"),
    ("paths", "agent_instructions"),
    ("state", "dir"),
    ("observability", "log_dir"),
)


class OnFailure(StrEnum):
    STOP = "stop"
    CONTINUE = "continue"


class LoopSection(TypedDict):
    max_iterations_per_task: int
    max_time_per_task_seconds: float
    max_cost_per_task_usd: float
    max_tasks_per_run: int
    max_time_per_run_seconds: float
    max_cost_per_run_usd: float
    on_failure: Literal["stop", "continue"]
    parallelism: int
    dry_run: bool
    task_filter: str


class SandboxSection(TypedDict):
    timeout_seconds: float
    max_commands: int
    max_output_chars: int
    allowed_paths: list[str]
    denied_paths: list[str]
    allowed_commands: list[str]
    denied_commands: list[str]
    protected_paths: list[str]
    cache_reads: bool


class GitSection(TypedDict):
    auto_commit: bool
    commit_prefix: str
    branch_prefix: str


class ChecksSection(TypedDict):
    test: str
    build: str
    lint: str
    typecheck: str


class LLMSection(TypedDict):
    enabled: bool
    provider: Literal["anthropic"]
    model: str
    api_key_env: str
    max_tokens: int
    temperature: float
    input_usd_per_million_tokens: float
    output_usd_per_million_tokens: float


class PathsSection(TypedDict):
    policy: str
    agent_instructions: str


class StateSection(TypedDict):
    dir: str
    scoped: bool


class ObservabilitySection(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_file: bool
    log_to_stdout: bool
    redact_secrets: bool


class RalphConfig(TypedDict):
    loop: LoopSection
    sandbox: SandboxSection
    git: GitSection
    checks: ChecksSection
    llm: LLMSection
    paths: PathsSection
    state: StateSection
    observability: ObservabilitySection


DEFAULT_CONFIG: Final[RalphConfig] = {
    "loop": {
        "max_iterations_per_task": 10,
        "max_time_per_task_seconds": 1800.0,
        "max_cost_per_task_usd": 5.0,
        "max_tasks_per_run": 50,
        "max_time_per_run_seconds": 14400.0,
        "max_cost_per_run_usd": 50.0,
        "on_failure": "continue",
        "parallelism": 1,
        "dry_run": False,
        "task_filter": "",
    },
    "sandbox": {
        "timeout_seconds": 30.0,
        "max_commands": 100,
        "max_output_chars": 65536,
        "allowed_paths": ["."],
        "denied_paths": ["node_modules", ".git/objects"],
        "allowed_commands": [],
        "denied_commands": [],
        "protected_paths": [],
        "cache_reads": True,
    },
    "git": {
        "auto_commit": True,
        "commit_prefix": "RALPH-",
        "branch_prefix": "ralph/",
    },
    "checks": {
        "test": "npm test",
        "build": "npm run build",
        "lint": "npm run lint",
        "typecheck": "npm run typecheck",
    },
    "llm": {
        "enabled": False,
        "provider": "anthropic",
        "model": "claude-sonnet-4-20250514",
        "api_key_env": "ANTHROPIC_API_KEY",
        "max_tokens": 4096,
        "temperature": 0.0,
        "input_usd_per_million_tokens": 3.0,
        "output_usd_per_million_tokens": 15.0,
    },
    "paths": {
        "policy": "ralph.policy.json",
        "agent_instructions": "agents/task-discovery.md",
    },
    "state": {
        "dir": "state",
        "scoped": False,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs",
        "log_to_file": False,
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


# --- frozen runtime view -----------------------------------------------------


@dataclass(frozen=True, slots=True)
class LoopConfig:
    max_iterations_per_task: int = 10
    max_time_per_task_seconds: float = 1800.0
    max_cost_per_task_usd: float = 5.0
    max_tasks_per_run: int = 50
    max_time_per_run_seconds: float = 14400.0
    max_cost_per_run_usd: float = 50.0
    on_failure: OnFailure = OnFailure.CONTINUE
    parallelism: int = 1
    dry_run: bool = False
    task_filter: str | None = None


@dataclass(frozen=True, slots=True)
class SandboxConfig:
    timeout_seconds: float | None = 30.0
    max_commands: int = 100
    max_output_chars: int | None = 65536
    allowed_paths: tuple[str, ...] = (".",)
    denied_paths: tuple[str, ...] = ("node_modules", ".git/objects")
    allowed_commands: tuple[str, ...] = ()
    denied_commands: tuple[str, ...] = ()
    protected_paths: tuple[str, ...] = ()
    cache_reads: bool = True
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GitConfig:
    auto_commit: bool = True
    commit_prefix: str = "RALPH-"
    branch_prefix: str = "ralph/"


@dataclass(frozen=True, slots=True)
class ChecksConfig:
    test: str = "npm test"
    build: str = "npm run build"
    lint: str = "npm run lint"
    typecheck: str = "npm run typecheck"

    def as_mapping(self) -> dict[str, str]:
        commands = {
            "test": self.test,
            "build": self.build,
            "lint": self.lint,
            "typecheck": self.typecheck,
        }
        return {name: command for name, command in commands.items() if command}


@dataclass(frozen=True, slots=True)
class LLMConfig:
    enabled: bool = False
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = 4096
    temperature: float = 0.0
    input_usd_per_million_tokens: float = 3.0
    output_usd_per_million_tokens: float = 15.0


@dataclass(frozen=True, slots=True)
class PathsConfig:
    policy: str = "ralph.policy.json"
    agent_instructions: str = "agents/task-discovery.md"


@dataclass(frozen=True, slots=True)
class StateConfig:
    dir: str = "state"
    scoped: bool = False


@dataclass(frozen=True, slots=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = False
    log_to_stdout: bool = False
    redact_secrets: bool = True


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Immutable runtime configuration handed to the loop and its components."""

    loop: LoopConfig = field(default_factory=LoopConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    git: GitConfig = field(default_factory=GitConfig)
    checks: ChecksConfig = field(default_factory=ChecksConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    state: StateConfig = field(default_factory=StateConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> RuntimeConfig:
        """Build the runtime view from a validated config mapping."""

        loop = config["loop"]
        sandbox = config["sandbox"]
        return cls(
            loop=LoopConfig(
                max_iterations_per_task=loop["max_iterations_per_task"],
                max_time_per_task_seconds=loop["max_time_per_task_seconds"],
                max_cost_per_task_usd=loop["max_cost_per_task_usd"],
                max_tasks_per_run=loop["max_tasks_per_run"],
                max_time_per_run_seconds=loop["max_time_per_run_seconds"],
                max_cost_per_run_usd=loop["max_cost_per_run_usd"],
                on_failure=OnFailure(loop["on_failure"]),
                parallelism=loop["parallelism"],
                dry_run=loop["dry_run"],
                task_filter=loop["task_filter"] or None,
            ),
            sandbox=SandboxConfig(
                timeout_seconds=sandbox["timeout_seconds"],
                max_commands=sandbox["max_commands"],
                max_output_chars=sandbox["max_output_chars"],
                allowed_paths=tuple(sandbox["allowed_paths"]),
                denied_paths=tuple(sandbox["denied_paths"]),
                allowed_commands=tuple(sandbox["allowed_commands"]),
                denied_commands=tuple(sandbox["denied_commands"]),
                protected_paths=tuple(sandbox["protected_paths"]),
                cache_reads=sandbox["cache_reads"],
            ),
            git=GitConfig(**config["git"]),
            checks=ChecksConfig(**config["checks"]),
            llm=LLMConfig(**config["llm"]),
            paths=PathsConfig(**config["paths"]),
            state=StateConfig(**config["state"]),
            observability=ObservabilityConfig(**config["observability"]),
        )


def default_config() -> RalphConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    sections = {
        "loop": _validate_loop,
        "sandbox": _validate_sandbox,
        "git": _validate_git,
        "checks": _validate_checks,
        "llm": _validate_llm,
        "paths": _validate_paths,
        "state": _validate_state,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(root, set(sections), "", issues)
    _require_keys(root, set(sections), "", issues)

    out: dict[str, Any] = {}
    for key, validator in sections.items():
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is not None:
            out[key] = validator(section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


# --- sections ----------------------------------------------------------------


def _validate_loop(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["loop"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key, minimum in (
        ("max_iterations_per_task", 1),
        ("max_tasks_per_run", 1),
        ("parallelism", 1),
    ):
        if key in payload:
            _store(out, key, _as_int(payload[key], _join(path, key), issues, minimum=minimum))
    for key in (
        "max_time_per_task_seconds",
        "max_cost_per_task_usd",
        "max_time_per_run_seconds",
        "max_cost_per_run_usd",
    ):
        if key in payload:
            _store(out, key, _as_float(payload[key], _join(path, key), issues, minimum=0.0))
    if "on_failure" in payload:
        parsed = _as_enum(
            payload["on_failure"],
            _join(path, "on_failure"),
            issues,
            allowed_values=tuple(item.value for item in OnFailure),
        )
        _store(out, "on_failure", parsed)
    if "dry_run" in payload:
        _store(out, "dry_run", _as_bool(payload["dry_run"], _join(path, "dry_run"), issues))
    if "task_filter" in payload:
        _store(
            out,
            "task_filter",
            _as_text(payload["task_filter"], _join(path, "task_filter"), issues),
        )
    return out


def _validate_sandbox(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["sandbox"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "timeout_seconds" in payload:
        parsed = _as_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues, minimum=0.001
        )
        _store(out, "timeout_seconds", parsed)
    for key in ("max_commands", "max_output_chars"):
        if key in payload:
            _store(out, key, _as_int(payload[key], _join(path, key), issues, minimum=1))
    for key in (
        "allowed_paths",
        "denied_paths",
        "allowed_commands",
        "denied_commands",
        "protected_paths",
    ):
        if key in payload:
            _store(out, key, _as_str_list(payload[key], _join(path, key), issues))
    if "cache_reads" in payload:
        parsed_cache = _as_bool(payload["cache_reads"], _join(path, "cache_reads"), issues)
        _store(out, "cache_reads", parsed_cache)
    return out


def _validate_git(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["git"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "auto_commit" in payload:
        parsed_auto = _as_bool(payload["auto_commit"], _join(path, "auto_commit"), issues)
        _store(out, "auto_commit", parsed_auto)
    for key in ("commit_prefix", "branch_prefix"):
        if key in payload:
            _store(out, key, _as_text(payload[key], _join(path, key), issues))
    return out


def _validate_checks(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["checks"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            _store(out, key, _as_text(payload[key], _join(path, key), issues))
    return out


def _validate_llm(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["llm"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "enabled" in payload:
        _store(out, "enabled", _as_bool(payload["enabled"], _join(path, "enabled"), issues))
    if "provider" in payload:
        parsed = _as_enum(
            payload["provider"], _join(path, "provider"), issues, allowed_values=("anthropic",)
        )
        _store(out, "provider", parsed)
    if "model" in payload:
        _store(out, "model", _as_str(payload["model"], _join(path, "model"), issues))
    if "api_key_env" in payload:
        _store(
            out,
            "api_key_env",
            _as_env_name(payload["api_key_env"], _join(path, "api_key_env"), issues),
        )
    if "max_tokens" in payload:
        parsed_tokens = _as_int(
            payload["max_tokens"], _join(path, "max_tokens"), issues, minimum=1
        )
        _store(out, "max_tokens", parsed_tokens)
    for key in ("temperature", "input_usd_per_million_tokens", "output_usd_per_million_tokens"):
        if key in payload:
            _store(out, key, _as_float(payload[key], _join(path, key), issues, minimum=0.0))
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["paths"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            _store(out, key, _as_path_text(payload[key], _join(path, key), issues))
    return out


def _validate_state(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["state"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "dir" in payload:
        _store(out, "dir", _as_path_text(payload["dir"], _join(path, "dir"), issues))
    if "scoped" in payload:
        _store(out, "scoped", _as_bool(payload["scoped"], _join(path, "scoped"), issues))
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        _store(out, "log_level", parsed)
    if "log_dir" in payload:
        _store(out, "log_dir", _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues))
    for key in ("log_to_file", "log_to_stdout", "redact_secrets"):
        if key in payload:
            _store(out, key, _as_bool(payload[key], _join(path, key), issues))
    return out


# --- primitive validators ----------------------------------------------------


def _store(out: dict[str, Any], key: str, value: object | None) -> None:
    if value is not None:
        out[key] = value


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    return value.strip()


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: ANTHROPIC_API_KEY)")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ChecksConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "GitConfig",
    "LLMConfig",
    "LoopConfig",
    "ObservabilityConfig",
    "OnFailure",
    "PathsConfig",
    "RalphConfig",
    "RuntimeConfig",
    "SandboxConfig",
    "StateConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
