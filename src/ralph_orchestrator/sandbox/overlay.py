"""
ralph-orchestrator — buffered overlay filesystem and command runner

Purpose
- Buffer file writes and deletes in memory until ``flush()`` and run shell
  commands in the workdir with a per-command timeout and a command budget.

Functional requirements
- Reads see pending writes first, fail for pending deletes, then fall back to
  disk (optionally cached by mtime).
- ``flush()`` is all-or-nothing: every pending write is staged beside its
  target before any target is replaced; a staging failure leaves the real
  filesystem and the buffer untouched.
- ``rollback()`` discards the buffer and never touches disk.
- Commands run with ``RALPH_SANDBOX=true`` and ``RALPH_WORKDIR`` in the
  environment. They observe the real filesystem, not the buffer.

Non-functional requirements
- No OS-level isolation; this is a decision and buffering layer only.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import time
from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ralph_orchestrator.config.schema import SandboxConfig
from ralph_orchestrator.domain.models import JSONValue, utc_now_iso
from ralph_orchestrator.security.policy import path_matches, to_relative_path
from ralph_orchestrator.utils.fs import StagedWrite, commit_staged, discard_staged, stage_write

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

EXIT_COMMAND_NOT_ALLOWED = 126
EXIT_TIMEOUT = 124
EXIT_LIMIT_EXCEEDED = 1


class SandboxError(RuntimeError):
    """Base class for overlay failures."""


class SandboxFileNotFoundError(SandboxError, FileNotFoundError):
    """Raised when a path is absent from both the buffer and disk."""


class SandboxPathError(SandboxError, PermissionError):
    """Raised when a path falls outside the sandbox's allowed paths."""


class FlushError(SandboxError):
    """Raised when buffered changes could not be staged; nothing was written."""


class ChangeType(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class FileChange:
    path: str
    type: ChangeType
    before: str | None
    after: str | None
    hash: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"path": self.path, "type": self.type.value, "hash": self.hash}


@dataclass(frozen=True, slots=True)
class BashResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int = 0
    timed_out: bool = False
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True, slots=True)
class PendingChanges:
    writes: tuple[str, ...]
    deletes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ResourceUsage:
    commands_executed: int = 0
    files_read: int = 0
    files_written: int = 0
    files_deleted: int = 0
    bytes_written: int = 0


class OverlayFilesystem:
    """Buffered view of one workdir; exclusively owned by a single executor."""

    def __init__(
        self,
        workdir: str | Path,
        config: SandboxConfig | None = None,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._workdir = Path(workdir).resolve()
        self._config = config if config is not None else SandboxConfig()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._pending_writes: dict[str, str] = {}
        self._pending_deletes: set[str] = set()
        self._read_cache: dict[str, tuple[int, str]] = {}
        self._execution_log: list[BashResult] = []
        self._commands_executed = 0
        self._files_read = 0
        self._files_written = 0
        self._files_deleted = 0
        self._bytes_written = 0

    @property
    def workdir(self) -> Path:
        return self._workdir

    @property
    def config(self) -> SandboxConfig:
        return self._config

    # --- files -------------------------------------------------------------

    def read_file(self, path: str) -> str:
        key = self._resolve(path)
        if key in self._pending_deletes:
            raise SandboxFileNotFoundError(f"File not found (pending delete): {path}")
        if key in self._pending_writes:
            self._files_read += 1
            return self._pending_writes[key]

        target = Path(key)
        try:
            mtime_ns = target.stat().st_mtime_ns
        except FileNotFoundError as exc:
            raise SandboxFileNotFoundError(f"File not found: {path}") from exc

        if self._config.cache_reads:
            cached = self._read_cache.get(key)
            if cached is not None and cached[0] == mtime_ns:
                self._files_read += 1
                return cached[1]

        content = target.read_text(encoding="utf-8")
        if self._config.cache_reads:
            self._read_cache[key] = (mtime_ns, content)
        self._files_read += 1
        return content

    def write_file(self, path: str, content: str) -> None:
        if not self.is_path_allowed(path):
            raise SandboxPathError(f"Write not allowed to path: {path}")
        key = self._resolve(path)
        self._pending_deletes.discard(key)
        self._pending_writes[key] = content
        self._files_written += 1
        self._bytes_written += len(content.encode("utf-8"))

    def delete_file(self, path: str) -> None:
        if not self.is_path_allowed(path):
            raise SandboxPathError(f"Delete not allowed to path: {path}")
        key = self._resolve(path)
        self._pending_writes.pop(key, None)
        self._pending_deletes.add(key)
        self._files_deleted += 1

    def exists(self, path: str) -> bool:
        key = self._resolve(path)
        if key in self._pending_deletes:
            return False
        if key in self._pending_writes:
            return True
        return Path(key).exists()

    def is_path_allowed(self, path: str) -> bool:
        relative = to_relative_path(self._resolve(path), str(self._workdir))
        if any(path_matches(relative, rule) for rule in self._config.denied_paths):
            return False
        return any(path_matches(relative, rule) for rule in self._config.allowed_paths)

    # --- buffer lifecycle --------------------------------------------------

    def pending_changes(self) -> PendingChanges:
        return PendingChanges(
            writes=tuple(self._relative(key) for key in self._pending_writes),
            deletes=tuple(self._relative(key) for key in sorted(self._pending_deletes)),
        )

    def has_pending_changes(self) -> bool:
        return bool(self._pending_writes or self._pending_deletes)

    def flush(self) -> tuple[FileChange, ...]:
        """Apply every buffered change to disk, or none of them."""

        if not self.has_pending_changes():
            return ()

        changes: list[FileChange] = []
        staged: list[StagedWrite] = []
        deletions: list[Path] = []
        try:
            for key, content in self._pending_writes.items():
                target = Path(key)
                if target.is_dir():
                    raise IsADirectoryError(f"cannot overwrite directory: {self._relative(key)}")
                before = _read_disk_or_none(target)
                staged.append(stage_write(key, content))
                changes.append(
                    FileChange(
                        path=self._relative(key),
                        type=ChangeType.CREATED if before is None else ChangeType.MODIFIED,
                        before=before,
                        after=content,
                        hash=_short_hash(content),
                    )
                )
            for key in sorted(self._pending_deletes):
                target = Path(key)
                if target.is_dir():
                    raise IsADirectoryError(f"cannot delete directory: {self._relative(key)}")
                before = _read_disk_or_none(target)
                if before is None:
                    continue
                deletions.append(target)
                changes.append(
                    FileChange(
                        path=self._relative(key),
                        type=ChangeType.DELETED,
                        before=before,
                        after=None,
                        hash=_short_hash(""),
                    )
                )
        except OSError as exc:
            discard_staged(staged)
            self._logger.error("overlay_flush_aborted", error=str(exc), staged=len(staged))
            raise FlushError(f"flush aborted before any change was applied: {exc}") from exc

        try:
            commit_staged(staged)
            for target in deletions:
                target.unlink(missing_ok=True)
        except OSError as exc:
            discard_staged(staged)
            self._logger.error("overlay_flush_failed", error=str(exc))
            raise FlushError(f"flush failed while applying changes: {exc}") from exc

        self._pending_writes.clear()
        self._pending_deletes.clear()
        self._read_cache.clear()
        self._logger.info("overlay_flushed", changes=len(changes))
        return tuple(changes)

    def rollback(self) -> None:
        discarded = len(self._pending_writes) + len(self._pending_deletes)
        self._pending_writes.clear()
        self._pending_deletes.clear()
        if discarded:
            self._logger.info("overlay_rolled_back", discarded=discarded)

    def reset(self) -> None:
        self.rollback()
        self._read_cache.clear()
        self._execution_log.clear()
        self._commands_executed = 0
        self._files_read = 0
        self._files_written = 0
        self._files_deleted = 0
        self._bytes_written = 0

    # --- commands ----------------------------------------------------------

    def is_command_allowed(self, command: str) -> bool:
        normalized = command.strip()
        if any(rule and rule in normalized for rule in self._config.denied_commands):
            return False
        if not self._config.allowed_commands:
            return True
        return any(normalized.startswith(rule) for rule in self._config.allowed_commands)

    async def bash(self, command: str) -> BashResult:
        if not self.is_command_allowed(command):
            return self._record(
                BashResult(command, EXIT_COMMAND_NOT_ALLOWED, "", f"Command not allowed: {command}")
            )
        if self._commands_executed >= self._config.max_commands:
            return self._record(
                BashResult(
                    command,
                    EXIT_LIMIT_EXCEEDED,
                    "",
                    f"Command limit exceeded ({self._config.max_commands})",
                )
            )
        self._commands_executed += 1

        env = dict(os.environ)
        env.update(self._config.env)
        env["RALPH_SANDBOX"] = "true"
        env["RALPH_WORKDIR"] = str(self._workdir)

        started_ns = time.monotonic_ns()
        process = await asyncio.create_subprocess_exec(
            "/bin/sh",
            "-c",
            command,
            cwd=str(self._workdir),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        timeout = self._config.timeout_seconds
        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(process, timeout)
        except _CommandTimeoutError as exc:
            stderr_text = _normalize_output_text(exc.stderr)
            note = f"command timed out after {timeout:g}s"
            return self._record(
                BashResult(
                    command,
                    EXIT_TIMEOUT,
                    _truncate_text(
                        _normalize_output_text(exc.stdout), self._config.max_output_chars
                    ),
                    f"{stderr_text}\n{note}".lstrip("\n"),
                    duration_ms=_elapsed_ms(started_ns),
                    timed_out=True,
                )
            )

        exit_code = process.returncode if process.returncode is not None else -1
        return self._record(
            BashResult(
                command,
                exit_code,
                _truncate_text(_normalize_output_text(stdout_bytes), self._config.max_output_chars),
                _truncate_text(_normalize_output_text(stderr_bytes), self._config.max_output_chars),
                duration_ms=_elapsed_ms(started_ns),
            )
        )

    # --- introspection -----------------------------------------------------

    def execution_log(self) -> tuple[BashResult, ...]:
        return tuple(self._execution_log)

    def resource_usage(self) -> ResourceUsage:
        return ResourceUsage(
            commands_executed=self._commands_executed,
            files_read=self._files_read,
            files_written=self._files_written,
            files_deleted=self._files_deleted,
            bytes_written=self._bytes_written,
        )

    def _record(self, result: BashResult) -> BashResult:
        self._execution_log.append(result)
        self._logger.debug(
            "sandbox_command",
            command=result.command,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            timed_out=result.timed_out,
        )
        return result

    def _resolve(self, path: str) -> str:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._workdir / candidate
        return os.path.normpath(str(candidate))

    def _relative(self, key: str) -> str:
        return to_relative_path(key, str(self._workdir))


class _CommandTimeoutError(Exception):
    def __init__(self, *, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


async def _communicate_with_timeout(
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.communicate()
        raise


def _read_disk_or_none(path: Path) -> str | None:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    return raw.decode("utf-8", errors="replace")


def _short_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:12]


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = [
    "BashResult",
    "ChangeType",
    "FileChange",
    "FlushError",
    "OverlayFilesystem",
    "PendingChanges",
    "ResourceUsage",
    "SandboxError",
    "SandboxFileNotFoundError",
    "SandboxPathError",
]
