"""Thin, non-interactive git client used by the commit gate and status reporting."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_SHORTSTAT_RE = re.compile(
    r"(?P<files>\d+) files? changed"
    r"(?:, (?P<insertions>\d+) insertions?\(\+\))?"
    r"(?:, (?P<deletions>\d+) deletions?\(-\))?"
)


class GitClientError(RuntimeError):
    """Base error for git client failures."""


class GitCommandError(GitClientError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class CommitResult:
    """Result for commit operation."""

    branch: str
    commit: str
    message: str


@dataclass(frozen=True, slots=True)
class DiffStats:
    files_changed: int = 0
    lines_changed: int = 0


class GitOperations(Protocol):
    """Git surface the commit gate depends on."""

    def add(self, paths: Sequence[str] = (".",)) -> None: ...

    def commit(self, message: str) -> CommitResult | None: ...


class GitClient:
    """Run git in one working tree with prompts and system config disabled."""

    def __init__(
        self,
        workdir: str | Path,
        *,
        env_overrides: Mapping[str, str] | None = None,
        identity: tuple[str, str] = ("ralph-orchestrator", "ralph@example.invalid"),
    ) -> None:
        self.workdir = Path(workdir).resolve()
        self._env_overrides = dict(env_overrides or {})
        self._identity = identity
        self._logger = structlog.get_logger(__name__)

    def is_repository(self) -> bool:
        result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def add(self, paths: Sequence[str] = (".",)) -> None:
        self._run_git(["add", "--all", "--", *paths])

    def commit(self, message: str) -> CommitResult | None:
        """Commit the index; return ``None`` when nothing is staged."""

        title = message.strip()
        if not title:
            raise GitClientError("Commit message cannot be empty.")
        staged = self._run_git(["diff", "--cached", "--name-only"]).stdout.strip()
        if not staged:
            self._logger.info("git_nothing_to_commit", commit_message=title)
            return None
        self._ensure_local_identity()
        self._run_git(["commit", "--no-gpg-sign", "-m", title])
        sha = self._run_git(["rev-parse", "HEAD"]).stdout.strip()
        branch = self.current_branch()
        self._logger.info("git_committed", commit=sha, branch=branch, commit_message=title)
        return CommitResult(branch=branch, commit=sha, message=title)

    def status(self) -> tuple[str, ...]:
        output = self._run_git(["status", "--porcelain"]).stdout
        return tuple(line for line in output.splitlines() if line.strip())

    def current_branch(self) -> str:
        return self._run_git(["branch", "--show-current"]).stdout.strip()

    def create_branch(self, name: str) -> None:
        self._run_git(["checkout", "-b", name])

    def log(self, count: int = 10) -> tuple[str, ...]:
        output = self._run_git(["log", f"-{count}", "--format=%H %s"], check=False).stdout
        return tuple(line for line in output.splitlines() if line.strip())

    def diff_stats(self) -> DiffStats:
        """Stats of the last commit; zeros when there is no parent commit."""

        result = self._run_git(["diff", "--shortstat", "HEAD~1", "HEAD"], check=False)
        if result.returncode != 0:
            return DiffStats()
        match = _SHORTSTAT_RE.search(result.stdout)
        if match is None:
            return DiffStats()
        insertions = int(match.group("insertions") or 0)
        deletions = int(match.group("deletions") or 0)
        return DiffStats(
            files_changed=int(match.group("files")),
            lines_changed=insertions + deletions,
        )

    def _ensure_local_identity(self) -> None:
        name, email = self._identity
        if self._run_git(["config", "--get", "user.name"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.name", name])
        if self._run_git(["config", "--get", "user.email"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.email", email])

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        completed = subprocess.run(
            command,
            cwd=self.workdir,
            env=env,
            text=True,
            capture_output=True,
            check=False,
        )
        result = CommandResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


__all__ = [
    "CommitResult",
    "DiffStats",
    "GitClient",
    "GitClientError",
    "GitCommandError",
    "GitOperations",
]
