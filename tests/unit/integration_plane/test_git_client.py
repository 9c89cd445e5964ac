"""
ralph-orchestrator — unit tests for the git client

Purpose
- Validate add/commit/log/diff-stat primitives over local temporary repositories.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ralph_orchestrator.integration_plane.git_client import (
    DiffStats,
    GitClient,
    GitClientError,
    GitCommandError,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
def test_commit_uses_local_identity_and_reports_sha(git_repo: Path) -> None:
    (git_repo / "a.txt").write_text("one\n", encoding="utf-8")
    client = GitClient(git_repo)

    assert client.is_repository()
    client.add()
    result = client.commit("RALPH-T-1: First")

    assert result is not None
    assert result.branch == "main"
    assert result.message == "RALPH-T-1: First"
    assert len(result.commit) == 40
    assert client.log() == (f"{result.commit} RALPH-T-1: First",)
    assert client.status() == ()


@pytest.mark.unit
def test_commit_with_nothing_staged_returns_none(git_repo: Path) -> None:
    client = GitClient(git_repo)

    assert client.commit("RALPH-T-2: Empty") is None
    with pytest.raises(GitClientError, match="cannot be empty"):
        client.commit("   ")


@pytest.mark.unit
def test_diff_stats_of_last_commit(git_repo: Path) -> None:
    client = GitClient(git_repo)
    (git_repo / "a.txt").write_text("one\n", encoding="utf-8")
    client.add()
    client.commit("base")

    assert client.diff_stats() == DiffStats()

    (git_repo / "a.txt").write_text("uno\ntwo\n", encoding="utf-8")
    (git_repo / "b.txt").write_text("three\n", encoding="utf-8")
    client.add()
    client.commit("change")

    assert client.diff_stats() == DiffStats(files_changed=2, lines_changed=4)


@pytest.mark.unit
def test_branch_and_status(git_repo: Path) -> None:
    client = GitClient(git_repo)
    (git_repo / "a.txt").write_text("x", encoding="utf-8")

    assert client.status() == ("?? a.txt",)
    client.add(["a.txt"])
    client.commit("base")
    client.create_branch("ralph/T-3")

    assert client.current_branch() == "ralph/T-3"


@pytest.mark.unit
def test_git_failure_raises_command_error(tmp_path: Path, git_env: Path) -> None:
    client = GitClient(tmp_path)

    assert not client.is_repository()
    with pytest.raises(GitCommandError) as excinfo:
        client.add()

    assert excinfo.value.command[:2] == ("git", "add")
    assert excinfo.value.returncode != 0
