"""
ralph-orchestrator — unit tests for the buffered overlay filesystem

Purpose
- Validate read-through buffering, all-or-nothing flush, rollback, and the
  command runner's environment, limits and timeouts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

import ralph_orchestrator.sandbox.overlay as overlay_module
from ralph_orchestrator.config.schema import SandboxConfig
from ralph_orchestrator.sandbox.overlay import (
    ChangeType,
    FlushError,
    OverlayFilesystem,
    SandboxFileNotFoundError,
    SandboxPathError,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
def test_reads_see_pending_writes_before_disk(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("disk", encoding="utf-8")
    fs = OverlayFilesystem(tmp_path)

    fs.write_file("a.txt", "buffered")

    assert fs.read_file("a.txt") == "buffered"
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "disk"
    assert fs.pending_changes().writes == ("a.txt",)


@pytest.mark.unit
def test_pending_delete_hides_file(tmp_path: Path) -> None:
    (tmp_path / "gone.txt").write_text("x", encoding="utf-8")
    fs = OverlayFilesystem(tmp_path)

    fs.delete_file("gone.txt")

    assert not fs.exists("gone.txt")
    with pytest.raises(SandboxFileNotFoundError):
        fs.read_file("gone.txt")
    with pytest.raises(FileNotFoundError):
        fs.read_file("never-existed.txt")


@pytest.mark.unit
def test_flush_applies_writes_and_deletes(tmp_path: Path) -> None:
    (tmp_path / "old.txt").write_text("old", encoding="utf-8")
    (tmp_path / "edit.txt").write_text("v1", encoding="utf-8")
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("src/new.txt", "new")
    fs.write_file("edit.txt", "v2")
    fs.delete_file("old.txt")

    changes = fs.flush()

    assert {(change.path, change.type) for change in changes} == {
        ("src/new.txt", ChangeType.CREATED),
        ("edit.txt", ChangeType.MODIFIED),
        ("old.txt", ChangeType.DELETED),
    }
    assert (tmp_path / "src" / "new.txt").read_text(encoding="utf-8") == "new"
    assert (tmp_path / "edit.txt").read_text(encoding="utf-8") == "v2"
    assert not (tmp_path / "old.txt").exists()
    assert not fs.has_pending_changes()


@pytest.mark.unit
def test_flush_is_all_or_nothing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "first.txt").write_text("original", encoding="utf-8")
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("first.txt", "changed")
    fs.write_file("second.txt", "new")

    real_stage = overlay_module.stage_write
    calls: list[str] = []

    def flaky_stage(path: str, content: str) -> object:
        calls.append(path)
        if len(calls) == 2:
            raise OSError("disk full")
        return real_stage(path, content)

    monkeypatch.setattr(overlay_module, "stage_write", flaky_stage)

    with pytest.raises(FlushError):
        fs.flush()

    assert (tmp_path / "first.txt").read_text(encoding="utf-8") == "original"
    assert not (tmp_path / "second.txt").exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["first.txt"]
    assert fs.has_pending_changes()


@pytest.mark.unit
def test_flush_handles_binary_files_on_disk(tmp_path: Path) -> None:
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")
    (tmp_path / "icon.bin").write_bytes(b"\x00\xff\x80")
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("icon.bin", "text now")
    fs.delete_file("logo.png")

    changes = {change.path: change for change in fs.flush()}

    assert changes["icon.bin"].type == ChangeType.MODIFIED
    assert changes["logo.png"].type == ChangeType.DELETED
    assert changes["logo.png"].before is not None
    assert (tmp_path / "icon.bin").read_text(encoding="utf-8") == "text now"
    assert not (tmp_path / "logo.png").exists()
    assert not fs.has_pending_changes()


@pytest.mark.unit
def test_flush_rejects_directory_delete_before_writing(tmp_path: Path) -> None:
    (tmp_path / "assets").mkdir()
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("a.txt", "new")
    fs.delete_file("assets")

    with pytest.raises(FlushError, match="directory"):
        fs.flush()

    assert not (tmp_path / "a.txt").exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["assets"]
    assert fs.pending_changes().writes == ("a.txt",)
    assert fs.pending_changes().deletes == ("assets",)


@pytest.mark.unit
def test_rollback_discards_buffer_without_touching_disk(tmp_path: Path) -> None:
    (tmp_path / "keep.txt").write_text("keep", encoding="utf-8")
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("keep.txt", "overwritten")
    fs.delete_file("keep.txt")
    fs.write_file("other.txt", "x")

    fs.rollback()

    assert fs.pending_changes().writes == ()
    assert fs.pending_changes().deletes == ()
    assert fs.read_file("keep.txt") == "keep"
    assert not (tmp_path / "other.txt").exists()


@pytest.mark.unit
def test_writes_outside_allowed_paths_are_rejected(tmp_path: Path) -> None:
    fs = OverlayFilesystem(tmp_path, SandboxConfig(allowed_paths=("src",)))

    fs.write_file("src/ok.txt", "ok")
    with pytest.raises(SandboxPathError):
        fs.write_file("node_modules/pkg/index.js", "x")
    with pytest.raises(SandboxPathError):
        fs.write_file("README.md", "x")


@pytest.mark.unit
async def test_bash_runs_in_workdir_with_sandbox_env(tmp_path: Path) -> None:
    fs = OverlayFilesystem(tmp_path)

    result = await fs.bash('echo "$RALPH_SANDBOX:$RALPH_WORKDIR"; pwd -P; exit 3')

    assert result.exit_code == 3
    lines = result.stdout.splitlines()
    assert lines[0] == f"true:{tmp_path.resolve()}"
    assert lines[1] == str(tmp_path.resolve())


@pytest.mark.unit
async def test_bash_sees_real_filesystem_not_buffer(tmp_path: Path) -> None:
    fs = OverlayFilesystem(tmp_path)
    fs.write_file("buffered.txt", "x")

    result = await fs.bash("test -f buffered.txt")

    assert result.exit_code != 0


@pytest.mark.unit
async def test_bash_enforces_command_limit_and_config_lists(tmp_path: Path) -> None:
    fs = OverlayFilesystem(
        tmp_path, SandboxConfig(max_commands=1, denied_commands=("wget",), allowed_commands=())
    )

    denied = await fs.bash("wget example.invalid")
    first = await fs.bash("true")
    over = await fs.bash("true")

    assert denied.exit_code == 126
    assert first.exit_code == 0
    assert over.exit_code == 1
    assert "Command limit exceeded" in over.stderr
    assert fs.resource_usage().commands_executed == 1


@pytest.mark.unit
async def test_bash_timeout_reports_124(tmp_path: Path) -> None:
    fs = OverlayFilesystem(tmp_path, SandboxConfig(timeout_seconds=0.2))

    result = await fs.bash("exec sleep 5")

    assert result.exit_code == 124
    assert result.timed_out is True
    assert "timed out" in result.stderr


@pytest.mark.unit
async def test_bash_output_is_truncated(tmp_path: Path) -> None:
    fs = OverlayFilesystem(tmp_path, SandboxConfig(max_output_chars=10))

    result = await fs.bash("printf '%0100d' 0")

    assert result.stdout.startswith("0" * 10)
    assert "[truncated 90 chars]" in result.stdout
