"""State directory layout: default, scoped, and legacy fallback."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ralph_orchestrator.persistence import resolve_state_paths, slugify_repo_name
from ralph_orchestrator.security.policy import PolicyMode

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "slug"),
    [("My Repo", "my-repo"), ("web__app!!v2", "web__app-v2"), ("***", "repo")],
)
def test_slugify_repo_name(tmp_path: Path, name: str, slug: str) -> None:
    assert slugify_repo_name(tmp_path / name) == slug


@pytest.mark.unit
def test_default_layout(tmp_path: Path) -> None:
    paths = resolve_state_paths(tmp_path)

    assert paths.tasks == tmp_path / "state" / "tasks.jsonl"
    assert paths.progress == tmp_path / "state" / "progress.jsonl"
    assert not paths.scoped


@pytest.mark.unit
def test_scoped_layout_per_mode(tmp_path: Path) -> None:
    workdir = tmp_path / "Shop Front"
    workdir.mkdir()

    core = resolve_state_paths(workdir, mode=PolicyMode.CORE, scoped=True)
    delivery = resolve_state_paths(workdir, mode=PolicyMode.DELIVERY, scoped=True)

    assert core.base_dir == workdir / "state" / "core"
    assert delivery.base_dir == workdir / "state" / "delivery" / "shop-front"


@pytest.mark.unit
def test_scoped_request_falls_back_to_legacy_state(tmp_path: Path) -> None:
    legacy = tmp_path / "state"
    legacy.mkdir()
    (legacy / "tasks.jsonl").write_text("", encoding="utf-8")

    paths = resolve_state_paths(tmp_path, mode=PolicyMode.DELIVERY, scoped=True)

    assert paths.base_dir == legacy
    assert not paths.scoped


@pytest.mark.unit
def test_absolute_state_dir(tmp_path: Path) -> None:
    custom = tmp_path / "elsewhere"

    assert resolve_state_paths(tmp_path / "w", state_dir=custom).tasks == custom / "tasks.jsonl"
