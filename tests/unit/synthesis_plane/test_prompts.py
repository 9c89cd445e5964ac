"""Prompt rendering: optional sections and determinism."""

from __future__ import annotations

import pytest

from ralph_orchestrator.domain.models import Task, TaskStatus, TaskType
from ralph_orchestrator.synthesis_plane.prompts import (
    build_iteration_prompt,
    build_system_prompt,
    prompt_hash,
)


@pytest.mark.unit
def test_minimal_prompt_omits_optional_sections() -> None:
    prompt = build_iteration_prompt(Task(id="T-1", title="Fix bug", type=TaskType.BUG), 1)

    assert prompt.startswith("## Task: T-1: Fix bug\n**Status:** pending\n**Type:** bug\n")
    assert "**Iteration:** 1" in prompt
    for heading in ("### Description", "### Specification", "### Agent Instructions", "**Tags:**"):
        assert heading not in prompt
    assert prompt.endswith("If blocked, call task_blocked.")


@pytest.mark.unit
def test_full_prompt_includes_every_section() -> None:
    task = Task(
        id="T-2",
        title="Add login",
        status=TaskStatus.IN_PROGRESS,
        description="Users sign in with email.",
        tags=("auth", "web"),
    )

    prompt = build_iteration_prompt(
        task,
        4,
        spec_content="# Login spec",
        agent_instructions="Prefer small commits.",
        previous_result="continue: tests failing",
    )

    assert "### Description\nUsers sign in with email." in prompt
    assert "### Specification\n# Login spec" in prompt
    assert "### Agent Instructions\nPrefer small commits." in prompt
    assert "**Tags:** auth, web" in prompt
    assert "### Previous Iteration Result\ncontinue: tests failing" in prompt


@pytest.mark.unit
def test_rendering_is_deterministic() -> None:
    task = Task(id="T-3", title="Stable", description="Same input, same prompt.")

    first = build_iteration_prompt(task, 2, spec_content="spec", previous_result="x")
    second = build_iteration_prompt(task, 2, spec_content="spec", previous_result="x")

    assert first == second
    assert prompt_hash(first) == prompt_hash(second)
    assert len(prompt_hash(first)) == 64


@pytest.mark.unit
def test_system_prompt_names_signal_tools() -> None:
    system = build_system_prompt()

    assert "task_complete" in system
    assert "task_blocked" in system
