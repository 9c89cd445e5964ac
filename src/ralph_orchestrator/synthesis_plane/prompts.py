"""
ralph-orchestrator — agent prompt rendering

Purpose
- Render the system prompt and the per-iteration task prompt.

What should be included in this file
- Strict-placeholder jinja2 templates (undefined variables are errors).
- Optional sections (spec, agent instructions, tags, previous result) are
  omitted entirely when empty.

Functional requirements
- Must render prompts deterministically for the same inputs.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined

if TYPE_CHECKING:
    from ralph_orchestrator.domain.models import Task

SYSTEM_TEMPLATE: Final[str] = """\
You are Ralph, an agentic delivery system. You execute software engineering tasks autonomously.

## Rules
1. Read the task description and spec carefully before acting.
2. Use the provided tools to read files, write files, and run commands.
3. Work iteratively: read first, then plan, then implement.
4. When the task is complete, call task_complete with the artifacts you produced.
5. If the task is blocked by a missing dependency or resource, call task_blocked.
6. Do not modify files outside the task scope.
7. Keep changes minimal and focused on the task.
8. Write tests when the task requires code changes.

## Important
- You operate in a sandboxed environment. File changes are buffered until committed.
- Be precise with file paths. Use relative paths from the workspace root.
- If you encounter an error, analyze it and try a different approach.
- Never loop endlessly. If you cannot make progress, declare the task blocked."""

ITERATION_TEMPLATE: Final[str] = """\
## Task: {{ task_id }}: {{ title }}
**Status:** {{ status }}
**Type:** {{ task_type }}
**Iteration:** {{ iteration }}
{%- if description %}

### Description
{{ description }}
{%- endif %}
{%- if spec_content %}

### Specification
{{ spec_content }}
{%- endif %}
{%- if agent_instructions %}

### Agent Instructions
{{ agent_instructions }}
{%- endif %}
{%- if tags %}

**Tags:** {{ tags | join(", ") }}
{%- endif %}
{%- if previous_result %}

### Previous Iteration Result
{{ previous_result }}
{%- endif %}

Execute this task. Use the available tools to read files, make changes, and run commands. \
When done, call task_complete. If blocked, call task_blocked."""

_ENVIRONMENT = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=False,
    lstrip_blocks=False,
    newline_sequence="\n",
    keep_trailing_newline=False,
)
_ITERATION = _ENVIRONMENT.from_string(ITERATION_TEMPLATE)


def build_system_prompt() -> str:
    return SYSTEM_TEMPLATE


def build_iteration_prompt(
    task: Task,
    iteration: int,
    spec_content: str | None = None,
    agent_instructions: str | None = None,
    previous_result: str | None = None,
) -> str:
    return _ITERATION.render(
        task_id=task.id,
        title=task.title,
        status=task.status.value,
        task_type=task.type.value,
        iteration=iteration,
        description=task.description,
        spec_content=spec_content or "",
        agent_instructions=agent_instructions or "",
        tags=list(task.tags),
        previous_result=previous_result or "",
    )


def prompt_hash(prompt: str) -> str:
    """SHA-256 of a rendered prompt, logged for reproducibility."""

    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


__all__ = ["build_iteration_prompt", "build_system_prompt", "prompt_hash"]
