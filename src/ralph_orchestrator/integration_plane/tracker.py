"""Issue-tracker contract consumed by the loop after a successful commit."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ralph_orchestrator.domain.models import Task, TaskLinkOp


class TrackerSync(Protocol):
    """Adapter for an external tracker (GitHub, Jira, Linear, ...).

    ``sync_task`` returns a link operation when the tracker created a new
    external issue for a task that had no ``external_id`` yet.
    """

    async def sync_task(self, task: Task, *, success: bool) -> TaskLinkOp | None: ...


__all__ = ["TrackerSync"]
