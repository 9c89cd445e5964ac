"""Integration plane: git client and tracker sync contract."""

from ralph_orchestrator.integration_plane.git_client import (
    CommitResult,
    GitClient,
    GitClientError,
    GitCommandError,
    GitOperations,
)
from ralph_orchestrator.integration_plane.tracker import TrackerSync

__all__ = [
    "CommitResult",
    "GitClient",
    "GitClientError",
    "GitCommandError",
    "GitOperations",
    "TrackerSync",
]
