"""Sandboxed execution: buffered overlay filesystem and the policy-gated executor."""

from ralph_orchestrator.sandbox.executor import (
    Executor,
    PolicyViolationError,
    SelfModificationError,
    build_executor,
)
from ralph_orchestrator.sandbox.overlay import (
    BashResult,
    FileChange,
    FlushError,
    OverlayFilesystem,
    SandboxError,
)

__all__ = [
    "BashResult",
    "Executor",
    "FileChange",
    "FlushError",
    "OverlayFilesystem",
    "PolicyViolationError",
    "SandboxError",
    "SelfModificationError",
    "build_executor",
]
