"""
ralph-orchestrator — package root

Purpose
- Drive an autonomous coding agent through a backlog of tasks inside a
  policy-gated sandbox, detect completion programmatically, and commit
  verified work.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Heavy submodules (LLM adapters, subprocess helpers) are imported lazily by
  the components that need them.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
