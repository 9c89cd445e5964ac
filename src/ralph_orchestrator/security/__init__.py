"""
ralph-orchestrator — policy engine exports

Purpose
- Allow/deny decisions for file and command access, approval classification,
  and policy file loading.
"""

from ralph_orchestrator.security.policy import (
    ApprovalClass,
    CheckType,
    PolicyCheckResult,
    PolicyMode,
    PolicyViolation,
    RalphPolicy,
    ViolationType,
    check_command,
    check_file_read,
    check_file_write,
    check_self_modification,
    classify_action,
    default_policy,
    requires_approval,
)
from ralph_orchestrator.security.policy_loader import (
    PolicyLoadError,
    load_policy,
    load_policy_or_default,
    validate_policy,
)

__all__ = [
    "ApprovalClass",
    "CheckType",
    "PolicyCheckResult",
    "PolicyLoadError",
    "PolicyMode",
    "PolicyViolation",
    "RalphPolicy",
    "ViolationType",
    "check_command",
    "check_file_read",
    "check_file_write",
    "check_self_modification",
    "classify_action",
    "default_policy",
    "load_policy",
    "load_policy_or_default",
    "requires_approval",
    "validate_policy",
]
