"""Configuration schema, defaults and the layered loader."""

from ralph_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_runtime_config,
)
from ralph_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    OnFailure,
    RuntimeConfig,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "ConfigLoadError",
    "ConfigValidationError",
    "OnFailure",
    "RuntimeConfig",
    "dump_effective_config",
    "load_config",
    "load_runtime_config",
    "validate_config",
]
