"""Rule file loading and its schema.

`load_config()` finds `.github/standard.yaml` on its own; pass a path to
use another file.
"""

from standardbot.config.durations import Duration, format_duration, parse_duration
from standardbot.config.loader import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    EnvironmentVariableError,
    discover_config_path,
    load_config,
    parse_config,
)
from standardbot.config.schema import DefaultSpec, RuleSetConfig, RuleSpec, UnlessSpec

__all__ = [
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "DefaultSpec",
    "Duration",
    "EnvironmentVariableError",
    "RuleSetConfig",
    "RuleSpec",
    "UnlessSpec",
    "discover_config_path",
    "format_duration",
    "load_config",
    "parse_config",
    "parse_duration",
]
