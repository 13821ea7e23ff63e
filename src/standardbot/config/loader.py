"""Rule file discovery, parsing and validation.

A rule file is read in three passes:

1. find it (`--config`, `$STANDARDBOT_CONFIG`, then the repository
   locations `.github/standard.yaml` and `standard.yaml`),
2. parse it as YAML and substitute `${VAR}` references from the environment,
3. validate the result against RuleSetConfig.

Any failure is a ConfigError. The bot refuses to start on one rather than
run with half a rule set; individual rules that are well-formed but cannot
be compiled are handled later, by RuleSet.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from standardbot.config.schema import RuleSetConfig

if TYPE_CHECKING:
    from collections.abc import Iterator

CONFIG_ENV_VAR = "STANDARDBOT_CONFIG"

# Relative to the working directory (normally the repository root)
REPOSITORY_LOCATIONS = (
    Path(".github") / "standard.yaml",
    Path("standard.yaml"),
)

# ${NAME}; bare $NAME is a comment template token and is never expanded
ENV_REFERENCE = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


class ConfigError(Exception):
    """The rule file cannot be used."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        """Initialize the error.

        Args:
            message: What is wrong.
            path: Rule file involved, when known.
        """
        self.path = path
        super().__init__(message)


class ConfigNotFoundError(ConfigError):
    """No rule file exists at any searched location."""


class ConfigValidationError(ConfigError):
    """The rule file does not match the schema."""

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable summary, one line per problem.
            path: Rule file involved.
            validation_errors: Raw pydantic error dicts.
        """
        self.validation_errors = validation_errors or []
        super().__init__(message, path)


class EnvironmentVariableError(ConfigError):
    """A `${VAR}` reference names an unset variable."""

    def __init__(self, var_name: str, path: Path | None = None) -> None:
        """Initialize the error.

        Args:
            var_name: The unset variable.
            path: Rule file involved.
        """
        self.var_name = var_name
        super().__init__(
            f"Environment variable '{var_name}' is referenced by the rule file but not set",
            path,
        )


def expand_env_vars(value: Any, *, strict: bool = True) -> Any:
    """Substitute `${VAR}` references in every string of a parsed document.

    Args:
        value: Parsed YAML: mappings, lists and scalars, nested freely.
        strict: Raise on an unset variable instead of leaving the reference.

    Returns:
        A copy of value with references replaced.

    Raises:
        EnvironmentVariableError: If strict and a variable is unset.
    """

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in os.environ:
            return os.environ[name]
        if strict:
            raise EnvironmentVariableError(name)
        return match.group(0)

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            return ENV_REFERENCE.sub(substitute, node)
        if isinstance(node, dict):
            return {key: walk(item) for key, item in node.items()}
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    return walk(value)


def _candidate_paths() -> Iterator[Path]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        yield Path(env_path).expanduser().resolve()
    cwd = Path.cwd()
    for location in REPOSITORY_LOCATIONS:
        yield cwd / location


def discover_config_path(explicit_path: str | Path | None = None) -> Path:
    """Find the rule file.

    An explicit path must exist. Otherwise `$STANDARDBOT_CONFIG`,
    `./.github/standard.yaml` and `./standard.yaml` are tried in that order.

    Args:
        explicit_path: Path given with --config.

    Returns:
        Path of the rule file.

    Raises:
        ConfigNotFoundError: If nothing was found.
    """
    if explicit_path:
        path = Path(explicit_path).expanduser().resolve()
        if not path.exists():
            raise ConfigNotFoundError(f"Config file not found: {path}", path)
        return path

    searched: list[Path] = []
    for candidate in _candidate_paths():
        if candidate.exists():
            return candidate
        searched.append(candidate)

    listing = "".join(f"\n  - {p}" for p in searched)
    raise ConfigNotFoundError(f"No config file found. Searched locations:{listing}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Read a rule file into a mapping.

    An empty file is an empty mapping (no rules).

    Raises:
        ConfigError: If the file is unreadable, not YAML, or not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}", path) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}", path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file must be a YAML mapping of sections, got {type(data).__name__}",
            path,
        )
    return data


def _describe(errors: list[Any]) -> str:
    lines = [
        f"  - {'.'.join(str(part) for part in err['loc']) or '(root)'}: {err['msg']}"
        for err in errors
    ]
    return f"Config validation failed ({len(errors)} error(s)):\n" + "\n".join(lines)


def parse_config(
    raw_config: dict[str, Any],
    *,
    path: Path | None = None,
) -> RuleSetConfig:
    """Validate an already-parsed rule file.

    Args:
        raw_config: Mapping as produced by YAML or JSON parsing.
        path: Source path, for error messages.

    Returns:
        Validated RuleSetConfig.

    Raises:
        ConfigValidationError: If the mapping does not match the schema.
    """
    try:
        return RuleSetConfig.model_validate(raw_config)
    except ValidationError as e:
        errors = e.errors()
        raise ConfigValidationError(
            _describe(errors),
            path=path,
            validation_errors=[dict(err) for err in errors],
        ) from e


def load_config(
    path: str | Path | None = None,
    *,
    expand_env: bool = True,
) -> RuleSetConfig:
    """Find, read, expand and validate the rule file.

    Args:
        path: Explicit rule file; discovered when None.
        expand_env: Substitute `${VAR}` references before validation.

    Returns:
        Validated RuleSetConfig.

    Raises:
        ConfigError: Or one of its subclasses, on any failure.
    """
    config_path = discover_config_path(path)
    raw_config = load_yaml(config_path)

    if expand_env:
        try:
            raw_config = expand_env_vars(raw_config)
        except EnvironmentVariableError as e:
            e.path = config_path
            raise

    return parse_config(raw_config, path=config_path)
