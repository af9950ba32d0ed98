"""Judge configuration and problem loading with YAML support."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ConfigDict, Field, NonNegativeInt, PositiveInt, ValidationError, field_validator

from grading.schemas import BaseSchema, Problem
from sandbox import policy

# Keys that every loaded configuration must set explicitly.
REQUIRED_KEYS = ("max_log_entries", "execution_timeout_ms")

# Environment variable -> configuration field.
ENV_KEYS = {
    "MAX_LOGS": "max_log_entries",
    "EXECUTION_TIMEOUT": "execution_timeout_ms",
    "JUDGE_MEMORY_LIMIT_MB": "memory_limit_mb",
    "JUDGE_KILL_GRACE_MS": "kill_grace_ms",
    "JUDGE_MAX_WORKERS": "max_workers",
}


class ConfigError(ValueError):
    """Missing or invalid judge configuration; fatal at startup."""


class ProblemError(ValueError):
    """A problem definition could not be loaded."""


class JudgeConfig(BaseSchema):
    """Limits applied to every sandboxed execution."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_log_entries: PositiveInt = 50
    execution_timeout_ms: PositiveInt = 1000

    # Process-level limits
    memory_limit_mb: PositiveInt = 256
    kill_grace_ms: NonNegativeInt = 1000

    # Parallel per-case fan-out
    max_workers: PositiveInt = 4

    allowed_modules: list[str] = Field(default_factory=lambda: list(policy.ALLOWED_MODULES))

    @field_validator(
        "max_log_entries",
        "execution_timeout_ms",
        "memory_limit_mb",
        "kill_grace_ms",
        "max_workers",
        mode="before",
    )
    @classmethod
    def reject_bool(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("must be an integer, not a boolean")
        return value


def _build_config(data: Mapping[str, Any], source: str) -> JudgeConfig:
    missing = [key for key in REQUIRED_KEYS if data.get(key) in (None, "")]
    if missing:
        raise ConfigError(f"Missing required setting(s) in {source}: {', '.join(missing)}")
    try:
        return JudgeConfig.from_dict(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e


def load_config(yaml_path: str | Path) -> JudgeConfig:
    """Load judge configuration from a YAML file.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        JudgeConfig instance

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ConfigError: If YAML is invalid or missing required fields
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Empty or invalid YAML file: {yaml_path}")

    return _build_config(data, str(yaml_path))


def config_from_env(environ: Mapping[str, str]) -> JudgeConfig:
    """Build configuration from environment-style variables.

    ``MAX_LOGS`` and ``EXECUTION_TIMEOUT`` are required; the ``JUDGE_*``
    variables are optional overrides. Call once at startup and pass the
    result around explicitly.
    """
    data = {field: environ[name] for name, field in ENV_KEYS.items() if name in environ}
    return _build_config(data, "environment")


def save_config(config: JudgeConfig, yaml_path: str | Path) -> None:
    """Save judge configuration to a YAML file."""
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    with open(yaml_path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False, indent=2)


def load_problem(path: str | Path) -> Problem:
    """Load a problem definition from a YAML or JSON file."""
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Problem file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ProblemError(f"Invalid problem file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ProblemError(f"Empty or invalid problem file: {path}")

    try:
        return Problem.from_dict(data)
    except ValidationError as e:
        raise ProblemError(f"Invalid problem definition in {path}: {e}") from e
