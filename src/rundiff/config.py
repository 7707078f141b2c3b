"""
Configuration for rundiff.

Settings live in <data_dir>/config.yaml and are validated with Pydantic.
A missing file means defaults; environment variables override the file:

    RUNDIFF_DATA_DIR        data directory (default ~/.rundiff)
    RUNDIFF_RETENTION_DAYS  storage.max_retention_days
    RUNDIFF_LOG_LEVEL       logging.level
    RUNDIFF_SHELL           executor.shell

Example config.yaml:
    storage:
      max_retention_days: 90
      auto_archive: true
    display:
      linewise: true
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rundiff.errors import ConfigError

DEFAULT_DATA_DIR = Path.home() / ".rundiff"
CONFIG_FILENAME = "config.yaml"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# =============================================================================
# Config Models
# =============================================================================


class StorageConfig(BaseModel):
    """
    Execution store settings.

    Attributes:
        max_retention_days: Executions older than this are swept
        auto_archive: Move entries from past years to index_<YYYY>.json at open
        background_retention: Run the retention sweep after each `run`
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retention_days: int = Field(default=365, ge=1)
    auto_archive: bool = Field(default=True)
    background_retention: bool = Field(default=True)


class ExecutorConfig(BaseModel):
    """Command executor settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    shell: str = Field(default="/bin/sh", min_length=1)
    tee: bool = Field(default=True, description="Stream output live while capturing")


class DisplayConfig(BaseModel):
    """Presentation defaults."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_history_shown: int = Field(default=10, gt=0)
    linewise: bool = Field(default=False, description="Default diff mode is linewise")


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = Field(default="WARNING")
    file: str | None = Field(default=None)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Level must be a standard logging level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level


class RundiffConfig(BaseModel):
    """Complete rundiff configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    storage: StorageConfig = Field(default_factory=StorageConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Loading
# =============================================================================


def resolve_data_dir(data_dir: str | Path | None = None) -> Path:
    """Pick the data directory: explicit argument, then env, then ~/.rundiff."""
    if data_dir is not None:
        return Path(data_dir).expanduser()
    if env_dir := os.environ.get("RUNDIFF_DATA_DIR"):
        return Path(env_dir).expanduser()
    return DEFAULT_DATA_DIR


def load_config(data_dir: str | Path | None = None) -> RundiffConfig:
    """
    Load configuration from <data_dir>/config.yaml with env overrides.

    Args:
        data_dir: Data directory (see resolve_data_dir)

    Returns:
        Validated RundiffConfig

    Raises:
        ConfigError: If the file is not valid YAML or fails validation
    """
    path = resolve_data_dir(data_dir) / CONFIG_FILENAME
    data: dict[str, Any] = {}

    if path.exists():
        try:
            with path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(path=str(path), underlying_error=str(e)) from e
        if not isinstance(data, dict):
            raise ConfigError(path=str(path), underlying_error="top level must be a mapping")

    _apply_env_overrides(data)

    try:
        return RundiffConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(path=str(path), underlying_error=str(e)) from e


def load_config_from_string(content: str) -> RundiffConfig:
    """Load a configuration from a YAML string (no env overrides)."""
    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(path="<string>", underlying_error=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(path="<string>", underlying_error="top level must be a mapping")
    try:
        return RundiffConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(path="<string>", underlying_error=str(e)) from e


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay RUNDIFF_* environment variables onto raw config data."""
    if env_days := os.environ.get("RUNDIFF_RETENTION_DAYS"):
        data.setdefault("storage", {})["max_retention_days"] = env_days
    if env_level := os.environ.get("RUNDIFF_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = env_level
    if env_shell := os.environ.get("RUNDIFF_SHELL"):
        data.setdefault("executor", {})["shell"] = env_shell


def config_to_dict(config: RundiffConfig) -> dict[str, Any]:
    """Dump a config for display."""
    return config.model_dump(mode="json")


# =============================================================================
# Logging
# =============================================================================


def setup_logging(config: RundiffConfig, level_override: str | None = None) -> None:
    """
    Configure the root logger from config.

    Log records go to stderr so they never mix with a command's stdout.
    """
    level_name = (level_override or config.logging.level).upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.logging.file:
        log_path = Path(config.logging.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path)))

    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
