"""
toolwarden Configuration

JSON configuration validated with pydantic. Resolution order for the
config file: explicit path, ``TOOLWARDEN_CONFIG``, then
``$TOOLWARDEN_HOME/config.json`` (default home ``~/.toolwarden``).
A missing file yields the defaults; an invalid one raises ConfigLoadError.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolwarden.exceptions import ConfigLoadError


def warden_home() -> Path:
    """Base directory for config, domain lists and session state."""
    return Path(os.environ.get("TOOLWARDEN_HOME", "~/.toolwarden")).expanduser()


class ToolTrackingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    notify_on_first_use: bool = True


class PenaltyConfig(BaseModel):
    """Trust score deduction per violation severity."""

    model_config = ConfigDict(extra="forbid")

    low: int = Field(default=2, ge=0, le=100)
    medium: int = Field(default=5, ge=0, le=100)
    high: int = Field(default=10, ge=0, le=100)
    critical: int = Field(default=20, ge=0, le=100)


class ScoringConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    starting_value: int = Field(default=100, ge=0, le=100)
    penalties: PenaltyConfig = Field(default_factory=PenaltyConfig)


class DomainsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    config_dir: str = ""
    default_policy: str = Field(default="warn", pattern="^(allow|warn|block)$")

    def resolved_dir(self) -> Path:
        if self.config_dir:
            return Path(self.config_dir).expanduser()
        return warden_home() / "security"


class HeuristicsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    rules_file: str | None = None


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_url: str = ""
    busy_timeout: float = Field(default=5.0, gt=0, le=300)

    def resolved_url(self) -> str:
        if self.db_url:
            if self.db_url == ":memory:":
                return self.db_url
            return str(Path(self.db_url).expanduser())
        return str(warden_home() / "state.db")


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "WARNING"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


class WardenConfig(BaseModel):
    """Top-level toolwarden configuration."""

    model_config = ConfigDict(extra="forbid")

    tool_tracking: ToolTrackingConfig = Field(default_factory=ToolTrackingConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    domains: DomainsConfig = Field(default_factory=DomainsConfig)
    heuristics: HeuristicsConfig = Field(default_factory=HeuristicsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def default_config_path() -> Path:
    env_path = os.environ.get("TOOLWARDEN_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return warden_home() / "config.json"


def load_config(path: str | os.PathLike | None = None) -> WardenConfig:
    """Load and validate the configuration file.

    Args:
        path: Explicit config path. Falls back to ``default_config_path()``.

    Returns:
        The validated WardenConfig (defaults when the file does not exist).

    Raises:
        ConfigLoadError: If the file is unreadable, not JSON, or fails validation.
    """
    config_path = Path(path).expanduser() if path else default_config_path()
    if not config_path.exists():
        return WardenConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigLoadError(str(config_path), str(e)) from e

    try:
        return WardenConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(
            str(config_path),
            f"{e.error_count()} validation error(s)",
            details={"errors": e.errors(include_url=False)},
        ) from e


def write_default_config(path: str | os.PathLike) -> Path:
    """Write a default config file; existing files are left untouched."""
    config_path = Path(path).expanduser()
    if config_path.exists():
        return config_path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        WardenConfig().model_dump_json(indent=2) + "\n", encoding="utf-8"
    )
    return config_path
