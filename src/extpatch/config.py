"""YAML settings for the extpatch command line."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .tools.archive import ARCHIVE_EPOCH, Compression
from .tools.fs import DEFAULT_IGNORE_PATTERNS

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "BundleSettings",
    "LoggingSettings",
    "PatcherSettings",
    "load_settings",
    "resolve_created_at",
]

DEFAULT_CONFIG_NAME = "extpatch.yaml"
SOURCE_DATE_EPOCH_ENV = "SOURCE_DATE_EPOCH"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class SettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BundleSettings(SettingsModel):
    timestamp: Literal["fixed", "now"] = "fixed"
    compression: Compression = "deflated"


class LoggingSettings(SettingsModel):
    level: str = "WARNING"
    telemetry: bool = False

    @field_validator("level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}; expected one of {', '.join(_LOG_LEVELS)}")
        return level


class PatcherSettings(SettingsModel):
    """Top-level settings document."""

    ignore: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    bundle: BundleSettings = Field(default_factory=BundleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _read_yaml(config_path: Path) -> Any:
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read config {config_path}: {error}") from error


def load_settings(config_path: Optional[Path | str] = None) -> PatcherSettings:
    """Load settings from ``config_path``, or from ``extpatch.yaml`` when present.

    An explicit path must exist. Without one, a missing default file yields
    the built-in defaults.
    """
    if config_path is None:
        candidate = Path(DEFAULT_CONFIG_NAME)
        if not candidate.is_file():
            return PatcherSettings()
    else:
        candidate = Path(config_path)
        if not candidate.is_file():
            raise ConfigError(f"Config file not found: {candidate}")

    data = _read_yaml(candidate)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    try:
        return PatcherSettings.model_validate(data)
    except ValidationError as error:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
            for item in error.errors(include_url=False)
        )
        raise ConfigError(f"Invalid configuration in {candidate}: {problems}") from error


def resolve_created_at(
    settings: PatcherSettings,
    environ: Mapping[str, str] = os.environ,
) -> datetime:
    """Pick the ``createdAt`` value for a new bundle.

    ``SOURCE_DATE_EPOCH`` wins when set; otherwise ``bundle.timestamp``
    selects the archive epoch or the current UTC time.
    """
    raw = environ.get(SOURCE_DATE_EPOCH_ENV)
    if raw is not None and raw.strip():
        try:
            seconds = int(raw.strip())
        except ValueError:
            raise ConfigError(f"{SOURCE_DATE_EPOCH_ENV} must be an integer, got {raw!r}") from None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as error:
            raise ConfigError(f"{SOURCE_DATE_EPOCH_ENV} is out of range: {raw}") from error
    if settings.bundle.timestamp == "now":
        return datetime.now(timezone.utc).replace(microsecond=0)
    return ARCHIVE_EPOCH
