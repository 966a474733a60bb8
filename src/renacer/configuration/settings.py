"""Typed settings management for the Renacer ritual engine.

This module wraps user configuration in Pydantic models so CLI commands and
services can rely on validated settings: matching thresholds, storage
location, retry defaults and progress scoring.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from renacer.errors import InvalidConfigError, MissingConfigError

logger = logging.getLogger(__name__)


DEFAULT_HOME = Path.home() / ".renacer"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"


class MatchingSettings(BaseModel):
    """Voice anchor matching configuration."""

    token_overlap_threshold: float = Field(
        0.8, ge=0.0, le=1.0, description="Fraction of anchor tokens that must be heard"
    )
    language: str = Field("es-ES", description="Locale passed to the transcription capability")
    strip_punctuation: bool = Field(True, description="Drop punctuation before matching")
    auto_finalize: bool = Field(
        True, description="Finalize a listening window once every anchor is detected"
    )

    @field_validator("language")
    def _validate_language(cls, value: str) -> str:
        if not value or len(value) < 2:
            raise ValueError("language must be a locale identifier such as es-ES")
        return value


class StorageSettings(BaseModel):
    """Configuration for the durable key/value store."""

    data_dir: Path = Field(default=DEFAULT_HOME / "data", description="Ledger directory")


class RetrySettings(BaseModel):
    """Fallback retry budget for phases that do not declare one."""

    default_max_retries: int = Field(3, ge=0, le=10)


class ProgressSettings(BaseModel):
    """Scoring knobs for derived points and levels."""

    points_per_level: int = Field(100, ge=1, le=10000)


class Settings(BaseModel):
    """Root configuration state."""

    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    catalog_path: Optional[Path] = Field(
        default=None, description="Optional YAML file with extra ritual definitions"
    )


def load_settings(path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Load settings from disk or raise if missing or invalid."""

    if not path.exists():
        raise MissingConfigError(f"Settings file not found at {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidConfigError(f"Settings file is not valid JSON: {exc}") from exc
    try:
        return Settings.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid configuration: {exc}") from exc


def save_settings(settings: Settings, path: Path = DEFAULT_CONFIG_PATH) -> None:
    """Persist settings to disk."""

    payload = settings.model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def bootstrap_settings(
    *,
    path: Path = DEFAULT_CONFIG_PATH,
    overrides: Optional[Dict[str, Any]] = None,
) -> Settings:
    """Create or load settings respecting explicit and environment overrides."""

    overrides = overrides or {}

    if path.exists():
        settings = load_settings(path)
    else:
        settings = Settings()
        save_settings(settings, path)
        logger.info("Created default settings", extra={"config_path": str(path)})

    merged = settings.model_dump(mode="python")
    merged = _apply_overrides(merged, overrides)
    merged = _apply_env_overrides(merged)

    try:
        resolved = Settings.model_validate(merged)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid configuration override: {exc}") from exc
    _ensure_directories(resolved)
    save_settings(resolved, path)
    return resolved


def resolve_settings(path: Optional[Path] = None) -> Settings:
    """Load settings if a config file exists, otherwise return defaults.

    Environment overrides are applied in both cases; nothing is written.
    """

    target = path or DEFAULT_CONFIG_PATH
    base = load_settings(target) if target.exists() else Settings()
    merged = _apply_env_overrides(base.model_dump(mode="python"))
    try:
        return Settings.model_validate(merged)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid environment override: {exc}") from exc


def _apply_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _apply_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    storage = data.setdefault("storage", {})
    _set_env_override(storage, "data_dir", "RENACER_DATA_DIR")

    matching = data.setdefault("matching", {})
    _set_env_override(matching, "language", "RENACER_LANGUAGE")
    _set_env_override(matching, "token_overlap_threshold", "RENACER_TOKEN_OVERLAP", cast_float=True)

    retry = data.setdefault("retry", {})
    _set_env_override(retry, "default_max_retries", "RENACER_MAX_RETRIES", cast_int=True)
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_int: bool = False,
    cast_float: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    try:
        if cast_int:
            mapping[key] = int(raw)
        elif cast_float:
            mapping[key] = float(raw)
        else:
            mapping[key] = raw
    except ValueError as exc:
        raise InvalidConfigError(f"{env_name} has an invalid value: {raw!r}") from exc


def _ensure_directories(settings: Settings) -> None:
    settings.storage.data_dir.mkdir(parents=True, exist_ok=True)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "MatchingSettings",
    "ProgressSettings",
    "RetrySettings",
    "Settings",
    "StorageSettings",
    "bootstrap_settings",
    "load_settings",
    "resolve_settings",
    "save_settings",
]
