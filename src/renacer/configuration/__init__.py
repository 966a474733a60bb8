"""Configuration loading utilities for Renacer."""

from .settings import (
    DEFAULT_CONFIG_PATH,
    MatchingSettings,
    Settings,
    bootstrap_settings,
    load_settings,
    resolve_settings,
    save_settings,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "MatchingSettings",
    "Settings",
    "bootstrap_settings",
    "load_settings",
    "resolve_settings",
    "save_settings",
]
