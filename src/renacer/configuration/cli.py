"""CLI commands for managing Renacer settings."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from renacer.configuration.settings import (
    DEFAULT_CONFIG_PATH,
    Settings,
    bootstrap_settings,
    load_settings,
    save_settings,
)
from renacer.errors import ConfigurationError
from renacer.errors.user_messages import format_error_for_cli


config_app = typer.Typer(help="Manage Renacer configuration")


@config_app.command("init")
def init_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to config file"),
    data_dir: Optional[Path] = typer.Option(None, help="Override ledger directory"),
    language: Optional[str] = typer.Option(None, help="Override transcription language, e.g. es-ES"),
) -> None:
    """Initialize the Renacer settings file."""

    overrides: dict = {}
    if data_dir:
        overrides.setdefault("storage", {})["data_dir"] = str(data_dir)
    if language:
        overrides.setdefault("matching", {})["language"] = language

    try:
        settings = bootstrap_settings(path=config_path, overrides=overrides)
    except ConfigurationError as exc:
        typer.echo(format_error_for_cli(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Configuration initialized at {config_path}")
    typer.echo(_summarize_settings(settings))


@config_app.command("show")
def show_config(config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to config")) -> None:
    """Display effective configuration."""

    try:
        settings = load_settings(config_path)
    except ConfigurationError as exc:
        typer.echo(format_error_for_cli(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(_summarize_settings(settings))


@config_app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key, e.g. matching.language"),
    value: str = typer.Argument(..., help="New value"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to config"),
) -> None:
    """Update a configuration value."""

    try:
        settings = load_settings(config_path)
        payload = settings.model_dump(mode="python")
        _assign(payload, key.split("."), value)
        updated = Settings.model_validate(payload)
    except ConfigurationError as exc:
        typer.echo(format_error_for_cli(exc), err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"❌ Invalid value for {key}: {exc}", err=True)
        raise typer.Exit(code=1)
    save_settings(updated, config_path)
    typer.echo(f"Updated {key}")


@config_app.command("validate")
def validate_config(
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to config file"),
) -> None:
    """Validate configuration file for correctness."""

    try:
        settings = load_settings(config_path)
    except ConfigurationError as exc:
        typer.echo(f"❌ Configuration invalid: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ Configuration valid at {config_path}")
    typer.echo(f"   Data dir: {settings.storage.data_dir}")
    typer.echo(f"   Language: {settings.matching.language}")
    typer.echo(f"   Token overlap: {settings.matching.token_overlap_threshold:.2f}")


def _summarize_settings(settings: Settings) -> str:
    data = settings.model_dump(mode="json")
    return json.dumps(data, indent=2)


def _assign(payload: dict, keys: list[str], value: str) -> None:
    current = payload
    for key in keys[:-1]:
        current = current.setdefault(key, {})
    current[keys[-1]] = value
