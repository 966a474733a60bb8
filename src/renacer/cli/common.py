"""Shared wiring for CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console

from renacer.configuration.settings import DEFAULT_CONFIG_PATH, Settings, resolve_settings
from renacer.errors import RenacerError
from renacer.errors.user_messages import format_error_for_cli
from renacer.persistence import FilePersistenceGateway
from renacer.progress import ProgressService
from renacer.ritual.catalog import RitualCatalog

console = Console()

CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config file")
DATA_DIR_OPTION = typer.Option(None, "--data-dir", help="Override ledger directory")


@dataclass
class CliContext:
    settings: Settings
    catalog: RitualCatalog
    gateway: FilePersistenceGateway

    def progress_service(self) -> ProgressService:
        return ProgressService(
            self.gateway,
            definition_ids=self.catalog.ids(),
            points_per_level=self.settings.progress.points_per_level,
        )


def load_context(config_path: Path = DEFAULT_CONFIG_PATH, data_dir: Optional[Path] = None) -> CliContext:
    """Resolve settings, catalog and storage, exiting with a friendly error on failure."""
    try:
        settings = resolve_settings(config_path)
        if data_dir is not None:
            settings = settings.model_copy(
                update={"storage": settings.storage.model_copy(update={"data_dir": Path(data_dir)})}
            )
        catalog = RitualCatalog.from_settings(
            settings.catalog_path, default_max_retries=settings.retry.default_max_retries
        )
        gateway = FilePersistenceGateway(settings.storage.data_dir)
    except RenacerError as exc:
        fail(exc)
    return CliContext(settings=settings, catalog=catalog, gateway=gateway)


def fail(exc: RenacerError) -> NoReturn:
    typer.echo(format_error_for_cli(exc), err=True)
    raise typer.Exit(code=1)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
