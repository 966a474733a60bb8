"""Command line entry points for Renacer."""

import logging

import typer
from typer import Typer

from .progress import achievements_app, progress_app
from .rituals import rituals_app
from .session import session_app
from ..configuration.cli import config_app


cli = Typer(help="Renacer guided ritual tools")
cli.add_typer(rituals_app, name="rituals")
cli.add_typer(session_app, name="session")
cli.add_typer(progress_app, name="progress")
cli.add_typer(achievements_app, name="achievements")
cli.add_typer(config_app, name="config")


@cli.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["cli", "rituals_app", "session_app", "progress_app", "achievements_app", "config_app"]
