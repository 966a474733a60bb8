"""CLI commands for browsing the ritual catalog."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from renacer.errors import RenacerError

from .common import CONFIG_OPTION, DATA_DIR_OPTION, console, fail, load_context

rituals_app = typer.Typer(help="Browse available rituals")


@rituals_app.command("list")
def list_rituals(
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List ritual definitions."""
    ctx = load_context(config_path, data_dir)
    if json_output:
        payload = [
            {"id": d.id, "title": d.title, "phases": len(d.phases), "voice_gated": len(d.voice_gated_phases)}
            for d in ctx.catalog
        ]
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    table = Table(title=f"Rituals ({len(ctx.catalog)} total)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="green")
    table.add_column("Phases", justify="right")
    table.add_column("Voice gated", justify="right")
    for definition in ctx.catalog:
        table.add_row(
            definition.id,
            definition.title,
            str(len(definition.phases)),
            str(len(definition.voice_gated_phases)),
        )
    console.print(table)


@rituals_app.command("show")
def show_ritual(
    definition_id: str = typer.Argument(..., help="Ritual id"),
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show the phases of one ritual."""
    ctx = load_context(config_path, data_dir)
    try:
        definition = ctx.catalog.get(definition_id)
    except RenacerError as exc:
        fail(exc)

    if json_output:
        typer.echo(json.dumps(definition.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    table = Table(title=definition.title or definition.id)
    table.add_column("#", justify="right")
    table.add_column("Phase", style="cyan")
    table.add_column("Gate", style="yellow")
    table.add_column("Anchors")
    table.add_column("Min", justify="right")
    table.add_column("Retries", justify="right")
    for index, phase in enumerate(definition.phases, start=1):
        gate = "voice" if phase.is_voice_gated else f"timer {phase.timeout_seconds:.0f}s"
        if phase.skippable:
            gate += " (skippable)"
        table.add_row(
            str(index),
            phase.id,
            gate,
            ", ".join(phase.required_anchors) or "-",
            str(phase.min_anchor_matches),
            str(phase.max_retries),
        )
    console.print(table)
