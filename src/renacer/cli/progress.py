"""CLI commands for progress records and achievements."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from renacer.errors import RenacerError

from .common import CONFIG_OPTION, DATA_DIR_OPTION, console, fail, format_duration, load_context

progress_app = typer.Typer(help="Show ritual progress")
achievements_app = typer.Typer(help="Show achievements")


@progress_app.command("show")
def show_progress(
    definition_id: Optional[str] = typer.Argument(None, help="Ritual id (all rituals if omitted)"),
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Display progress derived from the session ledger."""
    ctx = load_context(config_path, data_dir)
    try:
        if definition_id is not None:
            ctx.catalog.get(definition_id)
            ids = [definition_id]
        else:
            ids = ctx.catalog.ids()
        service = ctx.progress_service()
        records = [service.progress(i) for i in ids]
        overall = service.overall()
        points = service.points()
    except RenacerError as exc:
        fail(exc)

    if json_output:
        payload = {
            "rituals": [record.model_dump(mode="json") for record in records],
            "overall": overall.model_dump(mode="json"),
            "points": points.model_dump(mode="json"),
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    table = Table(title="Ritual Progress")
    table.add_column("Ritual", style="cyan", no_wrap=True)
    table.add_column("Completed", justify="right")
    table.add_column("Streak", justify="right")
    table.add_column("Longest", justify="right")
    table.add_column("Last", style="magenta")
    table.add_column("Avg duration", justify="right")
    for record in records:
        table.add_row(
            record.definition_id,
            str(record.completed_runs),
            str(record.current_streak),
            str(record.longest_streak),
            record.last_completion_date.isoformat() if record.last_completion_date else "-",
            format_duration(record.average_duration_seconds),
        )
    console.print(table)
    console.print(
        f"Overall: {overall.completed_runs} completed · streak {overall.current_streak} "
        f"· level {points.level} ({points.total_points} pts, {points.experience_to_next_level} to next)"
    )


@achievements_app.command("list")
def list_achievements(
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List achievements and their unlock state."""
    ctx = load_context(config_path, data_dir)
    try:
        service = ctx.progress_service()
        achievements = service.achievements()
    except RenacerError as exc:
        fail(exc)
    specs = {spec.id: spec for spec in service.evaluator.catalog}

    if json_output:
        typer.echo(json.dumps([a.model_dump(mode="json") for a in achievements], indent=2, ensure_ascii=False))
        return

    unlocked = sum(1 for a in achievements if a.unlocked)
    table = Table(title=f"Achievements ({unlocked}/{len(achievements)} unlocked)")
    table.add_column("", no_wrap=True)
    table.add_column("Achievement", style="cyan")
    table.add_column("Description")
    table.add_column("Points", justify="right")
    table.add_column("Unlocked", style="magenta")
    for achievement in achievements:
        table.add_row(
            "🏅" if achievement.unlocked else "🔒",
            achievement.title,
            specs[achievement.id].description,
            str(achievement.reward_points),
            achievement.unlocked_at.strftime("%Y-%m-%d") if achievement.unlocked_at else "-",
        )
    console.print(table)
