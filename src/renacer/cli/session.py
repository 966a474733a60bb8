"""CLI commands for running ritual sessions from scripted speech."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.table import Table

from renacer.errors import RenacerError
from renacer.progress import ProgressService
from renacer.ritual.engine import RitualEngine
from renacer.ritual.matcher import VoiceAnchorMatcher
from renacer.ritual.models import RitualDefinition, RitualSession, SessionState
from renacer.configuration.settings import Settings
from renacer.transcription import ScriptedTranscription

from .common import CONFIG_OPTION, DATA_DIR_OPTION, console, fail, format_duration, load_context

session_app = typer.Typer(help="Run ritual sessions")


async def drive_session(
    definition: RitualDefinition,
    transcription: ScriptedTranscription,
    *,
    settings: Settings,
    progress: Optional[ProgressService] = None,
    before_rating: Optional[int] = None,
    after_rating: Optional[int] = None,
) -> RitualEngine:
    """Run a session to a terminal state, fast-forwarding timed phases."""
    engine = RitualEngine(definition, transcription=transcription, settings=settings, progress=progress)
    engine.after_rating = after_rating
    try:
        await engine.start(before_rating=before_rating)
        while not engine.snapshot().is_terminal:
            phase = engine.sequencer.current_phase()
            if not phase.is_voice_gated:
                await engine.expire_timer()
                continue
            position = (engine.snapshot().current_phase_index, engine.sequencer.current_attempt())
            await engine.drain()
            session = engine.snapshot()
            if session.is_terminal:
                break
            if (session.current_phase_index, engine.sequencer.current_attempt()) == position and engine.matcher.is_open:
                await engine.finalize()
    finally:
        await engine.close()
    return engine


def _results_table(session: RitualSession, definition: RitualDefinition) -> Table:
    table = Table(title=f"{definition.title or definition.id} · {session.state.value}")
    table.add_column("Phase", style="cyan")
    table.add_column("Attempt", justify="right")
    table.add_column("Result", style="yellow")
    table.add_column("Anchors", justify="right")
    table.add_column("Accuracy", justify="right")
    table.add_column("Duration", justify="right")
    for result in session.phase_results:
        if result.skipped:
            verdict = "[blue]skipped[/blue]"
        elif result.passed:
            verdict = "[green]passed[/green]"
        else:
            verdict = f"[red]{result.failure or 'failed'}[/red]"
        table.add_row(
            result.phase_id,
            str(result.attempt),
            verdict,
            f"{len(result.detected_anchors)}/{result.min_anchor_matches}",
            f"{result.accuracy:.0%}",
            format_duration(result.duration_seconds),
        )
    return table


@session_app.command("run")
def run_session(
    definition_id: str = typer.Argument(..., help="Ritual id"),
    say: List[str] = typer.Option([], "--say", help="What is spoken in a voice-gated phase attempt (repeatable)"),
    before: Optional[int] = typer.Option(None, "--before", min=1, max=5, help="Mood before the ritual (1-5)"),
    after: Optional[int] = typer.Option(None, "--after", min=1, max=5, help="Mood after the ritual (1-5)"),
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Run a ritual end to end, one --say per voice-gated phase attempt."""
    ctx = load_context(config_path, data_dir)
    try:
        definition = ctx.catalog.get(definition_id)
    except RenacerError as exc:
        fail(exc)

    transcription = ScriptedTranscription()
    for text in say:
        transcription.say(text)
    progress = ctx.progress_service()

    engine = asyncio.run(
        drive_session(
            definition,
            transcription,
            settings=ctx.settings,
            progress=progress,
            before_rating=before,
            after_rating=after,
        )
    )
    session = engine.snapshot()
    outcome = engine.outcome

    if json_output:
        payload = {
            "session": session.model_dump(mode="json"),
            "unlocked": [a.id for a in outcome.unlocked] if outcome else [],
            "points": outcome.points.model_dump(mode="json") if outcome and outcome.points else None,
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        console.print(_results_table(session, definition))
        if session.state is SessionState.COMPLETED:
            console.print("[green]✅ Ritual completed[/green]")
        else:
            console.print(f"[yellow]Session abandoned: {session.abandon_reason}[/yellow]")
        if outcome:
            for achievement in outcome.unlocked:
                console.print(f"🏅 Achievement unlocked: [bold]{achievement.title}[/bold]")
            if outcome.points:
                console.print(
                    f"Points: {outcome.points.total_points} · Level {outcome.points.level}"
                )

    if engine.persistence_error is not None:
        fail(engine.persistence_error)


@session_app.command("validate")
def validate_phrase(
    definition_id: str = typer.Argument(..., help="Ritual id"),
    phase_id: str = typer.Argument(..., help="Phase id"),
    text: str = typer.Argument(..., help="Text to check against the phase anchors"),
    config_path: Path = CONFIG_OPTION,
    data_dir: Optional[Path] = DATA_DIR_OPTION,
) -> None:
    """Check a text against one phase's anchors without running a session."""
    ctx = load_context(config_path, data_dir)
    try:
        definition = ctx.catalog.get(definition_id)
    except RenacerError as exc:
        fail(exc)
    try:
        phase = definition.phase(phase_id)
    except KeyError:
        typer.echo(f"❌ Unknown phase '{phase_id}' in ritual '{definition_id}'", err=True)
        raise typer.Exit(code=1)

    matcher = VoiceAnchorMatcher(settings=ctx.settings.matching)
    try:
        result = matcher.validate_text(phase, text, strict=True)
    except RenacerError as exc:
        missing = exc.details.get("missing", [])
        if missing:
            typer.echo(f"Still missing: {', '.join(missing)}", err=True)
        fail(exc)
    typer.echo(
        f"✅ {phase.id}: {len(result.detected_anchors)}/{len(phase.required_anchors)} anchors detected"
    )
