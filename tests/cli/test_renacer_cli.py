"""Tests for the renacer command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from renacer.cli import cli

CORD_CUTTING_SPEECH = ["siento este cordón", "corto este cordón y te libero", "estoy en paz"]


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> list:
    """Common options pointing config and ledger at a temporary directory."""
    for name in ("RENACER_DATA_DIR", "RENACER_LANGUAGE", "RENACER_TOKEN_OVERLAP", "RENACER_MAX_RETRIES"):
        monkeypatch.delenv(name, raising=False)
    return ["--config", str(tmp_path / "config.json"), "--data-dir", str(tmp_path / "data")]


def _say(texts):
    args = []
    for text in texts:
        args += ["--say", text]
    return args


def test_rituals_list_json(runner, workspace):
    result = runner.invoke(cli, ["rituals", "list", "--json", *workspace])

    assert result.exit_code == 0, result.output
    ids = [item["id"] for item in json.loads(result.output)]
    assert ids == ["cord_cutting", "forgiveness_letter", "karmic", "liberation"]


def test_rituals_list_table(runner, workspace):
    result = runner.invoke(cli, ["rituals", "list", *workspace])
    assert result.exit_code == 0
    assert "Rituals (4 total)" in result.output
    assert "karmic" in result.output


def test_rituals_show_json(runner, workspace):
    result = runner.invoke(cli, ["rituals", "show", "karmic", "--json", *workspace])
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["phases"][0]["id"] == "breathing"
    assert payload["phases"][0]["is_voice_gated"] is False


def test_unknown_ritual_fails_with_suggestion(runner, workspace):
    result = runner.invoke(cli, ["rituals", "show", "nope", *workspace])
    assert result.exit_code == 1
    assert "DEFINITION_NOT_FOUND" in result.output


def test_session_run_completes_and_updates_progress(runner, workspace):
    result = runner.invoke(
        cli,
        ["session", "run", "cord_cutting", *_say(CORD_CUTTING_SPEECH), "--before", "2", "--after", "4", "--json", *workspace],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["session"]["state"] == "completed"
    assert [r["phase_id"] for r in payload["session"]["phase_results"]] == ["diagnosis", "cutting", "protection"]
    assert payload["unlocked"] == ["first_ritual"]
    assert payload["points"]["achievement_points"] == 50

    progress = runner.invoke(cli, ["progress", "show", "cord_cutting", "--json", *workspace])
    assert progress.exit_code == 0, progress.output
    record = json.loads(progress.output)
    assert record["rituals"][0]["completed_runs"] == 1
    assert record["overall"]["completed_runs"] == 1
    assert record["overall"]["average_emotional_improvement"] == 2.0

    achievements = runner.invoke(cli, ["achievements", "list", "--json", *workspace])
    unlocked = [a["id"] for a in json.loads(achievements.output) if a["unlocked"]]
    assert unlocked == ["first_ritual"]


def test_session_run_fast_forwards_timed_phases(runner, workspace):
    speech = [
        "reconozco este patrón",
        "libero este karma y me libero",
        "recupero mi energía",
        "corto este lazo",
        "soy libre",
    ]
    result = runner.invoke(cli, ["session", "run", "karmic", *_say(speech), "--json", *workspace])

    assert result.exit_code == 0, result.output
    session = json.loads(result.output)["session"]
    assert session["state"] == "completed"
    assert session["phase_results"][0]["phase_id"] == "breathing"


def test_session_without_speech_is_abandoned(runner, workspace):
    result = runner.invoke(cli, ["session", "run", "cord_cutting", "--json", *workspace])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["session"]["state"] == "abandoned"
    assert payload["session"]["abandon_reason"] == "retries_exhausted"
    assert payload["unlocked"] == []

    progress = runner.invoke(cli, ["progress", "show", "--json", *workspace])
    assert json.loads(progress.output)["overall"]["completed_runs"] == 0


def test_session_run_table_output(runner, workspace):
    result = runner.invoke(cli, ["session", "run", "cord_cutting", *_say(CORD_CUTTING_SPEECH), *workspace])
    assert result.exit_code == 0, result.output
    assert "Ritual completed" in result.output
    assert "Achievement unlocked" in result.output


def test_validate_phrase(runner, workspace):
    ok = runner.invoke(cli, ["session", "validate", "liberation", "liberation", "te libero y te suelto", *workspace])
    assert ok.exit_code == 0, ok.output
    assert "2/3 anchors detected" in ok.output

    missing = runner.invoke(cli, ["session", "validate", "liberation", "liberation", "te libero", *workspace])
    assert missing.exit_code == 1
    assert "Still missing: te reconozco, te suelto" in missing.output


def test_validate_unknown_phase(runner, workspace):
    result = runner.invoke(cli, ["session", "validate", "liberation", "nope", "hola", *workspace])
    assert result.exit_code == 1
    assert "Unknown phase" in result.output


def test_achievements_start_locked(runner, workspace):
    result = runner.invoke(cli, ["achievements", "list", "--json", *workspace])
    assert result.exit_code == 0
    achievements = json.loads(result.output)
    assert len(achievements) == 10
    assert not any(a["unlocked"] for a in achievements)
