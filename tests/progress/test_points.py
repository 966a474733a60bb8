"""Tests for points and levels."""

from __future__ import annotations

from datetime import date, timedelta

from renacer.progress.achievements import Achievement
from renacer.progress.points import compute_points, session_points

TODAY = date(2024, 3, 10)


def test_session_with_every_bonus(make_entry):
    entry = make_entry("a", minutes=10, before=2, after=4)
    assert session_points(entry, streak=1) == 50 + 25 + 30 + 20


def test_short_session_without_ratings_gets_base_and_voice_bonus(make_entry):
    entry = make_entry("a", minutes=5)
    assert session_points(entry, streak=1) == 70


def test_skipped_phase_forfeits_voice_bonus(make_entry):
    entry = make_entry("a", minutes=5, skipped=True)
    assert session_points(entry, streak=1) == 50


def test_no_improvement_bonus_when_mood_drops(make_entry):
    entry = make_entry("a", minutes=5, before=4, after=3, skipped=True)
    assert session_points(entry, streak=1) == 50


def test_streak_bonus_is_capped(make_entry):
    entry = make_entry("a", minutes=5, skipped=True)
    assert session_points(entry, streak=2) == 60
    assert session_points(entry, streak=20) == 100


def test_consecutive_days_accumulate_streak_bonus(make_entry):
    ledger = [
        make_entry(f"s{offset}", day=TODAY - timedelta(days=offset), minutes=5, skipped=True)
        for offset in (2, 1, 0)
    ]
    record = compute_points(ledger)
    assert record.session_points == 50 + 60 + 65


def test_levels_and_unlocked_rewards(make_entry):
    ledger = [make_entry("a", minutes=10, before=2, after=4)]
    achievements = [
        Achievement(id="first_ritual", reward_points=50, unlocked=True),
        Achievement(id="streak_3", reward_points=75, unlocked=False),
    ]

    record = compute_points(ledger, achievements)

    assert record.session_points == 125
    assert record.achievement_points == 50
    assert record.total_points == 175
    assert record.level == 2
    assert record.experience_to_next_level == 25


def test_empty_ledger_starts_at_level_one():
    record = compute_points([], points_per_level=200)
    assert record.level == 1
    assert record.experience_to_next_level == 200
