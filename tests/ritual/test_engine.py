"""Tests for the asyncio ritual engine."""

from __future__ import annotations

import asyncio

import pytest

from renacer.errors import EngineUnavailableError, InvalidTransition, PermissionDeniedError, PersistenceError
from renacer.persistence import InMemoryPersistenceGateway
from renacer.progress import ProgressService
from renacer.ritual.engine import RitualEngine
from renacer.ritual.events import EventType
from renacer.ritual.models import SessionState
from renacer.transcription import ScriptedTranscription, TranscriptChunk

from tests.conftest import FailingGateway, sequential_ids

FULL_SPEECH = {
    "recognition": "te reconozco, reconozco el dolor, acepto lo que pasó",
    "liberation": "te libero, te reconozco, te suelto",
    "sealing": "estoy en paz, así es, gracias",
}


def _engine(definition, transcription, scheduler, clock, bus=None, progress=None) -> RitualEngine:
    return RitualEngine(
        definition,
        transcription=transcription,
        progress=progress,
        bus=bus,
        scheduler=scheduler,
        clock=clock,
        id_factory=sequential_ids(),
    )


@pytest.mark.asyncio
async def test_full_session_completes_and_is_recorded(three_phase_definition, scheduler, clock, bus, events):
    """Speaking every anchor finalizes each window and completes the ritual."""
    transcription = ScriptedTranscription()
    for phase in three_phase_definition.phases:
        transcription.say(FULL_SPEECH[phase.id])
    progress = ProgressService(InMemoryPersistenceGateway(), definition_ids=["liberation"], bus=bus)
    engine = _engine(three_phase_definition, transcription, scheduler, clock, bus=bus, progress=progress)

    await engine.start(before_rating=2)
    await engine.drain()
    session = await engine.wait_finished(timeout=1)

    assert session.state is SessionState.COMPLETED
    assert [r.phase_id for r in session.phase_results] == ["recognition", "liberation", "sealing"]
    assert transcription.languages == ["es-ES", "es-ES", "es-ES"]
    assert not transcription.listening
    assert engine.outcome is not None and engine.outcome.recorded
    assert [entry.id for entry in progress.ledger("liberation")] == ["session-1"]
    assert len(events.of_type(EventType.ANCHOR_DETECTED)) == 9
    await engine.close()


@pytest.mark.asyncio
async def test_partial_speech_waits_for_explicit_finalize(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    transcription.say("te reconozco")
    engine = _engine(three_phase_definition, transcription, scheduler, clock)

    await engine.start()
    await engine.drain()
    assert engine.matcher.detected_anchors() == ("te reconozco",)
    assert engine.snapshot().phase_results == []

    session = await engine.finalize()
    await engine.drain()

    assert session.state is SessionState.ACTIVE
    assert session.phase_results[0].failure == "validation"
    assert engine.sequencer.current_attempt() == 2
    assert engine.matcher.detected_anchors() == ("te reconozco",)
    await engine.close()


@pytest.mark.asyncio
async def test_partial_transcripts_are_fed_in_order(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    transcription.add_script(
        TranscriptChunk("te reco"),
        TranscriptChunk("te reconozco y"),
        TranscriptChunk("te reconozco y reconozco el dolor", is_final=True),
    )
    engine = _engine(three_phase_definition, transcription, scheduler, clock)

    await engine.start()
    await engine.drain()

    assert engine.matcher.detected_anchors() == ("te reconozco", "reconozco el dolor")
    session = await engine.finalize()
    assert session.phase_results[0].passed
    assert engine.sequencer.current_phase().id == "liberation"
    await engine.close()


@pytest.mark.asyncio
async def test_capability_error_mid_stream_fails_attempt_and_keeps_anchors(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    transcription.add_script(TranscriptChunk("te reconozco", is_final=True), PermissionDeniedError())
    engine = _engine(three_phase_definition, transcription, scheduler, clock)

    await engine.start()
    await engine.drain()

    session = engine.snapshot()
    assert session.state is SessionState.ACTIVE
    assert session.phase_results[0].failure == "permission_denied"
    assert session.phase_results[0].detected_anchors == ("te reconozco",)
    assert engine.sequencer.carried_anchors == ("te reconozco",)
    assert engine.matcher.detected_anchors() == ("te reconozco",)
    await engine.close()


@pytest.mark.asyncio
async def test_unavailable_engine_on_open_counts_as_failed_attempt(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription(open_error=EngineUnavailableError())
    engine = _engine(three_phase_definition, transcription, scheduler, clock)

    await engine.start()
    await engine.drain()

    session = engine.snapshot()
    assert session.phase_results[0].failure == "engine_unavailable"
    assert engine.sequencer.current_attempt() == 2
    assert transcription.languages == ["es-ES"]
    await engine.close()


@pytest.mark.asyncio
async def test_paused_session_ignores_speech_until_resumed(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(three_phase_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.drain()

    await engine.pause()
    await engine.feed(FULL_SPEECH["recognition"], is_final=True)
    await engine.drain()
    assert engine.matcher.detected_anchors() == ()
    assert engine.snapshot().state is SessionState.PAUSED

    await engine.resume()
    await engine.feed(FULL_SPEECH["recognition"], is_final=True)
    await engine.drain()

    assert engine.sequencer.current_phase().id == "liberation"
    await engine.close()


@pytest.mark.asyncio
async def test_timed_phase_advances_when_timer_fires(mixed_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(mixed_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.drain()
    assert transcription.languages == []

    clock.advance(60)
    scheduler.fire_pending()
    await engine.drain()

    session = engine.snapshot()
    assert session.phase_results[0].passed
    assert engine.sequencer.current_phase().id == "liberation"
    assert engine.matcher.is_open
    await engine.close()


@pytest.mark.asyncio
async def test_timeout_for_finished_phase_is_dropped(mixed_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(mixed_definition, transcription, scheduler, clock)
    await engine.start()
    scheduler.fire_pending()
    await engine.drain()
    liberation_timer = scheduler.pending[0]

    # Speech that completes the phase is queued ahead of the timer fire.
    await engine.feed("libero este karma, me libero", is_final=True)
    liberation_timer.cancelled = True
    liberation_timer.callback()
    await engine.drain()

    session = engine.snapshot()
    assert session.state is SessionState.ACTIVE
    assert engine.sequencer.current_phase().id == "sealing"
    assert [r.phase_id for r in session.phase_results] == ["breathing", "liberation"]
    await engine.close()


@pytest.mark.asyncio
async def test_voice_phase_timeout_without_anchors_abandons(mixed_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(mixed_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.expire_timer()

    session = await engine.expire_timer()

    assert session.state is SessionState.ABANDONED
    assert session.abandon_reason == "phase_timeout"
    assert await engine.wait_finished(timeout=1) == session
    await engine.close()


@pytest.mark.asyncio
async def test_illegal_command_is_reported_to_caller(mixed_definition, scheduler, clock):
    engine = _engine(mixed_definition, ScriptedTranscription(), scheduler, clock)
    await engine.start()

    with pytest.raises(InvalidTransition):
        await engine.skip()
    with pytest.raises(InvalidTransition):
        await engine.resume()

    assert engine.snapshot().state is SessionState.ACTIVE
    await engine.close()


@pytest.mark.asyncio
async def test_engine_cannot_start_twice(three_phase_definition, scheduler, clock):
    engine = _engine(three_phase_definition, ScriptedTranscription(), scheduler, clock)
    await engine.start()
    with pytest.raises(InvalidTransition):
        await engine.start()
    await engine.close()


@pytest.mark.asyncio
async def test_close_abandons_live_session(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(three_phase_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.drain()

    await engine.close()

    session = engine.snapshot()
    assert session.state is SessionState.ABANDONED
    assert session.abandon_reason == "engine_closed"
    assert not transcription.listening


@pytest.mark.asyncio
async def test_abandoned_session_is_not_recorded(three_phase_definition, scheduler, clock):
    gateway = InMemoryPersistenceGateway()
    progress = ProgressService(gateway, definition_ids=["liberation"])
    engine = _engine(three_phase_definition, ScriptedTranscription(), scheduler, clock, progress=progress)
    await engine.start()

    await engine.abandon()

    assert engine.outcome is not None and not engine.outcome.recorded
    assert progress.ledger("liberation") == []
    assert gateway.keys() == []
    await engine.close()


@pytest.mark.asyncio
async def test_persistence_failure_keeps_completed_session_in_memory(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    for phase in three_phase_definition.phases:
        transcription.say(FULL_SPEECH[phase.id])
    gateway = FailingGateway()
    progress = ProgressService(gateway, definition_ids=["liberation"])
    engine = _engine(three_phase_definition, transcription, scheduler, clock, progress=progress)

    await engine.start()
    await engine.drain()

    assert engine.snapshot().state is SessionState.COMPLETED
    assert isinstance(engine.persistence_error, PersistenceError)
    assert engine.outcome is not None and engine.outcome.recorded
    assert [a.id for a in engine.outcome.unlocked] == ["first_ritual"]
    assert len(progress.ledger("liberation")) == 1
    assert progress.recorder.dirty == ("liberation",)

    gateway.fail = False
    progress.flush()
    assert progress.recorder.dirty == ()
    assert gateway.keys()
    await engine.close()


@pytest.mark.asyncio
async def test_timer_queued_behind_pause_keeps_window_and_stays_silent(mixed_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(mixed_definition, transcription, scheduler, clock)
    await engine.start()
    scheduler.fire_pending()
    await engine.drain()
    liberation_timer = scheduler.pending[0]
    await engine.feed("me libero")
    await engine.drain()

    pausing = asyncio.create_task(engine.pause())
    await asyncio.sleep(0)
    liberation_timer.callback()
    await pausing
    await engine.drain()

    session = engine.snapshot()
    assert session.state is SessionState.PAUSED
    assert [r.phase_id for r in session.phase_results] == ["breathing"]
    assert engine.matcher.detected_anchors() == ("me libero",)
    assert not transcription.listening

    await engine.resume()
    await engine.feed("libero este karma", is_final=True)
    await engine.drain()

    assert engine.sequencer.current_phase().id == "sealing"
    await engine.close()


@pytest.mark.asyncio
async def test_expiring_timer_while_paused_changes_nothing(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(three_phase_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.feed("te reconozco", is_final=True)
    await engine.drain()
    await engine.pause()

    session = await engine.expire_timer()
    await engine.drain()

    assert session.state is SessionState.PAUSED
    assert session.phase_results == []
    assert engine.matcher.detected_anchors() == ("te reconozco",)
    assert not transcription.listening
    await engine.close()


@pytest.mark.asyncio
async def test_rejected_finalize_while_paused_keeps_phase_resumable(three_phase_definition, scheduler, clock):
    transcription = ScriptedTranscription()
    engine = _engine(three_phase_definition, transcription, scheduler, clock)
    await engine.start()
    await engine.feed("te reconozco", is_final=True)
    await engine.drain()
    await engine.pause()
    before = engine.snapshot().model_dump_json()

    with pytest.raises(InvalidTransition):
        await engine.finalize()

    assert engine.snapshot().model_dump_json() == before
    assert engine.matcher.is_open
    assert engine.matcher.detected_anchors() == ("te reconozco",)

    await engine.resume()
    await engine.feed("te reconozco, reconozco el dolor", is_final=True)
    await engine.drain()

    session = engine.snapshot()
    assert len(transcription.languages) == 3
    assert engine.sequencer.current_phase().id == "liberation"
    assert session.phase_results[0].passed
    await engine.close()
