"""Tests for the append-only session ledger."""

from __future__ import annotations

import pytest

from renacer.errors import InvalidTransition, PersistenceError
from renacer.persistence import InMemoryPersistenceGateway, sessions_key
from renacer.progress.recorder import SessionRecorder, decode_ledger, encode_ledger
from renacer.ritual.models import SessionState

from tests.conftest import FailingGateway


def test_completed_session_is_appended_and_persisted(make_session):
    gateway = InMemoryPersistenceGateway()
    recorder = SessionRecorder(gateway)

    entry = recorder.record(make_session("s1", before=2), after_rating=4)

    assert entry.emotional_improvement == 2
    stored = gateway.load(sessions_key("liberation"))
    assert stored == encode_ledger([entry])
    assert decode_ledger(stored) == [entry]


def test_abandoned_session_is_never_recorded(make_session):
    gateway = InMemoryPersistenceGateway()
    recorder = SessionRecorder(gateway)

    assert recorder.record(make_session("s1", state=SessionState.ABANDONED)) is None

    assert gateway.keys() == []
    assert recorder.ledger("liberation") == ()


def test_live_session_cannot_be_recorded(make_session):
    recorder = SessionRecorder(InMemoryPersistenceGateway())
    with pytest.raises(InvalidTransition):
        recorder.record(make_session("s1", state=SessionState.PAUSED))


def test_recording_twice_keeps_one_entry(make_session):
    recorder = SessionRecorder(InMemoryPersistenceGateway())
    first = recorder.record(make_session("s1"), after_rating=3)
    again = recorder.record(make_session("s1"), after_rating=5)
    assert again == first
    assert len(recorder.ledger("liberation")) == 1


def test_ledger_survives_a_new_recorder(make_session):
    gateway = InMemoryPersistenceGateway()
    SessionRecorder(gateway).record(make_session("s1"))

    reloaded = SessionRecorder(gateway)

    assert [entry.id for entry in reloaded.ledger("liberation")] == ["s1"]


def test_entries_merge_definitions_by_completion_time(make_session):
    recorder = SessionRecorder(InMemoryPersistenceGateway())
    recorder.record(make_session("late", minutes=30))
    recorder.record(make_session("early", minutes=5, definition_id="karmic"))

    assert [entry.id for entry in recorder.entries(["liberation", "karmic"])] == ["early", "late"]
    assert recorder.loaded_definitions == ("karmic", "liberation")


def test_failed_write_keeps_entry_in_memory_until_flush(make_session):
    gateway = FailingGateway()
    recorder = SessionRecorder(gateway)

    with pytest.raises(PersistenceError) as exc_info:
        recorder.record(make_session("s1"))

    assert exc_info.value.key == sessions_key("liberation")
    assert [entry.id for entry in recorder.ledger("liberation")] == ["s1"]
    assert recorder.dirty == ("liberation",)

    gateway.fail = False
    recorder.flush()

    assert recorder.dirty == ()
    assert len(decode_ledger(gateway.load(sessions_key("liberation")))) == 1


@pytest.mark.parametrize("payload", [b"not json", b"{}", b'[{"id": 1}]'])
def test_corrupt_ledger_is_reported(payload):
    gateway = InMemoryPersistenceGateway()
    gateway.save(sessions_key("liberation"), payload)
    with pytest.raises(PersistenceError):
        SessionRecorder(gateway).ledger("liberation")
