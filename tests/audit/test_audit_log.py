"""Tests for the hash-chained audit log."""

from __future__ import annotations

import json
from pathlib import Path

from renacer.audit import AuditLogger


def _record(audit: AuditLogger, action: str) -> None:
    audit.record_session_event(
        session_id="s1",
        action=action,
        status="ok",
        definition_id="liberation",
        phase_id="recognition",
        attempt=1,
        metadata={"detected": 2},
    )


def test_events_are_chained(tmp_path: Path):
    audit = AuditLogger(output_dir=tmp_path)
    _record(audit, "one")
    _record(audit, "two")

    events = list(audit.iter_events())

    assert [e["action"] for e in events] == ["one", "two"]
    assert events[0]["chain_prev"] is None
    assert events[1]["chain_prev"] == events[0]["chain_hash"]
    assert events[0]["source"] == "sequencer"
    assert audit.verify()


def test_tampering_breaks_verification(tmp_path: Path):
    audit = AuditLogger(output_dir=tmp_path)
    _record(audit, "one")
    _record(audit, "two")

    lines = audit.path.read_text(encoding="utf-8").splitlines()
    first = json.loads(lines[0])
    first["status"] = "forged"
    lines[0] = json.dumps(first, separators=(",", ":"))
    audit.path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    assert not audit.verify()


def test_chain_continues_across_instances(tmp_path: Path):
    _record(AuditLogger(output_dir=tmp_path), "one")
    second = AuditLogger(output_dir=tmp_path)
    _record(second, "two")
    assert second.verify()


def test_empty_log_verifies(tmp_path: Path):
    audit = AuditLogger(output_dir=tmp_path)
    assert audit.verify()
    assert list(audit.iter_events()) == []
