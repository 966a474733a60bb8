"""Tests for persistence gateways."""

from __future__ import annotations

from pathlib import Path

import pytest

from renacer.errors import PersistenceError
from renacer.persistence import (
    FilePersistenceGateway,
    InMemoryPersistenceGateway,
    PersistenceGateway,
    progress_key,
    sessions_key,
)


def test_keys_follow_ritual_namespace():
    assert sessions_key("liberation") == "ritual.sessions.liberation"
    assert progress_key("karmic") == "ritual.progress.karmic"


@pytest.mark.parametrize("factory", [InMemoryPersistenceGateway, None])
def test_gateways_satisfy_protocol(tmp_path: Path, factory):
    gateway = factory() if factory else FilePersistenceGateway(tmp_path)
    assert isinstance(gateway, PersistenceGateway)
    assert gateway.load("ritual.sessions.x") is None
    gateway.save("ritual.sessions.x", b"[]")
    assert gateway.load("ritual.sessions.x") == b"[]"
    gateway.delete("ritual.sessions.x")
    gateway.delete("ritual.sessions.x")
    assert gateway.load("ritual.sessions.x") is None


def test_file_gateway_replaces_atomically(tmp_path: Path):
    gateway = FilePersistenceGateway(tmp_path)
    gateway.save("ritual.sessions.liberation", b"[1]")
    gateway.save("ritual.sessions.liberation", b"[1,2]")

    assert (tmp_path / "ritual.sessions.liberation.json").read_bytes() == b"[1,2]"
    assert not list(tmp_path.glob("*.tmp"))
    assert gateway.keys() == ["ritual.sessions.liberation"]


@pytest.mark.parametrize("key", ["", "../escape", "a/b", "with space"])
def test_unsafe_keys_are_rejected(tmp_path: Path, key: str):
    gateway = FilePersistenceGateway(tmp_path)
    with pytest.raises(PersistenceError):
        gateway.save(key, b"x")
    with pytest.raises(PersistenceError):
        InMemoryPersistenceGateway().load(key)


def test_write_failure_is_wrapped(tmp_path: Path):
    gateway = FilePersistenceGateway(tmp_path)
    (tmp_path / "ritual.achievements.json").mkdir()

    with pytest.raises(PersistenceError) as exc_info:
        gateway.save("ritual.achievements", b"[]")

    assert exc_info.value.key == "ritual.achievements"
    assert not (tmp_path / "ritual.achievements.json.tmp").exists()
