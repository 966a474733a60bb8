"""Append-only ledger of completed ritual sessions.

One ledger per ritual definition, stored under ``ritual.sessions.<id>``.
Writes for a definition are serialized by a per-definition lock. The
in-memory ledger is authoritative: when a write fails the entry stays in
memory, the definition is marked dirty and ``flush()`` retries later.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from renacer.errors import InvalidTransition, PersistenceError
from renacer.persistence import PersistenceGateway, sessions_key
from renacer.ritual.models import LedgerEntry, RitualSession, SessionState

logger = logging.getLogger(__name__)


def encode_ledger(entries: Iterable[LedgerEntry]) -> bytes:
    """Canonical bytes for a ledger: sorted keys, no insignificant whitespace."""
    payload = [entry.model_dump(mode="json") for entry in entries]
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_ledger(data: bytes, *, key: str = "") -> List[LedgerEntry]:
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PersistenceError(f"Ledger {key} is not valid JSON: {exc}", key=key) from exc
    if not isinstance(raw, list):
        raise PersistenceError(f"Ledger {key} must be a JSON array", key=key)
    try:
        return [LedgerEntry.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise PersistenceError(f"Ledger {key} holds an invalid entry: {exc}", key=key) from exc


class SessionRecorder:
    """Folds completed sessions into per-definition ledgers."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway
        self._ledgers: Dict[str, List[LedgerEntry]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._dirty: Set[str] = set()

    @property
    def dirty(self) -> Tuple[str, ...]:
        """Definitions whose in-memory ledger has not reached the store."""
        return tuple(sorted(self._dirty))

    @property
    def loaded_definitions(self) -> Tuple[str, ...]:
        return tuple(sorted(self._ledgers))

    def _lock_for(self, definition_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(definition_id)
            if lock is None:
                lock = self._locks[definition_id] = threading.Lock()
            return lock

    def _load(self, definition_id: str) -> List[LedgerEntry]:
        ledger = self._ledgers.get(definition_id)
        if ledger is None:
            key = sessions_key(definition_id)
            data = self._gateway.load(key)
            ledger = decode_ledger(data, key=key) if data else []
            self._ledgers[definition_id] = ledger
            logger.debug("Ledger loaded", extra={"definition_id": definition_id, "entries": len(ledger)})
        return ledger

    def ledger(self, definition_id: str) -> Tuple[LedgerEntry, ...]:
        with self._lock_for(definition_id):
            return tuple(self._load(definition_id))

    def entries(self, definition_ids: Iterable[str]) -> List[LedgerEntry]:
        """Entries of several definitions ordered by completion time."""
        merged: List[LedgerEntry] = []
        for definition_id in sorted(set(definition_ids) | set(self._ledgers)):
            merged.extend(self.ledger(definition_id))
        return sorted(merged, key=lambda entry: (entry.completed_at, entry.id))

    def record(self, session: RitualSession, *, after_rating: Optional[int] = None) -> Optional[LedgerEntry]:
        """Append a completed session; abandoned sessions are never folded in.

        Recording the same session id twice returns the existing entry.
        Raises ``PersistenceError`` if the write fails; the entry is kept in
        memory regardless.
        """
        if session.state is SessionState.ABANDONED:
            logger.info(
                "Abandoned session not recorded",
                extra={"session_id": session.id, "definition_id": session.definition_id},
            )
            return None
        if session.state is not SessionState.COMPLETED:
            raise InvalidTransition(
                f"Cannot record a {session.state.value} session",
                from_state=session.state.value,
                operation="record",
            )

        entry = LedgerEntry.from_session(session, after_rating=after_rating)
        definition_id = session.definition_id
        with self._lock_for(definition_id):
            ledger = self._load(definition_id)
            for existing in ledger:
                if existing.id == entry.id:
                    logger.debug("Session already recorded", extra={"session_id": entry.id})
                    return existing
            ledger.append(entry)
            logger.info(
                "Session appended to ledger",
                extra={"session_id": entry.id, "definition_id": definition_id, "entries": len(ledger)},
            )
            self._write(definition_id, ledger)
        return entry

    def flush(self) -> None:
        """Retry writes for every dirty definition."""
        for definition_id in self.dirty:
            with self._lock_for(definition_id):
                self._write(definition_id, self._ledgers[definition_id])

    def _write(self, definition_id: str, ledger: List[LedgerEntry]) -> None:
        key = sessions_key(definition_id)
        try:
            self._gateway.save(key, encode_ledger(ledger))
        except PersistenceError:
            self._dirty.add(definition_id)
            logger.warning("Ledger write failed, retry pending", extra={"definition_id": definition_id})
            raise
        self._dirty.discard(definition_id)
