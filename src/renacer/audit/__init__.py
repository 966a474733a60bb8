"""Tamper-evident audit trail for ritual session lifecycle events.

Transcript text never reaches this log; events carry ids, states and
counts only.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from hashlib import sha256
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """Represents a structured audit event."""

    session_id: str
    source: str
    action: str
    status: str
    timestamp: datetime
    definition_id: Optional[str] = None
    phase_id: Optional[str] = None
    attempt: Optional[int] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "session_id": self.session_id,
            "source": self.source,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.definition_id:
            payload["definition_id"] = self.definition_id
        if self.phase_id:
            payload["phase_id"] = self.phase_id
        if self.attempt is not None:
            payload["attempt"] = self.attempt
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class AuditLogger:
    """Writes append-only, hash-chained audit logs as JSON lines.

    Attributes:
        output_dir: Directory for the audit log file
        filename: Name of the audit log file
        manifest_name: Name of the manifest tracking the last chain hash
    """

    output_dir: Path
    filename: str = "audit.log"
    manifest_name: str = "audit_manifest.json"

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.output_dir / self.filename
        self._manifest_path = self.output_dir / self.manifest_name
        self._lock = threading.Lock()
        if not self._manifest_path.exists():
            self._save_manifest({"last_hash": None})

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            chained = self._augment_with_chain(event.to_payload())
            with self._path.open("a", encoding="utf-8") as fp:
                fp.write(json.dumps(chained, separators=(",", ":"), default=str) + "\n")

    def record_session_event(
        self,
        *,
        session_id: str,
        action: str,
        status: str,
        definition_id: Optional[str] = None,
        phase_id: Optional[str] = None,
        attempt: Optional[int] = None,
        metadata: Optional[Dict[str, object]] = None,
    ) -> None:
        self.record(
            AuditEvent(
                session_id=session_id,
                source="sequencer",
                action=action,
                status=status,
                timestamp=datetime.utcnow(),
                definition_id=definition_id,
                phase_id=phase_id,
                attempt=attempt,
                metadata=metadata or {},
            )
        )

    def verify(self, *, path: Optional[Path] = None) -> bool:
        """Verify the integrity of the audit log chain.

        Returns:
            True if chain is valid, False if tampered
        """
        target = path or self._path
        if not target.exists():
            return True
        previous_hash: Optional[str] = None
        for entry in _iter_json_lines(target):
            if entry.get("chain_prev") != previous_hash:
                return False
            current_hash = entry.get("chain_hash")
            if current_hash != _compute_chain_hash(entry):
                return False
            previous_hash = current_hash  # type: ignore[assignment]
        return True

    def iter_events(self, *, path: Optional[Path] = None) -> Iterable[Dict[str, object]]:
        target = path or self._path
        if not target.exists():
            return
        yield from _iter_json_lines(target)

    def _augment_with_chain(self, payload: Dict[str, object]) -> Dict[str, object]:
        manifest = self._load_manifest()
        augmented = dict(payload)
        augmented["chain_prev"] = manifest.get("last_hash")
        augmented["chain_hash"] = _compute_chain_hash(augmented)
        manifest["last_hash"] = augmented["chain_hash"]
        self._save_manifest(manifest)
        return augmented

    def _load_manifest(self) -> Dict[str, object]:
        return json.loads(self._manifest_path.read_text(encoding="utf-8"))

    def _save_manifest(self, manifest: Dict[str, object]) -> None:
        self._manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")


def _compute_chain_hash(payload: Dict[str, object]) -> str:
    canonical = json.dumps(
        {k: payload[k] for k in sorted(payload) if k != "chain_hash"},
        separators=(",", ":"),
        default=str,
    )
    return sha256(canonical.encode("utf-8")).hexdigest()


def _iter_json_lines(path: Path) -> Iterable[Dict[str, object]]:
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Failed to parse audit line as JSON")
                yield {}


__all__ = ["AuditEvent", "AuditLogger"]
