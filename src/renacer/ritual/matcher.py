"""Voice anchor matching over a growing transcript.

Anchors and transcripts are normalized the same way (lowercase, diacritics
removed, optional punctuation stripping, whitespace collapsed) and an
anchor counts as spoken when either:

* the normalized anchor is a contiguous substring of the transcript, or
* at least ``token_overlap_threshold`` of the anchor's tokens are present
  in the transcript's tokens (equal, contained, or sharing a prefix).

Detection is monotonic within a listening window: once an anchor is
flagged it stays flagged, whatever the transcription engine revises later.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from renacer.configuration.settings import MatchingSettings
from renacer.errors import InvalidTransition, ValidationFailure
from renacer.ritual.events import EventBus, EventType
from renacer.ritual.models import PhaseResult, PhaseSpec, anchor_ratio

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

# Shorter transcript tokens are too ambiguous to count as a prefix match.
MIN_PREFIX_LENGTH = 3


def normalize_text(text: str, *, strip_punctuation: bool = True) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    if strip_punctuation:
        folded = _PUNCTUATION.sub(" ", folded)
    return _WHITESPACE.sub(" ", folded).strip()


def tokenize(normalized: str) -> List[str]:
    return normalized.split() if normalized else []


def _token_present(token: str, transcript_tokens: Sequence[str]) -> bool:
    for candidate in transcript_tokens:
        if token in candidate:
            return True
        if len(candidate) >= MIN_PREFIX_LENGTH and token.startswith(candidate):
            return True
    return False


def token_overlap(anchor: str, transcript_tokens: Sequence[str]) -> float:
    """Fraction of the (normalized) anchor's tokens found in the transcript."""
    anchor_tokens = tokenize(anchor)
    if not anchor_tokens:
        return 0.0
    hits = sum(1 for token in anchor_tokens if _token_present(token, transcript_tokens))
    return hits / len(anchor_tokens)


def anchor_detected(
    anchor: str,
    transcript: str,
    *,
    threshold: float = 0.8,
    transcript_tokens: Optional[Sequence[str]] = None,
) -> bool:
    """Apply the detection rule to already normalized strings."""
    if not anchor or not transcript:
        return False
    if anchor in transcript:
        return True
    tokens = transcript_tokens if transcript_tokens is not None else tokenize(transcript)
    return token_overlap(anchor, tokens) >= threshold


def reading_accuracy(expected_text: str, spoken_text: str, *, strip_punctuation: bool = True) -> float:
    """Share of distinct expected words that were spoken."""
    expected = set(tokenize(normalize_text(expected_text, strip_punctuation=strip_punctuation)))
    if not expected:
        return 1.0
    spoken = set(tokenize(normalize_text(spoken_text, strip_punctuation=strip_punctuation)))
    return round(len(expected & spoken) / len(expected), 4)


class ListeningWindow:
    """Transcript buffer and detected anchors for one phase attempt.

    Final chunks are committed; a partial chunk replaces the previous
    partial, since engines re-send the whole utterance as it grows.
    """

    def __init__(
        self,
        phase: PhaseSpec,
        *,
        preserved: Iterable[str] = (),
        settings: Optional[MatchingSettings] = None,
    ) -> None:
        self.phase = phase
        self._settings = settings or MatchingSettings()
        self._committed: List[str] = []
        self._partial = ""
        self._normalized_anchors = {
            anchor: normalize_text(anchor, strip_punctuation=self._settings.strip_punctuation)
            for anchor in phase.required_anchors
        }
        self._detected: Set[str] = {a for a in preserved if a in self._normalized_anchors}
        self.preserved: Tuple[str, ...] = tuple(self.detected_anchors)
        self.suspended = False
        self.closed = False

    @property
    def transcript(self) -> str:
        parts = self._committed + ([self._partial] if self._partial else [])
        return " ".join(parts)

    @property
    def detected_anchors(self) -> Tuple[str, ...]:
        """Detected anchors in the order the phase declares them."""
        return tuple(a for a in self.phase.required_anchors if a in self._detected)

    def missing_anchors(self) -> Tuple[str, ...]:
        return tuple(a for a in self.phase.required_anchors if a not in self._detected)

    @property
    def complete(self) -> bool:
        return not self.missing_anchors()

    @property
    def passing(self) -> bool:
        return len(self._detected) >= self.phase.min_anchor_matches

    def ingest(self, text: str, *, is_final: bool = False) -> List[str]:
        """Feed a transcript chunk; return anchors detected for the first time."""
        if self.closed:
            raise InvalidTransition(
                "Listening window is closed", from_state="closed", operation="ingest"
            )
        if self.suspended:
            logger.debug("Ignoring transcript while suspended", extra={"phase_id": self.phase.id})
            return []
        if is_final:
            if text.strip():
                self._committed.append(text)
            self._partial = ""
        else:
            self._partial = text
        return self._scan()

    def _scan(self) -> List[str]:
        transcript = normalize_text(self.transcript, strip_punctuation=self._settings.strip_punctuation)
        tokens = tokenize(transcript)
        newly: List[str] = []
        for anchor in self.missing_anchors():
            if anchor_detected(
                self._normalized_anchors[anchor],
                transcript,
                threshold=self._settings.token_overlap_threshold,
                transcript_tokens=tokens,
            ):
                self._detected.add(anchor)
                newly.append(anchor)
        return newly

    def suspend(self) -> None:
        self.suspended = True

    def resume(self) -> Tuple[str, ...]:
        """Resume listening; returns the anchors still being listened for."""
        self.suspended = False
        return self.missing_anchors()

    def to_result(self, *, duration_seconds: float = 0.0, attempt: int = 1) -> PhaseResult:
        detected = self.detected_anchors
        accuracy = anchor_ratio(len(detected), len(self.phase.required_anchors))
        reading = None
        if self.phase.expected_text:
            reading = reading_accuracy(
                self.phase.expected_text,
                self.transcript,
                strip_punctuation=self._settings.strip_punctuation,
            )
        return PhaseResult(
            phase_id=self.phase.id,
            detected_anchors=detected,
            missing_anchors=self.missing_anchors(),
            min_anchor_matches=self.phase.min_anchor_matches,
            accuracy=accuracy,
            passed=self.passing,
            duration_seconds=max(0.0, duration_seconds),
            attempt=attempt,
            failure=None if self.passing else "validation",
            reading_accuracy=reading,
        )


class VoiceAnchorMatcher:
    """Owns the single open listening window of an engine instance."""

    def __init__(
        self,
        *,
        bus: Optional[EventBus] = None,
        settings: Optional[MatchingSettings] = None,
    ) -> None:
        self._bus = bus
        self.settings = settings or MatchingSettings()
        self._window: Optional[ListeningWindow] = None
        self._session_id = ""
        self.last_discarded: Optional[PhaseResult] = None

    @property
    def window(self) -> Optional[ListeningWindow]:
        return self._window

    @property
    def is_open(self) -> bool:
        return self._window is not None

    def open_window(
        self,
        phase: PhaseSpec,
        *,
        session_id: str = "",
        preserved: Iterable[str] = (),
    ) -> ListeningWindow:
        """Open a window for ``phase``; an already open window is finalized and discarded."""
        if self._window is not None:
            self.last_discarded = self._window.to_result()
            self._window.closed = True
            logger.debug(
                "Discarded previous listening window",
                extra={
                    "phase_id": self._window.phase.id,
                    "detected": len(self.last_discarded.detected_anchors),
                },
            )
        self._window = ListeningWindow(phase, preserved=preserved, settings=self.settings)
        self._session_id = session_id
        logger.debug(
            "Opened listening window",
            extra={
                "session_id": session_id,
                "phase_id": phase.id,
                "preserved": len(self._window.preserved),
            },
        )
        return self._window

    def _require_window(self, operation: str) -> ListeningWindow:
        if self._window is None:
            raise InvalidTransition(
                "No listening window is open", from_state="closed", operation=operation
            )
        return self._window

    def ingest(self, text: str, *, is_final: bool = False) -> List[str]:
        window = self._require_window("ingest")
        newly = window.ingest(text, is_final=is_final)
        for anchor in newly:
            logger.debug(
                "Anchor detected",
                extra={"session_id": self._session_id, "phase_id": window.phase.id},
            )
            if self._bus is not None:
                self._bus.emit(
                    EventType.ANCHOR_DETECTED,
                    self._session_id,
                    phase_id=window.phase.id,
                    anchor=anchor,
                    detected=len(window.detected_anchors),
                    required=window.phase.min_anchor_matches,
                )
        return newly

    def detected_anchors(self) -> Tuple[str, ...]:
        return self._window.detected_anchors if self._window else ()

    def missing_anchors(self) -> Tuple[str, ...]:
        return self._window.missing_anchors() if self._window else ()

    def suspend(self) -> None:
        if self._window is not None:
            self._window.suspend()

    def resume(self) -> Tuple[str, ...]:
        if self._window is None:
            return ()
        return self._window.resume()

    def finalize(self, *, duration_seconds: float = 0.0, attempt: int = 1) -> PhaseResult:
        """Compute the verdict for the open window and close it."""
        window = self._require_window("finalize")
        result = window.to_result(duration_seconds=duration_seconds, attempt=attempt)
        window.closed = True
        self._window = None
        logger.info(
            "Listening window finalized",
            extra={
                "session_id": self._session_id,
                "phase_id": result.phase_id,
                "detected": len(result.detected_anchors),
                "passed": result.passed,
                "attempt": attempt,
            },
        )
        return result

    def discard(self) -> None:
        """Tear down the open window without producing a verdict."""
        if self._window is not None:
            self._window.closed = True
            self._window = None

    def validate_text(
        self, phase: PhaseSpec, text: str, *, attempt: int = 1, strict: bool = False
    ) -> PhaseResult:
        """Evaluate a complete text against ``phase`` without touching the open window.

        With ``strict=True`` a failing verdict raises ``ValidationFailure``
        carrying the result.
        """
        window = ListeningWindow(phase, settings=self.settings)
        window.ingest(text, is_final=True)
        result = window.to_result(attempt=attempt)
        if strict and not result.passed:
            raise ValidationFailure(
                f"Phase '{phase.id}' needs {phase.min_anchor_matches} anchors, "
                f"{len(result.detected_anchors)} detected",
                result=result,
                details={"phase_id": phase.id, "missing": list(result.missing_anchors)},
            )
        return result
