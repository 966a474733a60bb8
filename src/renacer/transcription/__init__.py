"""Transcription capability consumed by the ritual engine.

Speech-to-text itself is external. The engine only needs a stream of
``TranscriptChunk`` values for one listening session and a way to stop it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Sequence, Union, runtime_checkable

from renacer.errors import CapabilityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptChunk:
    """One partial or final transcript from the speech engine."""

    text: str
    is_final: bool = False


@runtime_checkable
class TranscriptionCapability(Protocol):
    """Live speech transcription.

    ``open_listening`` raises ``PermissionDeniedError`` or
    ``EngineUnavailableError`` when listening cannot start; the returned
    stream may raise ``TranscriptionTimeoutError`` while iterating.
    """

    def open_listening(self, language: str) -> AsyncIterator[TranscriptChunk]:
        ...

    async def close_listening(self) -> None:
        ...


ScriptItem = Union[TranscriptChunk, CapabilityError]


class ScriptedTranscription:
    """Replays prepared chunks, one script per listening session.

    Each script is a sequence of chunks; a ``CapabilityError`` instance in a
    script is raised at that point of the stream. ``open_error`` makes the
    next ``open_listening`` call fail immediately.
    """

    def __init__(
        self,
        scripts: Iterable[Sequence[ScriptItem]] = (),
        *,
        delay: float = 0.0,
        open_error: Optional[CapabilityError] = None,
    ) -> None:
        self._scripts: List[List[ScriptItem]] = [list(script) for script in scripts]
        self._delay = delay
        self.open_error = open_error
        self.languages: List[str] = []
        self.closed = 0
        self._listening = False

    @property
    def listening(self) -> bool:
        return self._listening

    def add_script(self, *items: ScriptItem) -> None:
        self._scripts.append(list(items))

    def say(self, *texts: str) -> None:
        """Queue a script of final chunks, one per text."""
        self.add_script(*(TranscriptChunk(text, is_final=True) for text in texts))

    def open_listening(self, language: str) -> AsyncIterator[TranscriptChunk]:
        if self.open_error is not None:
            error, self.open_error = self.open_error, None
            raise error
        self.languages.append(language)
        script = self._scripts.pop(0) if self._scripts else []
        self._listening = True
        return self._stream(script)

    async def _stream(self, script: List[ScriptItem]) -> AsyncIterator[TranscriptChunk]:
        for item in script:
            if not self._listening:
                return
            if self._delay:
                await asyncio.sleep(self._delay)
            else:
                await asyncio.sleep(0)
            if isinstance(item, CapabilityError):
                raise item
            yield item

    async def close_listening(self) -> None:
        if self._listening:
            logger.debug("Closing scripted transcription")
        self._listening = False
        self.closed += 1


__all__ = [
    "ScriptedTranscription",
    "TranscriptChunk",
    "TranscriptionCapability",
]
