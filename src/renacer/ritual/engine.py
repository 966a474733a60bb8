"""Asyncio engine wiring transcription, matcher and sequencer together.

Every input is funneled onto one ``asyncio.Queue``: transcript chunks,
capability failures, timer fires and user commands. A single consumer task
applies them in order, so session state never sees two mutations at once
and needs no locking.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from renacer.audit import AuditLogger
from renacer.configuration.settings import Settings
from renacer.errors import CapabilityError, InvalidTransition, PersistenceError, RenacerError
from renacer.ritual.events import EventBus
from renacer.ritual.matcher import VoiceAnchorMatcher
from renacer.ritual.models import RitualDefinition, RitualSession, SessionState
from renacer.ritual.sequencer import PhaseSequencer, _new_session_id
from renacer.ritual.timers import AsyncioTimeoutScheduler, TimeoutScheduler
from renacer.transcription import TranscriptChunk, TranscriptionCapability

if TYPE_CHECKING:
    from renacer.progress.service import ProgressService, SessionOutcome

logger = logging.getLogger(__name__)


@dataclass
class _Command:
    kind: str
    args: Dict[str, Any] = field(default_factory=dict)
    future: Optional["asyncio.Future[Any]"] = None


_STOP = _Command("stop")


class RitualEngine:
    """Runs one ritual session on a serialized command queue."""

    def __init__(
        self,
        definition: RitualDefinition,
        *,
        transcription: TranscriptionCapability,
        settings: Optional[Settings] = None,
        progress: Optional["ProgressService"] = None,
        bus: Optional[EventBus] = None,
        scheduler: Optional[TimeoutScheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = _new_session_id,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.definition = definition
        self.settings = settings or Settings()
        self.bus = bus or EventBus()
        self._transcription = transcription
        self._progress = progress
        self.sequencer = PhaseSequencer(
            bus=self.bus,
            scheduler=scheduler or AsyncioTimeoutScheduler(),
            clock=clock,
            id_factory=id_factory,
            audit=audit,
        )
        self.sequencer.timeout_handler = self._on_timer
        self.matcher = VoiceAnchorMatcher(bus=self.bus, settings=self.settings.matching)
        self._queue: Optional["asyncio.Queue[_Command]"] = None
        self._consumer: Optional["asyncio.Task[None]"] = None
        self._pump: Optional["asyncio.Task[None]"] = None
        self._generation = 0
        self._finished: Optional[asyncio.Event] = None
        self.after_rating: Optional[int] = None
        self.outcome: Optional["SessionOutcome"] = None
        self.persistence_error: Optional[PersistenceError] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def snapshot(self) -> Optional[RitualSession]:
        return self.sequencer.snapshot()

    async def start(self, *, before_rating: Optional[int] = None, session_id: Optional[str] = None) -> RitualSession:
        if self._consumer is not None:
            raise InvalidTransition("Engine already started", operation="start")
        self._queue = asyncio.Queue()
        self._finished = asyncio.Event()
        self._consumer = asyncio.create_task(self._run())
        return await self._call("start", before_rating=before_rating, session_id=session_id)

    async def pause(self) -> RitualSession:
        return await self._call("pause")

    async def resume(self) -> RitualSession:
        return await self._call("resume")

    async def abandon(self, reason: str = "user_abandoned") -> RitualSession:
        return await self._call("abandon", reason=reason)

    async def skip(self) -> RitualSession:
        return await self._call("skip")

    async def finalize(self) -> RitualSession:
        """Finalize the open listening window and apply its verdict."""
        return await self._call("finalize")

    async def expire_timer(self) -> RitualSession:
        """Apply the timeout policy to the current phase right away."""
        return await self._call("timeout")

    async def feed(self, text: str, *, is_final: bool = False) -> None:
        """Inject a transcript chunk into the open window."""
        self._require_queue().put_nowait(
            _Command("transcript", {"chunk": TranscriptChunk(text, is_final), "generation": self._generation})
        )

    async def drain(self) -> None:
        """Wait until the transcript stream and the command queue are both idle."""
        queue = self._require_queue()
        while True:
            await queue.join()
            pump = self._pump
            if pump is not None and not pump.done():
                await asyncio.wait({pump})
                continue
            if queue.empty():
                return

    async def wait_finished(self, timeout: Optional[float] = None) -> Optional[RitualSession]:
        if self._finished is None:
            raise InvalidTransition("Engine not started", operation="wait")
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self.snapshot()

    async def close(self) -> None:
        """Tear everything down; a session still running is abandoned."""
        if self._consumer is None:
            return
        session = self.sequencer.snapshot()
        if session is not None and not session.is_terminal:
            with contextlib.suppress(InvalidTransition):
                await self.abandon("engine_closed")
        self._require_queue().put_nowait(_STOP)
        await self._consumer
        self._consumer = None
        await self._stop_listening()

    # ------------------------------------------------------------------
    # Queue plumbing
    # ------------------------------------------------------------------

    def _require_queue(self) -> "asyncio.Queue[_Command]":
        if self._queue is None:
            raise InvalidTransition("Engine not started", operation="enqueue")
        return self._queue

    async def _call(self, kind: str, **args: Any) -> Any:
        future = asyncio.get_running_loop().create_future()
        await self._require_queue().put(_Command(kind, args, future))
        return await future

    def _on_timer(self) -> None:
        if self._queue is None:
            return
        session = self.sequencer.snapshot()
        self._queue.put_nowait(
            _Command(
                "timeout",
                {"phase_index": session.current_phase_index, "attempt": self.sequencer.current_attempt()},
            )
        )

    async def _run(self) -> None:
        queue = self._require_queue()
        while True:
            command = await queue.get()
            try:
                if command is _STOP:
                    return
                result = await self._apply(command)
                if command.future is not None and not command.future.done():
                    command.future.set_result(result)
            except RenacerError as exc:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(exc)
                else:
                    logger.warning(
                        "Engine input rejected",
                        extra={"command": command.kind, "error_code": exc.code},
                    )
            except Exception as exc:
                if command.future is not None and not command.future.done():
                    command.future.set_exception(exc)
                else:
                    logger.error("Engine input failed", extra={"command": command.kind}, exc_info=True)
            finally:
                queue.task_done()

    async def _apply(self, command: _Command) -> Any:
        kind = command.kind
        args = command.args
        if kind == "transcript":
            return await self._on_transcript(args["chunk"], args["generation"])
        if kind == "capability_error":
            if args["generation"] != self._generation:
                return None
            return await self._on_capability_error(args["error"])
        if kind == "start":
            self.sequencer.start(
                self.definition,
                before_rating=args.get("before_rating"),
                session_id=args.get("session_id"),
            )
            await self._enter_current_phase()
            return self.snapshot()
        if kind == "finalize":
            return await self._finalize_window()
        if kind == "timeout":
            return await self._on_timeout(args.get("phase_index"), args.get("attempt"))
        if kind == "pause":
            self.sequencer.pause()
            self.matcher.suspend()
            await self._stop_listening()
            return self.snapshot()
        if kind == "resume":
            self.sequencer.resume()
            pending = self.matcher.resume()
            if self.matcher.is_open:
                logger.debug("Listening resumed", extra={"pending_anchors": len(pending)})
                self._start_listening()
            return self.snapshot()
        if kind == "abandon":
            self.sequencer.abandon(args.get("reason", "user_abandoned"))
            await self._after_transition()
            return self.snapshot()
        if kind == "skip":
            self.sequencer.skip()
            await self._after_transition()
            return self.snapshot()
        raise ValueError(f"Unknown engine command: {kind}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_transcript(self, chunk: TranscriptChunk, generation: int) -> None:
        if generation != self._generation or not self.matcher.is_open:
            logger.debug("Dropping stale transcript chunk")
            return None
        window = self.matcher.window
        if window.suspended:
            return None
        self.matcher.ingest(chunk.text, is_final=chunk.is_final)
        if self.settings.matching.auto_finalize and window.complete:
            await self._finalize_window()
        return None

    async def _on_capability_error(self, error: CapabilityError) -> Optional[RitualSession]:
        if self.sequencer.state is not SessionState.ACTIVE:
            return None
        phase = self.sequencer.current_phase()
        if phase is None or not phase.is_voice_gated:
            return None
        detected = self.matcher.detected_anchors()
        self.matcher.discard()
        await self._stop_listening()
        self.sequencer.record_capability_failure(error, detected_anchors=detected)
        await self._after_transition()
        return self.snapshot()

    async def _finalize_window(self) -> RitualSession:
        # Rejected before the window or the stream is touched.
        self.sequencer.require_active("finalize")
        if not self.matcher.is_open:
            raise InvalidTransition("No listening window is open", operation="finalize")
        await self._stop_listening()
        result = self.matcher.finalize(
            duration_seconds=self.sequencer.phase_elapsed_seconds(),
            attempt=self.sequencer.current_attempt(),
        )
        self.sequencer.advance(result)
        await self._after_transition()
        return self.snapshot()

    async def _on_timeout(
        self, phase_index: Optional[int] = None, attempt: Optional[int] = None
    ) -> Optional[RitualSession]:
        if self.sequencer.state is not SessionState.ACTIVE:
            logger.debug("Ignoring timeout while the session is not active")
            return self.snapshot()
        phase = self.sequencer.current_phase()
        if phase is None:
            return None
        if phase_index is not None and (
            phase_index != self.sequencer.snapshot().current_phase_index
            or attempt != self.sequencer.current_attempt()
        ):
            logger.debug("Dropping timeout for a phase attempt that already ended")
            return None
        if phase.is_voice_gated and self.matcher.is_open:
            await self._stop_listening()
            verdict = self.matcher.finalize(
                duration_seconds=self.sequencer.phase_elapsed_seconds(),
                attempt=self.sequencer.current_attempt(),
            )
            self.sequencer.handle_timeout(verdict)
        else:
            self.sequencer.handle_timeout()
        await self._after_transition()
        return self.snapshot()

    async def _after_transition(self) -> None:
        session = self.sequencer.snapshot()
        if session.is_terminal:
            self.matcher.discard()
            await self._stop_listening()
            self._fold(session)
            self._finished.set()
            return
        await self._enter_current_phase()

    async def _enter_current_phase(self) -> None:
        if self.sequencer.state is not SessionState.ACTIVE:
            return
        phase = self.sequencer.current_phase()
        if phase is None:
            return
        if not phase.is_voice_gated:
            self.matcher.discard()
            await self._stop_listening()
            return
        if self.matcher.is_open and self.matcher.window.phase.id == phase.id and not self.matcher.window.closed:
            return
        self.matcher.open_window(
            phase,
            session_id=self.sequencer.snapshot().id,
            preserved=self.sequencer.carried_anchors,
        )
        await self._stop_listening()
        self._start_listening()

    def _fold(self, session: RitualSession) -> None:
        if self._progress is None:
            return
        try:
            self.outcome = self._progress.record_session(session, after_rating=self.after_rating)
        except PersistenceError as exc:
            self.persistence_error = exc
            self.outcome = exc.outcome
            logger.warning(
                "Session folded in memory, persistence pending",
                extra={"session_id": session.id, "definition_id": session.definition_id},
            )

    # ------------------------------------------------------------------
    # Transcription pump
    # ------------------------------------------------------------------

    def _start_listening(self) -> None:
        self._generation += 1
        self._pump = asyncio.create_task(self._pump_transcripts(self._generation))

    async def _stop_listening(self) -> None:
        pump, self._pump = self._pump, None
        if pump is None:
            return
        self._generation += 1
        if not pump.done():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        await self._transcription.close_listening()

    async def _pump_transcripts(self, generation: int) -> None:
        queue = self._require_queue()
        try:
            stream = self._transcription.open_listening(self.settings.matching.language)
            async for chunk in stream:
                queue.put_nowait(_Command("transcript", {"chunk": chunk, "generation": generation}))
        except CapabilityError as exc:
            logger.warning(
                "Transcription capability error",
                extra={"failure": exc.failure_kind, "error_code": exc.code},
            )
            queue.put_nowait(_Command("capability_error", {"error": exc, "generation": generation}))
