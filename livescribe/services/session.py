"""Transcription session lifecycle: capture, restarts, dispatch and finalization."""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .notifier import CallbackRelay
from .publisher import SessionEventPublisher
from .recovery import EngineErrorCode, ErrorClass, RestartPolicy, classify_engine_error
from ..audio.base import AbstractCaptureController, CaptureCallbacks
from ..config import EngineSettings
from ..exceptions import (
    CaptureAborted,
    CaptureEngineError,
    DeviceError,
    InvalidTransition,
    LiveScribeError,
    MaxDurationExceeded,
    RestartExhausted,
    TranscriptionError,
)
from ..models.chunk import Chunk, ChunkStatus
from ..models.events import AudioEvent, SessionEvent, Status
from ..models.session import SessionInfo, SessionState
from ..models.transcription import TranscriptionResult
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.dispatcher import ChunkDispatcher
from ..transcription.segmenter import ChunkSegmenter
from ..transcription.transcript import Transcript

logger = logging.getLogger(__name__)

CaptureFactory = Callable[[CaptureCallbacks], AbstractCaptureController]


@dataclass
class SessionCallbacks:
    """Caller-facing callbacks. All are delivered in order on one relay thread."""
    on_transcript: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[LiveScribeError, bool], None]] = None
    on_status: Optional[Callable[[str], None]] = None


class TranscriptionSession:
    """One recording session from start to its single finalization.

    State moves IDLE -> CAPTURING -> DRAINING -> STOPPED. Every path out of
    CAPTURING (caller stop, maximum duration, exhausted restarts, fatal backend
    or engine error) goes through ``_begin_draining``, which starts exactly one
    finalizer thread.
    """

    def __init__(self,
                 settings: EngineSettings,
                 capture_factory: CaptureFactory,
                 backend: Optional[AbstractTranscriptionBackend] = None,
                 callbacks: Optional[SessionCallbacks] = None,
                 publisher: Optional[SessionEventPublisher] = None,
                 clock: Callable[[], float] = time.monotonic,
                 session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.settings = settings
        self.callbacks = callbacks or SessionCallbacks()
        self.publisher = publisher or SessionEventPublisher()
        self.clock = clock
        self.policy = RestartPolicy.from_settings(settings.recovery)
        self.max_duration = settings.recovery.max_duration_seconds

        self.state = SessionState.IDLE
        self.started_at: Optional[datetime] = None
        self.ended_at: Optional[datetime] = None
        self.last_activity_at: Optional[float] = None
        self.restart_attempts = 0
        self.termination_reason: Optional[str] = None
        self.error: Optional[LiveScribeError] = None
        self.transcript = Transcript()

        self._last_failure_at: Optional[float] = None
        self._text_sequence = 0
        self._partial_text = ""
        self._paused = False

        # Guards session state; only start() holds it across a capture call
        self._lock = threading.RLock()
        # Serializes capture start (restarts) against capture stop (finalization)
        self._capture_lock = threading.Lock()
        self._restart_timer: Optional[threading.Timer] = None
        self._duration_timer: Optional[threading.Timer] = None
        self._finalizer: Optional[threading.Thread] = None
        self._stopped = threading.Event()
        self._relay = CallbackRelay(f"SessionCallbacks-{self.session_id}")

        self.capture = capture_factory(CaptureCallbacks(
            on_data=self._on_data,
            on_engine_error=self._on_engine_error,
            on_engine_ended=self._on_engine_ended,
            on_partial_text=self._on_partial_text,
            on_final_text=self._on_final_text,
        ))

        self.dispatcher: Optional[ChunkDispatcher] = None
        self.segmenter: Optional[ChunkSegmenter] = None
        if not self.capture.emits_text:
            if backend is None:
                raise ValueError("An audio capture strategy needs a transcription backend")
            dispatch = settings.dispatch
            audio = settings.audio
            self.dispatcher = ChunkDispatcher(
                backend,
                language=dispatch.language,
                chunk_timeout=dispatch.chunk_timeout_seconds,
                retry_attempts=dispatch.retry_attempts,
                retry_backoff=dispatch.retry_backoff_seconds,
                on_result=self._on_chunk_result,
                on_failure=self._on_chunk_failed,
                on_fatal=self._on_dispatch_fatal,
                on_status=self._emit_status,
                name=f"dispatcher_{self.session_id}",
            )
            self.segmenter = ChunkSegmenter(
                self.dispatcher,
                flush_interval=dispatch.flush_interval_seconds,
                min_chunk_bytes=dispatch.min_chunk_bytes,
                silence_threshold=dispatch.silence_threshold,
                sample_rate=audio.sample_rate,
                channels=audio.channels,
                on_skipped=self._on_chunk_failed,
            )

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Acquire the capture device and begin transcribing.

        Raises:
            DeviceError: the device could not be acquired; the session is STOPPED
            InvalidTransition: the session was already started
        """
        with self._lock:
            if self.state is not SessionState.IDLE:
                raise InvalidTransition(f"Session {self.session_id} already {self.state.value}")
            if self.dispatcher:
                self.dispatcher.start()
            try:
                # Capture events wait on the session lock until CAPTURING is set
                self.capture.start()
            except DeviceError as e:
                logger.error(f"Session {self.session_id}: could not acquire capture device: {e}")
                self._abort_start(e)
                raise

            self._transition(SessionState.CAPTURING)
            self.started_at = datetime.now()
            self.last_activity_at = self.clock()
            self._duration_timer = self._start_timer(
                self.max_duration, self._on_max_duration, "SessionDurationTimer")

        if self.segmenter:
            self.segmenter.start()
        logger.info(f"Session {self.session_id} capturing "
                    f"({type(self.capture).__name__}, max {self.max_duration:.0f}s)")
        self._publish("started", strategy=type(self.capture).__name__)
        self._emit_status(Status.LISTENING)

    def _abort_start(self, error: DeviceError) -> None:
        self._transition(SessionState.STOPPED)
        self.termination_reason = "capture device unavailable"
        self.error = error
        self.ended_at = datetime.now()
        try:
            self.capture.stop()
        except Exception as e:
            logger.warning(f"Session {self.session_id}: error releasing capture after failed start: {e}")
        if self.dispatcher:
            self.dispatcher.shutdown()
        self._relay.close()
        self._stopped.set()

    def pause(self) -> None:
        with self._lock:
            if self.state is not SessionState.CAPTURING or self._paused:
                return
            self._paused = True
        with self._capture_lock:
            self.capture.pause()
        logger.info(f"Session {self.session_id} paused")
        self._emit_status(Status.PAUSED)

    def resume(self) -> None:
        with self._lock:
            if self.state is not SessionState.CAPTURING or not self._paused:
                return
            self._paused = False
        with self._capture_lock:
            if self.capture.is_capturing:
                self.capture.resume()
            else:
                # The engine died while paused and its restart was skipped
                try:
                    self.capture.start()
                except DeviceError as e:
                    logger.warning(f"Session {self.session_id}: device unavailable on resume: {e}")
                    self._schedule_failure(EngineErrorCode.AUDIO_CAPTURE)
                    return
        logger.info(f"Session {self.session_id} resumed")
        self._emit_status(Status.LISTENING)

    def stop(self, timeout: Optional[float] = None) -> SessionInfo:
        """Finalize the session and return its final snapshot.

        Safe to call repeatedly, concurrently, or from inside a session
        callback; every caller gets the outcome of the single finalization.
        """
        with self._lock:
            if self.state is SessionState.IDLE:
                self._transition(SessionState.STOPPED)
                self.termination_reason = "stopped before start"
                self.ended_at = datetime.now()
                if self.dispatcher:
                    self.dispatcher.shutdown()
                self._relay.close()
                self._stopped.set()
                return self.info()
        self._begin_draining("stopped by caller", surface=False, abort_in_flight=True)
        self._wait_finalized(timeout)
        return self.info()

    def wait(self, timeout: Optional[float] = None) -> Optional[SessionInfo]:
        """Block until the session stops on its own. Returns None on timeout."""
        if not self._stopped.wait(timeout):
            return None
        self._wait_finalized(timeout)
        return self.info()

    def info(self) -> SessionInfo:
        with self._lock:
            return SessionInfo(
                session_id=self.session_id,
                state=self.state,
                started_at=self.started_at,
                ended_at=self.ended_at,
                max_duration=self.max_duration,
                last_activity_at=self.last_activity_at,
                restart_attempts=self.restart_attempts,
                segments=self.transcript.segments,
                termination_reason=self.termination_reason,
                error=self.error,
            )

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    # ------------------------------------------------------------------
    # Capture events
    # ------------------------------------------------------------------

    def _on_data(self, event: AudioEvent) -> None:
        if self.segmenter is None:
            return
        self.segmenter.add_event(event)
        self._note_activity()

    def _on_partial_text(self, text: str) -> None:
        with self._lock:
            if self.state is not SessionState.CAPTURING:
                return
            self._partial_text = text
        self._note_activity()
        current = " ".join(part for part in (self.transcript.text, text) if part)
        self._relay.post(self.callbacks.on_transcript, current)

    def _on_final_text(self, text: str) -> None:
        with self._lock:
            if self.state not in (SessionState.CAPTURING, SessionState.DRAINING):
                return
            self._text_sequence += 1
            self.transcript.append(self._text_sequence, text.strip())
            self._partial_text = ""
        self._note_activity()
        self._relay.post(self.callbacks.on_transcript, self.transcript.text)

    def _on_engine_error(self, code: str) -> None:
        error_class = classify_engine_error(code)
        logger.warning(f"Session {self.session_id}: capture engine error '{code}' ({error_class.value})")
        if error_class is ErrorClass.RECOVERABLE:
            self._relay.post(self.callbacks.on_error, CaptureEngineError(code), False)
            self._schedule_failure(code)
        elif error_class is ErrorClass.TERMINAL:
            self._begin_draining("capture engine aborted", CaptureAborted("Capture engine aborted"),
                                 surface=False)
        else:
            self._begin_draining(f"capture engine error: {code}", CaptureEngineError(code))

    def _on_engine_ended(self) -> None:
        logger.info(f"Session {self.session_id}: capture engine ended")
        self._schedule_failure(EngineErrorCode.ENDED)

    def _note_activity(self) -> None:
        with self._lock:
            now = self.clock()
            self.last_activity_at = now
            self._maybe_reset_attempts(now)

    def _maybe_reset_attempts(self, now: float) -> None:
        if self.restart_attempts and self.policy.should_reset(now, self._last_failure_at):
            logger.info(f"Session {self.session_id}: {self.restart_attempts} restart attempts "
                        f"reset by activity {self.policy.reset_after:.0f}s after the last failure")
            self.restart_attempts = 0
            self._last_failure_at = None

    # ------------------------------------------------------------------
    # Restarts
    # ------------------------------------------------------------------

    def _schedule_failure(self, code: str) -> None:
        """Count a recoverable engine failure and schedule a restart, or give up."""
        with self._lock:
            if self.state is not SessionState.CAPTURING:
                return
            if self._restart_timer is not None:
                # An error followed by "ended" is one failure
                logger.debug(f"Session {self.session_id}: restart already pending, ignoring '{code}'")
                return
            now = self.clock()
            self.restart_attempts += 1
            self._last_failure_at = now
            attempts = self.restart_attempts
            exhausted = self.policy.is_exhausted(attempts)
            if not exhausted:
                delay = self.policy.delay_for(code, attempts)
                self._restart_timer = self._start_timer(delay, self._restart, "SessionRestartTimer")

        if exhausted:
            logger.error(f"Session {self.session_id}: giving up after {attempts} restart attempts")
            self._begin_draining("restart attempts exhausted", RestartExhausted(attempts))
            return
        logger.info(f"Session {self.session_id}: restarting after '{code}' in {delay:.2f}s "
                    f"(attempt {attempts}/{self.policy.max_attempts})")
        self._publish("restart_scheduled", code=code, attempt=attempts, delay=delay)
        self._emit_status(Status.RESTARTING)

    def _restart(self) -> None:
        restarted = False
        with self._capture_lock:
            with self._lock:
                self._restart_timer = None
                if self.state is not SessionState.CAPTURING:
                    return
                if self._paused:
                    logger.debug(f"Session {self.session_id}: paused, restart deferred to resume")
                    return
                attempts = self.restart_attempts
            try:
                self.capture.start()
                restarted = True
            except DeviceError as e:
                logger.warning(f"Session {self.session_id}: restart could not acquire device: {e}")
            except Exception as e:
                logger.error(f"Session {self.session_id}: restart failed: {e}", exc_info=True)

        if not restarted:
            self._schedule_failure(EngineErrorCode.AUDIO_CAPTURE)
            return
        logger.info(f"Session {self.session_id}: capture restarted (attempt {attempts})")
        self._publish("restarted", attempt=attempts)
        self._emit_status(Status.LISTENING)

    # ------------------------------------------------------------------
    # Dispatch events
    # ------------------------------------------------------------------

    def _on_chunk_result(self, result: TranscriptionResult) -> None:
        self.transcript.append(result.sequence, result.text)
        self._note_activity()
        self._relay.post(self.callbacks.on_transcript, self.transcript.text)

    def _on_chunk_failed(self, chunk: Chunk) -> None:
        event_type = "chunk_skipped" if chunk.status is ChunkStatus.SKIPPED else "chunk_failed"
        self._publish(event_type, sequence=chunk.sequence, reason=chunk.error)

    def _on_dispatch_fatal(self, error: TranscriptionError) -> None:
        self._begin_draining("transcription backend rejected credentials", error)

    def _on_max_duration(self) -> None:
        logger.info(f"Session {self.session_id} reached its maximum duration ({self.max_duration:.0f}s)")
        self._begin_draining("maximum duration reached", MaxDurationExceeded(self.max_duration))

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _begin_draining(self, reason: str, error: Optional[LiveScribeError] = None,
                        surface: bool = True, abort_in_flight: bool = False) -> bool:
        """Move CAPTURING -> DRAINING and start the finalizer. Only the first caller wins.

        Only a caller stop aborts the chunk in flight; every other path lets it
        finish within the drain deadline.
        """
        with self._lock:
            if self.state is not SessionState.CAPTURING:
                return False
            self._transition(SessionState.DRAINING)
            self.termination_reason = reason
            self.error = error
            self._cancel_timers()
            self._finalizer = threading.Thread(target=self._finalize, args=(surface, abort_in_flight),
                                               daemon=True)
            self._finalizer.name = f"SessionFinalizer-{self.session_id}"
            self._finalizer.start()
        logger.info(f"Session {self.session_id} draining: {reason}")
        return True

    def _finalize(self, surface: bool, abort_in_flight: bool) -> None:
        drain_timeout = self.settings.recovery.drain_timeout_seconds
        self._emit_status(Status.FINALIZING)
        self._publish("draining", reason=self.termination_reason)

        if self.dispatcher:
            self.dispatcher.set_drain_deadline(time.monotonic() + drain_timeout)
            if abort_in_flight:
                self.dispatcher.cancel_in_flight()

        with self._capture_lock:
            try:
                self.capture.stop()
            except Exception as e:
                logger.error(f"Session {self.session_id}: error stopping capture: {e}", exc_info=True)

        if self.segmenter and self.dispatcher:
            self.segmenter.stop_accepting()
            self.segmenter.flush_now()
            self.dispatcher.drain(drain_timeout)
            self.segmenter.close()
            self.dispatcher.shutdown()

        with self._lock:
            self._transition(SessionState.STOPPED)
            self.ended_at = datetime.now()
            error = self.error

        final_text = self.transcript.text
        logger.info(f"Session {self.session_id} stopped ({self.termination_reason}), "
                    f"{len(self.transcript)} segments")
        self._relay.post(self.callbacks.on_transcript, final_text)
        if surface and error is not None:
            self._relay.post(self.callbacks.on_error, error, True)
        self._emit_status(self._terminal_status(error))
        self._publish("stopped", reason=self.termination_reason, segments=len(self.transcript))
        self._relay.close()
        self._stopped.set()

    @staticmethod
    def _terminal_status(error: Optional[LiveScribeError]) -> str:
        if isinstance(error, RestartExhausted):
            return Status.RESTART_EXHAUSTED
        if isinstance(error, MaxDurationExceeded):
            return Status.MAX_DURATION
        return Status.STOPPED

    def _wait_finalized(self, timeout: Optional[float]) -> None:
        finalizer = self._finalizer
        if finalizer is not None and finalizer is not threading.current_thread():
            finalizer.join(timeout)
        self._relay.join(timeout)

    def _cancel_timers(self) -> None:
        for timer in (self._restart_timer, self._duration_timer):
            if timer is not None:
                timer.cancel()
        self._restart_timer = None
        self._duration_timer = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, target: SessionState) -> None:
        if not self.state.can_move_to(target):
            raise InvalidTransition(f"Session {self.session_id}: "
                                    f"{self.state.value} -> {target.value} not allowed")
        logger.debug(f"Session {self.session_id}: {self.state.value} -> {target.value}")
        self.state = target

    @staticmethod
    def _start_timer(delay: float, function: Callable[[], None], name: str) -> threading.Timer:
        timer = threading.Timer(delay, function)
        timer.daemon = True
        timer.name = name
        timer.start()
        return timer

    def _emit_status(self, status: str) -> None:
        self._relay.post(self.callbacks.on_status, status)

    def _publish(self, event_type: str, **metadata) -> None:
        event = SessionEvent(session_id=self.session_id, event_type=event_type, metadata=metadata)
        self._relay.post(self.publisher.publish, event)
