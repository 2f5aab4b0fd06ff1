"""Public entry point: builds sessions from settings and hands out handles."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .publisher import SessionEventPublisher
from .session import CaptureFactory, SessionCallbacks, TranscriptionSession
from ..audio.base import AbstractCaptureController, CaptureCallbacks
from ..audio.capture import MicrophoneCapture
from ..audio.google_streaming import GoogleStreamingRecognizer
from ..audio.recognition import ContinuousRecognitionCapture
from ..config import EngineSettings, LiveScribeConfig
from ..exceptions import LiveScribeError
from ..models.audio import CaptureStats
from ..models.session import SessionInfo, SessionState
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.google_backend import GoogleSpeechBackend
from ..transcription.whisper_backend import WhisperBackend

logger = logging.getLogger(__name__)

BackendFactory = Callable[[], AbstractTranscriptionBackend]


class SessionHandle:
    """Caller's view of a running session."""

    __slots__ = ("_session",)

    def __init__(self, session: TranscriptionSession):
        self._session = session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def transcript(self) -> str:
        return self._session.transcript.text

    def info(self) -> SessionInfo:
        return self._session.info()

    def capture_stats(self) -> Optional[CaptureStats]:
        return self._session.capture.get_stats()

    def pause(self) -> None:
        self._session.pause()

    def resume(self) -> None:
        self._session.resume()

    def stop(self, timeout: Optional[float] = None) -> SessionInfo:
        return self._session.stop(timeout)

    def wait(self, timeout: Optional[float] = None) -> Optional[SessionInfo]:
        """Block until the session stops by itself (max duration, fatal error)."""
        return self._session.wait(timeout)

    def __repr__(self) -> str:
        return f"SessionHandle({self.session_id!r}, {self.state.value})"


class TranscriptionEngine:
    """Creates transcription sessions and owns the shared transcription backend.

    Capture controllers and backends come from factories so tests and
    embedding applications can substitute their own.
    """

    def __init__(self,
                 settings: Optional[EngineSettings] = None,
                 config: Optional[LiveScribeConfig] = None,
                 capture_factory: Optional[CaptureFactory] = None,
                 backend_factory: Optional[BackendFactory] = None,
                 publisher: Optional[SessionEventPublisher] = None):
        """Initialize the engine.

        Args:
            settings: Validated settings; built from ``config`` when omitted
            config: YAML configuration, needed for credentials of the default factories
            capture_factory: Builds a capture controller from session callbacks
            backend_factory: Builds the chunk transcription backend
            publisher: Session event publisher shared by all sessions
        """
        self.config = config
        if settings is None:
            settings = EngineSettings.from_config(config) if config else EngineSettings()
        self.settings = settings
        self.capture_factory = capture_factory or self._create_capture
        self.backend_factory = backend_factory or self._create_backend
        self.publisher = publisher or SessionEventPublisher()

        self.sessions: Dict[str, TranscriptionSession] = {}
        self._backend: Optional[AbstractTranscriptionBackend] = None
        self._lock = threading.Lock()

        logger.info(f"TranscriptionEngine ready: strategy={settings.audio.strategy}, "
                    f"backend={settings.dispatch.backend}")

    def start(self,
              on_transcript: Callable[[str], None],
              on_error: Optional[Callable[[LiveScribeError, bool], None]] = None,
              on_status: Optional[Callable[[str], None]] = None) -> SessionHandle:
        """Start a new session.

        Raises:
            DeviceError: the capture device could not be acquired
        """
        callbacks = SessionCallbacks(on_transcript=on_transcript, on_error=on_error, on_status=on_status)
        session = TranscriptionSession(
            self.settings,
            self.capture_factory,
            backend=self._get_backend(),
            callbacks=callbacks,
            publisher=self.publisher,
        )
        session.start()
        with self._lock:
            self._prune_stopped()
            self.sessions[session.session_id] = session
        return SessionHandle(session)

    def stop(self, handle: SessionHandle, timeout: Optional[float] = None) -> SessionInfo:
        info = handle.stop(timeout)
        with self._lock:
            self.sessions.pop(handle.session_id, None)
        return info

    def active_sessions(self) -> List[SessionHandle]:
        with self._lock:
            self._prune_stopped()
            sessions = list(self.sessions.values())
        return [SessionHandle(s) for s in sessions]

    def _prune_stopped(self) -> None:
        # Sessions that ended on their own never pass through stop()
        for session_id in [sid for sid, s in self.sessions.items() if s.is_stopped]:
            logger.debug(f"Forgetting stopped session {session_id}")
            del self.sessions[session_id]

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop every session and release the backend."""
        with self._lock:
            sessions = list(self.sessions.values())
            self.sessions.clear()
        for session in sessions:
            session.stop(timeout)

        backend, self._backend = self._backend, None
        if backend is not None:
            try:
                backend.cleanup()
            except Exception as e:
                logger.warning(f"Error cleaning up {backend.service_name} backend: {e}")
        logger.info("TranscriptionEngine shut down")

    def __enter__(self) -> "TranscriptionEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def _get_backend(self) -> Optional[AbstractTranscriptionBackend]:
        if self.settings.audio.strategy == "continuous" and self.backend_factory == self._create_backend:
            # The recognizer transcribes by itself
            return None
        with self._lock:
            if self._backend is None:
                self._backend = self.backend_factory()
            return self._backend

    def _require_config(self) -> LiveScribeConfig:
        if self.config is None:
            self.config = LiveScribeConfig()
        return self.config

    def _create_backend(self) -> AbstractTranscriptionBackend:
        """Create and initialize the configured chunk transcription backend."""
        config = self._require_config()
        dispatch = self.settings.dispatch

        if dispatch.backend == "whisper":
            backend: AbstractTranscriptionBackend = WhisperBackend(
                api_key=config.get_openai_api_key(),
                model=config.get('openai.model', 'whisper-1'),
                language=dispatch.language,
                request_timeout=dispatch.chunk_timeout_seconds,
            )
        else:
            use_enhanced = config.get('google_cloud.use_enhanced_model', True)
            enable_punctuation = config.get('google_cloud.enable_automatic_punctuation', True)
            logger.debug(f"Google config: language={dispatch.language}, enhanced={use_enhanced}, "
                         f"punctuation={enable_punctuation}")
            backend = GoogleSpeechBackend(
                credentials_path=config.get_google_credentials_path(),
                language=dispatch.language,
                use_enhanced=use_enhanced,
                enable_automatic_punctuation=enable_punctuation,
                request_timeout=dispatch.chunk_timeout_seconds,
            )

        logger.info(f"Initializing {backend.service_name} backend...")
        if not backend.initialize():
            raise RuntimeError(f"Failed to initialize {backend.service_name} backend")
        return backend

    def _create_capture(self, callbacks: CaptureCallbacks) -> AbstractCaptureController:
        audio = self.settings.audio
        if audio.strategy == "continuous":
            config = self._require_config()
            recognizer = GoogleStreamingRecognizer(
                credentials_path=config.get_google_credentials_path(),
                sample_rate=audio.sample_rate,
                chunk_size=audio.chunk_size,
                channels=audio.channels,
                language=self.settings.dispatch.language,
                device_index=audio.device_index,
                enable_automatic_punctuation=config.get('google_cloud.enable_automatic_punctuation', True),
            )
            recognizer.initialize()
            return ContinuousRecognitionCapture(recognizer, callbacks)

        return MicrophoneCapture(
            callbacks,
            sample_rate=audio.sample_rate,
            chunk_size=audio.chunk_size,
            channels=audio.channels,
            device_index=audio.device_index,
        )
