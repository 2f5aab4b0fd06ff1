"""Pytest configuration and fixtures for livescribe tests."""

import asyncio
import logging
import os
import threading
import time
from typing import Callable, Dict, List, Optional, Union
from unittest.mock import Mock, patch

import numpy as np
import pytest

from livescribe.audio.base import AbstractCaptureController, CaptureCallbacks
from livescribe.config import DispatchSettings, EngineSettings, RecoverySettings
from livescribe.exceptions import DeviceError
from livescribe.models.events import AudioEvent
from livescribe.models.transcription import TranscriptionRequest
from livescribe.transcription.base import AbstractTranscriptionBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_collection_modifyitems(config, items):
    if os.environ.get("LIVESCRIBE_HARDWARE_TESTS") == "1":
        return
    skip_hardware = pytest.mark.skip(reason="set LIVESCRIBE_HARDWARE_TESTS=1 to run hardware tests")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


Response = Union[str, Exception]


class ScriptedBackend(AbstractTranscriptionBackend):
    """Backend whose answer and delay are scripted per chunk sequence.

    A script entry is a list consumed one item per attempt, so
    ``[NetworkError("x"), "hello"]`` fails once and then succeeds.
    """

    service_name = "scripted"

    def __init__(self, script: Optional[Dict[int, List[Response]]] = None,
                 delays: Optional[Dict[int, float]] = None, default_delay: float = 0.0):
        super().__init__("en-US")
        self.script = {seq: list(items) for seq, items in (script or {}).items()}
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: List[int] = []
        self.timeouts: List[Optional[float]] = []
        self.active = 0
        self.max_active = 0
        self.cancelled: List[int] = []
        self._lock = threading.Lock()

    async def transcribe(self, request: TranscriptionRequest) -> str:
        with self._lock:
            self.calls.append(request.sequence)
            self.timeouts.append(request.timeout)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(request.sequence, self.default_delay))
            items = self.script.get(request.sequence)
            response = items.pop(0) if items else f"chunk {request.sequence}"
            if isinstance(response, Exception):
                raise response
            return response
        except asyncio.CancelledError:
            with self._lock:
                self.cancelled.append(request.sequence)
            raise
        finally:
            with self._lock:
                self.active -= 1

    def initialize(self) -> bool:
        return True

    def cleanup(self) -> None:
        pass


class ManualCapture(AbstractCaptureController):
    """Capture controller driven by the test instead of a device."""

    def __init__(self, callbacks: Optional[CaptureCallbacks] = None, emits_text: bool = False,
                 start_errors: Optional[List[Exception]] = None):
        super().__init__(callbacks)
        self.emits_text = emits_text
        self.start_errors = list(start_errors or [])
        self.start_calls = 0
        self.stop_calls = 0
        self.release_count = 0
        self.paused = False
        self._capturing = False
        self._held = False
        self._buffers = 0

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    def start(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)
        self._capturing = True
        self._held = True
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def stop(self) -> None:
        self.stop_calls += 1
        self._capturing = False
        if self._held:
            self._held = False
            self.release_count += 1

    # Test drivers

    def emit_data(self, data: bytes) -> None:
        self._buffers += 1
        self.callbacks.on_data(AudioEvent(
            buffer_id=f"buffer_{self._buffers}",
            data=data,
            timestamp=time.time(),
            sequence_number=self._buffers,
        ))

    def emit_error(self, code: str) -> None:
        self._capturing = False
        self.callbacks.on_engine_error(code)

    def emit_ended(self) -> None:
        self._capturing = False
        self.callbacks.on_engine_ended()

    def emit_partial(self, text: str) -> None:
        self.callbacks.on_partial_text(text)

    def emit_final(self, text: str) -> None:
        self.callbacks.on_final_text(text)


class CaptureFactory:
    """Records the controller it builds so tests can drive it."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.capture: Optional[ManualCapture] = None

    def __call__(self, callbacks: CaptureCallbacks) -> ManualCapture:
        self.capture = ManualCapture(callbacks, **self.kwargs)
        return self.capture


class CallbackRecorder:
    """Collects session callbacks delivered on the relay thread."""

    def __init__(self):
        self.transcripts: List[str] = []
        self.errors: List[tuple] = []
        self.statuses: List[str] = []
        self._lock = threading.Lock()

    def on_transcript(self, text: str) -> None:
        with self._lock:
            self.transcripts.append(text)

    def on_error(self, error, terminal: bool) -> None:
        with self._lock:
            self.errors.append((error, terminal))

    def on_status(self, status: str) -> None:
        with self._lock:
            self.statuses.append(status)


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # Generate 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate  # ~0.064 seconds
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    # Convert to 16-bit integers
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        def _read(*args, **kwargs):
            time.sleep(0.005)
            return b'\x00' * 2048  # Silent audio

        mock_stream.read.side_effect = _read
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_sample_size.return_value = 2

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def fast_settings() -> EngineSettings:
    """Settings with short delays; chunks are flushed by the test, not the timer."""
    return EngineSettings(
        dispatch=DispatchSettings(
            flush_interval_seconds=60.0,
            chunk_timeout_seconds=1.0,
            retry_attempts=1,
            retry_backoff_seconds=0.01,
        ),
        recovery=RecoverySettings(
            max_duration_seconds=30.0,
            max_restart_attempts=10,
            restart_reset_seconds=30.0,
            drain_timeout_seconds=2.0,
            restart_delays={"no-speech": 0.01, "audio-capture": 0.01, "network": 0.01, "ended": 0.01},
            backoff_factor=1.0,
        ),
    )


@pytest.fixture
def speech_bytes(sample_audio_chunk):
    """About a quarter second of tone, comfortably above the minimum chunk size."""
    return sample_audio_chunk * 4


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def device_error():
    return DeviceError("Permission denied")


@pytest.fixture
def wait_for():
    return wait_until


@pytest.fixture
def backend_cls():
    return ScriptedBackend


@pytest.fixture
def capture_factory():
    """Factory for a microphone-style (audio emitting) manual capture."""
    return CaptureFactory()


@pytest.fixture
def text_capture_factory():
    """Factory for a continuous-recognition-style (text emitting) manual capture."""
    return CaptureFactory(emits_text=True)
