"""Microphone capture controller built on PyAudio."""

import pyaudio
import time
import logging
import threading
from threading import Thread, Event
from typing import Optional
from datetime import datetime

import numpy as np

from .base import AbstractCaptureController, CaptureCallbacks
from ..exceptions import DeviceError
from ..models.audio import CaptureStats
from ..models.events import AudioEvent


logger = logging.getLogger(__name__)


class MicrophoneCapture(AbstractCaptureController):
    """Continuous microphone capture that emits one AudioEvent per PyAudio read."""

    def __init__(
        self,
        callbacks: Optional[CaptureCallbacks] = None,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        device_index: Optional[int] = None,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callbacks: Where buffers and engine errors are delivered
            sample_rate: Audio sample rate (16kHz for speech backends)
            chunk_size: Size of each audio buffer in samples
            channels: Number of audio channels (1 for mono)
            device_index: PyAudio input device, None for the system default
            format: Audio format (16-bit signed int)
        """
        super().__init__(callbacks)
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.device_index = device_index
        self.format = format

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.pause_event = Event()
        # Held while a callback runs, so stop() can wait out an in-progress emission
        self._emit_lock = threading.RLock()
        self._release_lock = threading.Lock()

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_buffers = 0
        self.peak_level = 0.0
        self.release_count = 0

        # PyAudio handles
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    @property
    def is_capturing(self) -> bool:
        return (self.recording_thread is not None
                and self.recording_thread.is_alive()
                and not self.stop_event.is_set())

    def start(self) -> None:
        """Open the input device and start reading in a background thread."""
        if self.is_capturing:
            logger.warning("Capture already in progress")
            return

        # A previous run may have died on a read error; drop its handles first
        self._join_recording_thread()
        self._release()

        logger.info("Starting microphone capture")
        self.stop_event.clear()
        self.pause_event.clear()
        try:
            self.stream = self.__open_audio_stream()
        except (OSError, ValueError) as e:
            self._release()
            raise DeviceError(f"Cannot open input device {self.device_index}: {e}") from e

        self.start_time = datetime.now()
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "MicrophoneCaptureThread"
        self.recording_thread.start()

    def pause(self) -> None:
        logger.info("Pausing microphone capture")
        self.pause_event.set()

    def resume(self) -> None:
        logger.info("Resuming microphone capture")
        self.pause_event.clear()

    def stop(self) -> None:
        """Stop reading and release the device. Safe to call any number of times."""
        logger.info("Stopping microphone capture")
        self.stop_event.set()
        with self._emit_lock:
            # Any emission that started before stop_event was set has finished now
            pass
        self._join_recording_thread()
        self._release()
        logger.info(f"Capture stopped. Total buffers: {self.total_buffers}")

    def _join_recording_thread(self) -> None:
        thread = self.recording_thread
        if thread is None or thread is threading.current_thread():
            return
        if thread.is_alive():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

    def _release(self) -> None:
        with self._release_lock:
            released = False
            if self.stream is not None:
                try:
                    self.stream.stop_stream()
                    self.stream.close()
                except OSError as e:
                    logger.warning(f"Error closing audio stream: {e}")
                self.stream = None
                released = True
            if self.pyaudio_instance is not None:
                self.pyaudio_instance.terminate()
                self.pyaudio_instance = None
                released = True
            if released:
                self.release_count += 1
                logger.debug("Audio device released")

    def __open_audio_stream(self):
        self.pyaudio_instance = pyaudio.PyAudio()
        stream = self.pyaudio_instance.open(
            format=self.format,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.device_index,
            frames_per_buffer=self.chunk_size,
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/buffer")
        return stream

    def __read_audio_buffer(self, stream) -> bytes:
        data = stream.read(self.chunk_size, exception_on_overflow=False)
        self.total_buffers += 1
        return data

    def __update_peak(self, data: bytes) -> None:
        samples = np.frombuffer(data, dtype=np.int16)
        if samples.size:
            level = float(np.abs(samples.astype(np.int32)).max()) / 32768.0
            self.peak_level = max(self.peak_level, level)

    def __publish_audio_event(self, data: bytes) -> None:
        audio_event = AudioEvent(
            buffer_id=f"buffer_{self.total_buffers}",
            data=data,
            timestamp=time.time(),
            sequence_number=self.total_buffers,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        with self._emit_lock:
            if self.stop_event.is_set():
                return
            self.callbacks.on_data(audio_event)

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        stream = self.stream
        while not self.stop_event.is_set():
            try:
                data = self.__read_audio_buffer(stream)
            except OSError as e:
                if self.stop_event.is_set():
                    break
                logger.error(f"Audio read failed: {e}")
                with self._emit_lock:
                    if not self.stop_event.is_set():
                        self.callbacks.on_engine_error("audio-capture")
                self._release()
                return
            if self.pause_event.is_set():
                continue
            self.__update_peak(data)
            self.__publish_audio_event(data)

    def get_stats(self) -> CaptureStats:
        """Get current capture statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return CaptureStats(
            is_capturing=self.is_capturing,
            is_paused=self.pause_event.is_set(),
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            total_buffers=self.total_buffers,
            peak_level=self.peak_level,
        )

    def __del__(self):
        """Ensure resources are cleaned up on deletion."""
        if self.is_capturing:
            self.stop()
