"""Capture controller backed by a continuous speech-recognition engine."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .base import AbstractCaptureController, CaptureCallbacks

logger = logging.getLogger(__name__)


class RecognitionListener:
    """Receives events from a continuous recognition backend.

    Backends call these from their own threads.
    """

    def on_partial_text(self, text: str) -> None:
        pass

    def on_final_text(self, text: str) -> None:
        pass

    def on_error(self, code: str) -> None:
        pass

    def on_ended(self) -> None:
        pass


class AbstractRecognitionBackend(ABC):
    """A recognizer that captures audio itself and streams text back."""

    @abstractmethod
    def start(self, listener: RecognitionListener) -> None:
        """Start recognizing; events go to ``listener`` until the run ends.

        Raises:
            DeviceError: no usable input device
        """

    @abstractmethod
    def stop(self) -> None:
        """End the current run. Idempotent."""


class _RunListener(RecognitionListener):
    """Forwards events from one backend run, tagged with its generation."""

    def __init__(self, owner: "ContinuousRecognitionCapture", generation: int):
        self.owner = owner
        self.generation = generation

    def on_partial_text(self, text: str) -> None:
        self.owner._forward(self.generation, "partial", text)

    def on_final_text(self, text: str) -> None:
        self.owner._forward(self.generation, "final", text)

    def on_error(self, code: str) -> None:
        self.owner._forward(self.generation, "error", code)

    def on_ended(self) -> None:
        self.owner._forward(self.generation, "ended")


class ContinuousRecognitionCapture(AbstractCaptureController):
    """Capture strategy where the engine hands back text instead of audio.

    Every ``start``/``resume`` opens a new generation; events from earlier
    generations are dropped so a lingering run cannot duplicate text.
    """

    emits_text = True

    def __init__(self, backend: AbstractRecognitionBackend,
                 callbacks: Optional[CaptureCallbacks] = None):
        super().__init__(callbacks)
        self.backend = backend
        self._emit_lock = threading.RLock()
        self._generation = 0
        self._running = False
        self._paused = False
        self.release_count = 0

    @property
    def is_capturing(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._emit_lock:
            self._generation += 1
            generation = self._generation
            self._running = True
            self._paused = False
        logger.info(f"Starting continuous recognition (run {generation})")
        try:
            self.backend.start(_RunListener(self, generation))
        except Exception:
            with self._emit_lock:
                self._running = False
            raise

    def pause(self) -> None:
        with self._emit_lock:
            if not self._running or self._paused:
                return
            self._paused = True
            self._generation += 1
        logger.info("Pausing continuous recognition")
        self.backend.stop()

    def resume(self) -> None:
        with self._emit_lock:
            if not self._running or not self._paused:
                return
            self._paused = False
            self._generation += 1
            generation = self._generation
        logger.info(f"Resuming continuous recognition (run {generation})")
        self.backend.start(_RunListener(self, generation))

    def stop(self) -> None:
        with self._emit_lock:
            self._running = False
            self._paused = False
            self._generation += 1
        self.backend.stop()
        self.release_count += 1
        logger.info("Continuous recognition stopped")

    def _forward(self, generation: int, kind: str, *args) -> None:
        with self._emit_lock:
            if not self._running or generation != self._generation:
                logger.debug(f"Dropping stale recognition event '{kind}' from run {generation}")
                return
            if kind == "partial":
                self.callbacks.on_partial_text(*args)
            elif kind == "final":
                self.callbacks.on_final_text(*args)
            elif kind == "error":
                self.callbacks.on_engine_error(*args)
            elif kind == "ended":
                self._running = False
                self.callbacks.on_engine_ended()
