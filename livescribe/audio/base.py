"""Abstract capture controller shared by both capture strategies."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.audio import CaptureStats
from ..models.events import AudioEvent


def _ignore(*_args) -> None:
    pass


@dataclass
class CaptureCallbacks:
    """Callbacks a capture controller emits into.

    The microphone strategy emits ``on_data``; the continuous recognition
    strategy emits text events. Both may emit engine errors and ``on_engine_ended``.
    """
    on_data: Callable[[AudioEvent], None] = _ignore
    on_engine_error: Callable[[str], None] = _ignore
    on_engine_ended: Callable[[], None] = _ignore
    on_partial_text: Callable[[str], None] = _ignore
    on_final_text: Callable[[str], None] = _ignore


class AbstractCaptureController(ABC):
    """Owns a recording source and turns it into callback events."""

    #: True when the controller produces transcript text itself instead of audio.
    emits_text = False

    def __init__(self, callbacks: Optional[CaptureCallbacks] = None):
        self.callbacks = callbacks or CaptureCallbacks()

    @abstractmethod
    def start(self) -> None:
        """Acquire the device and begin emitting events.

        Raises:
            DeviceError: permission denied or no device available
        """

    @abstractmethod
    def pause(self) -> None:
        """Suspend emission without releasing the device."""

    @abstractmethod
    def resume(self) -> None:
        """Continue emission after ``pause``."""

    @abstractmethod
    def stop(self) -> None:
        """Release every handle. Idempotent; no callbacks fire after it returns."""

    @property
    @abstractmethod
    def is_capturing(self) -> bool:
        pass

    def get_stats(self) -> Optional[CaptureStats]:
        """Capture statistics, for controllers that read audio themselves."""
        return None
