"""Capture engine error classification and restart backoff."""

import logging
from enum import Enum
from typing import Dict, Optional

from ..config import RecoverySettings

logger = logging.getLogger(__name__)


class EngineErrorCode:
    """Codes a capture engine reports through ``on_engine_error``."""
    NO_SPEECH = "no-speech"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network"
    ABORTED = "aborted"
    # Not an error code: the key used for restarts after ``on_engine_ended``
    ENDED = "ended"


class ErrorClass(Enum):
    RECOVERABLE = "recoverable"  # restart capture after a delay
    TERMINAL = "terminal"        # drain without restarting, nothing to report
    SURFACED = "surfaced"        # report to the caller, then drain


_RECOVERABLE = {EngineErrorCode.NO_SPEECH, EngineErrorCode.AUDIO_CAPTURE, EngineErrorCode.NETWORK}


def classify_engine_error(code: str) -> ErrorClass:
    if code in _RECOVERABLE:
        return ErrorClass.RECOVERABLE
    if code == EngineErrorCode.ABORTED:
        return ErrorClass.TERMINAL
    return ErrorClass.SURFACED


class RestartPolicy:
    """Decides how long to wait before a restart and when attempts reset."""

    def __init__(self,
                 max_attempts: int = 10,
                 delays: Optional[Dict[str, float]] = None,
                 backoff_factor: float = 1.5,
                 max_delay: float = 10.0,
                 reset_after: float = 30.0):
        self.max_attempts = max_attempts
        self.delays = dict(delays or RecoverySettings().restart_delays)
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.reset_after = reset_after

    @classmethod
    def from_settings(cls, settings: RecoverySettings) -> "RestartPolicy":
        return cls(
            max_attempts=settings.max_restart_attempts,
            delays=settings.restart_delays,
            backoff_factor=settings.backoff_factor,
            max_delay=settings.max_restart_delay_seconds,
            reset_after=settings.restart_reset_seconds,
        )

    def delay_for(self, code: str, attempt: int) -> float:
        """Delay before restart number ``attempt`` (1-based) after ``code``."""
        base = self.delays.get(code, self.delays.get(EngineErrorCode.ENDED, 0.1))
        delay = base * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def should_reset(self, now: float, last_failure_at: Optional[float]) -> bool:
        """True when activity seen at ``now`` comes ``reset_after`` seconds or more after the last failure."""
        if last_failure_at is None:
            return False
        return now - last_failure_at >= self.reset_after
