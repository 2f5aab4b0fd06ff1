"""Error taxonomy for the transcription engine."""

from typing import Optional


class LiveScribeError(Exception):
    """Base class for every error raised or surfaced by livescribe."""


class DeviceError(LiveScribeError):
    """Capture device is missing or permission to use it was denied."""


class InvalidTransition(LiveScribeError):
    """A session or chunk was asked to move to a state it cannot reach."""


class TranscriptionError(LiveScribeError):
    """A transcription backend call failed.

    ``transient`` errors may succeed when the same request is retried.
    """

    transient = False


class NetworkError(TranscriptionError):
    transient = True


class RateLimitError(TranscriptionError):
    transient = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TranscriptionTimeout(TranscriptionError):
    transient = True


class AuthError(TranscriptionError):
    """Backend rejected our credentials. Retrying will not help."""


class SessionTerminated(LiveScribeError):
    """A condition that forces a session to finalize."""


class RestartExhausted(SessionTerminated):
    def __init__(self, attempts: int):
        super().__init__(f"Capture engine restarted {attempts} times without recovering")
        self.attempts = attempts


class MaxDurationExceeded(SessionTerminated):
    def __init__(self, max_duration: float):
        super().__init__(f"Session reached its maximum duration of {max_duration:.1f}s")
        self.max_duration = max_duration


class CaptureAborted(SessionTerminated):
    """The capture engine reported ``aborted``."""


class CaptureEngineError(LiveScribeError):
    """The capture engine reported an error code we do not recover from."""

    def __init__(self, code: str):
        super().__init__(f"Capture engine error: {code}")
        self.code = code
