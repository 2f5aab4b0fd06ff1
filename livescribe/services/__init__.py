"""Services layer: session lifecycle, restart policy and the engine facade."""

from .engine import SessionHandle, TranscriptionEngine
from .event_log import SessionEventLog
from .publisher import SessionEventPublisher
from .recovery import RestartPolicy, classify_engine_error
from .session import SessionCallbacks, TranscriptionSession

__all__ = [
    "SessionHandle",
    "TranscriptionEngine",
    "SessionEventLog",
    "SessionEventPublisher",
    "RestartPolicy",
    "classify_engine_error",
    "SessionCallbacks",
    "TranscriptionSession",
]
