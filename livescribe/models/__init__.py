"""Data models for the livescribe engine."""

from .audio import CaptureStats
from .chunk import AudioPayload, Chunk, ChunkStatus
from .events import AudioEvent, SessionEvent, Status
from .session import SessionInfo, SessionState
from .transcription import TranscriptionRequest, TranscriptionResult

__all__ = [
    "CaptureStats",
    "AudioPayload",
    "Chunk",
    "ChunkStatus",
    "AudioEvent",
    "SessionEvent",
    "Status",
    "SessionInfo",
    "SessionState",
    "TranscriptionRequest",
    "TranscriptionResult",
]
