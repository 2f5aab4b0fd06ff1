"""livescribe - resilient real-time speech transcription."""

from .config import EngineSettings, LiveScribeConfig
from .services.engine import SessionHandle, TranscriptionEngine

__version__ = "0.1.0"

__all__ = [
    "EngineSettings",
    "LiveScribeConfig",
    "SessionHandle",
    "TranscriptionEngine",
]
