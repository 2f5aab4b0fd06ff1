"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class TranscriptionRequest:
    """What a transcription backend receives for one chunk."""
    audio: bytes
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "LINEAR16"
    language: str = "en-US"
    sequence: int = 0
    timeout: Optional[float] = None  # seconds left before the chunk deadline


@dataclass
class TranscriptionResult:
    """Result of transcribing one chunk."""
    sequence: int
    text: str  # may be empty when no speech was recognised
    latency: float
    service: str
    attempts: int = 1
    timestamp: datetime = field(default_factory=datetime.now)
