"""Chunk transcription: backends, dispatch and transcript assembly."""

from .base import AbstractTranscriptionBackend
from ..models.transcription import TranscriptionRequest, TranscriptionResult
from .dispatcher import ChunkDispatcher
from .google_backend import GoogleSpeechBackend
from .segmenter import ChunkSegmenter
from .transcript import Transcript
from .whisper_backend import WhisperBackend

__all__ = [
    "AbstractTranscriptionBackend",
    "TranscriptionRequest",
    "TranscriptionResult",
    "ChunkDispatcher",
    "GoogleSpeechBackend",
    "ChunkSegmenter",
    "Transcript",
    "WhisperBackend",
]
