"""Abstract base classes for transcription backends."""

from abc import ABC, abstractmethod
import logging

from ..models.transcription import TranscriptionRequest

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for transcription backends."""

    service_name = "unknown"

    def __init__(self, language: str = "en-US"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    async def transcribe(self, request: TranscriptionRequest) -> str:
        """Transcribe one chunk of audio.

        Args:
            request: Audio bytes with encoding, sample rate and language hint

        Returns:
            Recognised text, empty when no speech was found

        Raises:
            AuthError, RateLimitError, NetworkError, TranscriptionTimeout
        """

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """

    @abstractmethod
    def cleanup(self) -> None:
        """Clean up backend resources."""
