"""Google Speech-to-Text transcription backend."""

import asyncio
import logging
from typing import Optional

from .base import AbstractTranscriptionBackend
from ..exceptions import AuthError, NetworkError, RateLimitError, TranscriptionTimeout
from ..models.transcription import TranscriptionRequest

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)


class GoogleSpeechBackend(AbstractTranscriptionBackend):
    """Google Speech-to-Text API backend for chunk transcription."""

    service_name = "Google Speech-to-Text"

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 request_timeout: float = 15.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Whether to use enhanced model (costs more but better quality)
            enable_automatic_punctuation: Enable automatic punctuation
            request_timeout: Per-request deadline passed to the API
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.request_timeout = request_timeout
        self.client = None
        self.project_id = None

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)

        # CRASH if credentials are invalid
        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Using Google Cloud project: {self.project_id}")
        return True

    def _build_config(self, request: TranscriptionRequest) -> speech.RecognitionConfig:
        return speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=request.sample_rate,
            audio_channel_count=request.channels,
            language_code=request.language or self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
            model="latest_short",
        )

    def _recognize(self, request: TranscriptionRequest) -> str:
        sequence = request.sequence
        audio = speech.RecognitionAudio(content=request.audio)
        timeout = self.request_timeout
        if request.timeout is not None:
            timeout = min(timeout, request.timeout)
        try:
            response = self.client.recognize(config=self._build_config(request), audio=audio,
                                             timeout=timeout)
        except (gax_exceptions.Unauthenticated, gax_exceptions.PermissionDenied) as e:
            raise AuthError(f"Google Speech rejected credentials (chunk={sequence}): {e}") from e
        except (gax_exceptions.ResourceExhausted, gax_exceptions.TooManyRequests) as e:
            raise RateLimitError(f"Google Speech quota exceeded (chunk={sequence}): {e}") from e
        except gax_exceptions.DeadlineExceeded as e:
            raise TranscriptionTimeout(f"Google Speech recognize timeout (chunk={sequence}): {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            raise NetworkError(f"Google Speech API error (chunk={sequence}): {e}") from e

        if not response.results:
            logger.debug(f"No speech detected in chunk {sequence}")
            return ""

        text = " ".join(
            result.alternatives[0].transcript.strip()
            for result in response.results
            if result.alternatives
        )
        logger.debug(f"Chunk {sequence} transcribed: '{text}'")
        return text

    async def transcribe(self, request: TranscriptionRequest) -> str:
        """Run the blocking recognize call off the dispatcher's event loop."""
        if self.client is None:
            raise RuntimeError("GoogleSpeechBackend used before initialize()")
        loop = asyncio.get_running_loop()
        # Cancelling the await does not stop the executor thread; the gRPC
        # timeout, capped at the chunk deadline, bounds how long it outlives it.
        return await loop.run_in_executor(None, self._recognize, request)

    def cleanup(self) -> None:
        """Clean up Google Speech client resources."""
        self.client = None
