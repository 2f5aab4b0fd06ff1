"""OpenAI Whisper transcription backend over aiohttp."""

import asyncio
import io
import logging
import wave
from typing import Optional

import aiohttp

from .base import AbstractTranscriptionBackend
from ..exceptions import (
    AuthError,
    NetworkError,
    RateLimitError,
    TranscriptionError,
    TranscriptionTimeout,
)
from ..models.transcription import TranscriptionRequest

logger = logging.getLogger(__name__)


def pcm_to_wav(audio: bytes, sample_rate: int, channels: int, sample_width: int = 2) -> bytes:
    """Wrap raw PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(audio)
    return buffer.getvalue()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_status(status: int, body: str, retry_after: Optional[str] = None) -> None:
    """Map a Whisper API HTTP status onto the backend error taxonomy."""
    if 200 <= status < 300:
        return
    if status == 401:
        raise AuthError("API authentication error. Please check your API key.")
    if status == 429:
        raise RateLimitError(f"Rate limit exceeded: {body}", retry_after=_parse_retry_after(retry_after))
    if status >= 500:
        raise NetworkError(f"Whisper API error: {status} - {body}")
    raise TranscriptionError(f"Whisper API error: {status} - {body}")


class WhisperBackend(AbstractTranscriptionBackend):
    """Sends chunks to the OpenAI audio transcription endpoint."""

    service_name = "OpenAI Whisper"

    def __init__(self, api_key: str, model: str = "whisper-1", language: str = "en-US",
                 request_timeout: float = 15.0,
                 base_url: str = "https://api.openai.com/v1/audio/transcriptions"):
        """Initialize Whisper backend.

        Args:
            api_key: OpenAI API key
            model: Transcription model name
            language: Language hint; only the primary subtag is sent (``en-US`` -> ``en``)
            request_timeout: Total HTTP timeout per request
            base_url: Transcription endpoint
        """
        super().__init__(language)
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self.api_key = api_key
        self.model = model
        self.request_timeout = request_timeout
        self.base_url = base_url

        logger.info(f"WhisperBackend initialized with model: {model}")

    def initialize(self) -> bool:
        return True

    def _build_form(self, request: TranscriptionRequest) -> aiohttp.FormData:
        wav = pcm_to_wav(request.audio, request.sample_rate, request.channels)
        form = aiohttp.FormData()
        form.add_field("file", wav, filename=f"chunk_{request.sequence}.wav", content_type="audio/wav")
        form.add_field("model", self.model)
        form.add_field("language", (request.language or self.language).split("-")[0])
        form.add_field("response_format", "json")
        return form

    async def transcribe(self, request: TranscriptionRequest) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.base_url, headers=headers,
                                        data=self._build_form(request)) as response:
                    if response.status != 200:
                        body = await response.text()
                        logger.error(f"Whisper API error for chunk {request.sequence}: "
                                     f"{response.status} {body}")
                        raise_for_status(response.status, body, response.headers.get("Retry-After"))
                    result = await response.json()
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeout(f"Whisper request timed out (chunk={request.sequence})") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Whisper request failed (chunk={request.sequence}): {e}") from e

        return (result.get("text") or "").strip()

    def cleanup(self) -> None:
        pass
