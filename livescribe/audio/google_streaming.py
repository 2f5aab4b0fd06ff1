"""Continuous recognition backend using Google Speech-to-Text streaming."""

import logging
import threading
from threading import Thread, Event
from typing import Optional

import pyaudio
from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

from .recognition import AbstractRecognitionBackend, RecognitionListener
from ..exceptions import DeviceError

logger = logging.getLogger(__name__)


class GoogleStreamingRecognizer(AbstractRecognitionBackend):
    """Reads the microphone and streams it to Google, reporting partial and final text.

    Each run ends when Google closes the stream (it caps stream length) or on
    error, at which point the listener gets ``on_error`` (if any) and then
    ``on_ended``, so the session decides whether to restart.
    """

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 sample_rate: int = 16000,
                 chunk_size: int = 1024,
                 channels: int = 1,
                 language: str = "en-US",
                 device_index: Optional[int] = None,
                 enable_automatic_punctuation: bool = True):
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.language = language
        self.device_index = device_index
        self.client = None
        self.streaming_config = speech.StreamingRecognitionConfig(
            config=speech.RecognitionConfig(
                encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
                sample_rate_hertz=sample_rate,
                audio_channel_count=channels,
                language_code=language,
                enable_automatic_punctuation=enable_automatic_punctuation,
            ),
            interim_results=True,
        )

        self._lock = threading.Lock()
        self._thread: Optional[Thread] = None
        self._stop_event = Event()

    def initialize(self) -> None:
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        logger.info(f"Google streaming recognizer ready for project: {credentials.project_id}")

    def start(self, listener: RecognitionListener) -> None:
        if self.client is None:
            self.initialize()
        self.stop()

        pa = pyaudio.PyAudio()
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.chunk_size,
            )
        except (OSError, ValueError) as e:
            pa.terminate()
            raise DeviceError(f"Cannot open input device {self.device_index}: {e}") from e

        with self._lock:
            self._stop_event = Event()
            self._thread = Thread(
                target=self._run,
                args=(listener, self._stop_event, pa, stream),
                name="GoogleStreamingThread",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Google streaming thread did not stop cleanly")

    def _requests(self, stream, stop_event: Event, state: dict):
        while not stop_event.is_set():
            try:
                data = stream.read(self.chunk_size, exception_on_overflow=False)
            except OSError as e:
                logger.error(f"Audio read failed during streaming recognition: {e}")
                state["audio_failed"] = True
                return
            yield speech.StreamingRecognizeRequest(audio_content=data)

    def _run(self, listener: RecognitionListener, stop_event: Event, pa, stream) -> None:
        state = {"audio_failed": False, "heard_final": False}
        error_code = None
        try:
            responses = self.client.streaming_recognize(
                config=self.streaming_config,
                requests=self._requests(stream, stop_event, state),
            )
            for response in responses:
                for result in response.results:
                    if not result.alternatives:
                        continue
                    text = result.alternatives[0].transcript
                    if result.is_final:
                        state["heard_final"] = True
                        listener.on_final_text(text)
                    else:
                        listener.on_partial_text(text)
        except gax_exceptions.OutOfRange:
            logger.info("Google closed the stream at its length limit")
        except (gax_exceptions.Unauthenticated, gax_exceptions.PermissionDenied) as e:
            logger.error(f"Google streaming recognition rejected credentials: {e}")
            error_code = "not-allowed"
        except gax_exceptions.Cancelled:
            error_code = "aborted"
        except gax_exceptions.GoogleAPICallError as e:
            logger.warning(f"Google streaming recognition failed: {e}")
            error_code = "network"
        except Exception as e:
            # Raw gRPC errors and client bugs still have to end the run
            logger.error(f"Unexpected error in streaming recognition: {e}", exc_info=True)
            error_code = "network"
        finally:
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
            pa.terminate()

        if state["audio_failed"] and error_code is None:
            error_code = "audio-capture"
        if error_code is None and not state["heard_final"] and not stop_event.is_set():
            error_code = "no-speech"
        if error_code:
            listener.on_error(error_code)
        listener.on_ended()
