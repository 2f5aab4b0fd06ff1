"""Unit tests for the Google and Whisper transcription backends."""

import asyncio
import io
import wave
from unittest.mock import Mock, patch

import pytest
from google.api_core import exceptions as gax_exceptions

from livescribe.exceptions import (
    AuthError,
    NetworkError,
    RateLimitError,
    TranscriptionError,
    TranscriptionTimeout,
)
from livescribe.models.transcription import TranscriptionRequest
from livescribe.transcription.google_backend import GoogleSpeechBackend
from livescribe.transcription.whisper_backend import WhisperBackend, pcm_to_wav, raise_for_status


def make_request(sequence=1):
    return TranscriptionRequest(audio=b"\x00\x01" * 1600, sequence=sequence)


def recognize_response(*texts):
    results = []
    for text in texts:
        alternative = Mock()
        alternative.transcript = text
        result = Mock()
        result.alternatives = [alternative]
        results.append(result)
    response = Mock()
    response.results = results
    return response


@pytest.fixture
def google_backend():
    backend = GoogleSpeechBackend(credentials_path="/tmp/fake-credentials.json", request_timeout=3.0)
    backend.client = Mock()
    return backend


@pytest.mark.unit
class TestGoogleSpeechBackend:

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            GoogleSpeechBackend(credentials_path=None)

    def test_transcribe_joins_results(self, google_backend):
        google_backend.client.recognize.return_value = recognize_response(" hello ", "world")

        text = asyncio.run(google_backend.transcribe(make_request()))

        assert text == "hello world"
        kwargs = google_backend.client.recognize.call_args.kwargs
        assert kwargs["timeout"] == 3.0
        assert kwargs["config"].language_code == "en-US"

    def test_recognize_timeout_capped_by_chunk_deadline(self, google_backend):
        google_backend.client.recognize.return_value = recognize_response("hi")
        request = make_request()
        request.timeout = 1.25

        asyncio.run(google_backend.transcribe(request))

        assert google_backend.client.recognize.call_args.kwargs["timeout"] == 1.25

    def test_no_results_is_empty_text(self, google_backend):
        google_backend.client.recognize.return_value = recognize_response()
        assert asyncio.run(google_backend.transcribe(make_request())) == ""

    @pytest.mark.parametrize("api_error,expected", [
        (gax_exceptions.Unauthenticated("bad token"), AuthError),
        (gax_exceptions.PermissionDenied("no access"), AuthError),
        (gax_exceptions.ResourceExhausted("quota"), RateLimitError),
        (gax_exceptions.DeadlineExceeded("slow"), TranscriptionTimeout),
        (gax_exceptions.ServiceUnavailable("down"), NetworkError),
    ])
    def test_error_mapping(self, google_backend, api_error, expected):
        google_backend.client.recognize.side_effect = api_error

        with pytest.raises(expected):
            asyncio.run(google_backend.transcribe(make_request()))

    def test_transcribe_before_initialize(self):
        backend = GoogleSpeechBackend(credentials_path="/tmp/fake-credentials.json")
        with pytest.raises(RuntimeError):
            asyncio.run(backend.transcribe(make_request()))

    def test_initialize_loads_service_account(self):
        credentials = Mock(project_id="demo-project")
        with patch("livescribe.transcription.google_backend.service_account.Credentials."
                   "from_service_account_file", return_value=credentials) as loader, \
                patch("livescribe.transcription.google_backend.speech.SpeechClient") as client_cls:
            backend = GoogleSpeechBackend(credentials_path="/tmp/key.json")
            assert backend.initialize() is True

        loader.assert_called_once_with("/tmp/key.json")
        client_cls.assert_called_once_with(credentials=credentials)
        assert backend.project_id == "demo-project"

        backend.cleanup()
        assert backend.client is None


@pytest.mark.unit
class TestWhisperHelpers:

    def test_pcm_to_wav(self):
        pcm = b"\x00\x01" * 16000
        wav = pcm_to_wav(pcm, sample_rate=16000, channels=1)

        with wave.open(io.BytesIO(wav), "rb") as wf:
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            assert wf.getframerate() == 16000
            assert wf.readframes(wf.getnframes()) == pcm

    def test_success_status_passes(self):
        raise_for_status(200, "{}")

    def test_unauthorized(self):
        with pytest.raises(AuthError):
            raise_for_status(401, "invalid key")

    def test_rate_limited_with_retry_after(self):
        with pytest.raises(RateLimitError) as excinfo:
            raise_for_status(429, "slow down", retry_after="2.5")
        assert excinfo.value.retry_after == 2.5

    def test_rate_limited_with_bad_retry_after(self):
        with pytest.raises(RateLimitError) as excinfo:
            raise_for_status(429, "slow down", retry_after="Wed, 21 Oct 2015 07:28:00 GMT")
        assert excinfo.value.retry_after is None

    def test_server_error_is_transient(self):
        with pytest.raises(NetworkError) as excinfo:
            raise_for_status(503, "unavailable")
        assert excinfo.value.transient

    def test_client_error_is_permanent(self):
        with pytest.raises(TranscriptionError) as excinfo:
            raise_for_status(400, "bad audio")
        assert not excinfo.value.transient
        assert not isinstance(excinfo.value, AuthError)


@pytest.mark.unit
class TestWhisperBackend:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            WhisperBackend(api_key="")

    def test_form_sends_primary_language_subtag(self):
        backend = WhisperBackend(api_key="sk-test", language="en-US")
        form = backend._build_form(make_request(sequence=7))

        fields = {options["name"]: value for options, _headers, value in form._fields}
        assert fields["model"] == "whisper-1"
        assert fields["language"] == "en"
        assert fields["response_format"] == "json"
        assert fields["file"][:4] == b"RIFF"
