"""Audio capture module."""

from .base import AbstractCaptureController, CaptureCallbacks
from .capture import MicrophoneCapture
from .recognition import AbstractRecognitionBackend, ContinuousRecognitionCapture, RecognitionListener

__all__ = [
    'AbstractCaptureController',
    'CaptureCallbacks',
    'MicrophoneCapture',
    'AbstractRecognitionBackend',
    'ContinuousRecognitionCapture',
    'RecognitionListener',
]
