"""Chunk model: the unit of dispatch to a transcription backend."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..exceptions import InvalidTransition


class ChunkStatus(Enum):
    """Status of a chunk on its way through the dispatcher."""
    PENDING = "pending"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkStatus.SUCCEEDED, ChunkStatus.FAILED, ChunkStatus.SKIPPED)


_ALLOWED = {
    ChunkStatus.PENDING: {ChunkStatus.SENDING, ChunkStatus.SKIPPED, ChunkStatus.FAILED},
    ChunkStatus.SENDING: {ChunkStatus.SUCCEEDED, ChunkStatus.FAILED},
}


@dataclass
class AudioPayload:
    """Raw audio bytes plus the metadata a backend needs to decode them."""
    data: bytes
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "LINEAR16"
    sample_width: int = 2

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def duration_seconds(self) -> float:
        bytes_per_second = self.sample_rate * self.channels * self.sample_width
        return len(self.data) / bytes_per_second if bytes_per_second else 0.0


@dataclass
class Chunk:
    """A time-boxed piece of captured audio.

    ``sequence`` is assigned when the chunk is enqueued and is the only
    ordering key used for the transcript.
    """
    sequence: int
    payload: AudioPayload
    captured_at: float
    status: ChunkStatus = ChunkStatus.PENDING
    text: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    sent_at: Optional[float] = None
    finished_at: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def _move(self, status: ChunkStatus) -> None:
        with self._lock:
            if status not in _ALLOWED.get(self.status, set()):
                raise InvalidTransition(
                    f"Chunk {self.sequence}: {self.status.value} -> {status.value}")
            self.status = status
            if status is ChunkStatus.SENDING:
                self.sent_at = time.monotonic()
            elif status.is_terminal:
                self.finished_at = time.monotonic()

    def mark_sending(self) -> None:
        self._move(ChunkStatus.SENDING)

    def succeed(self, text: str) -> None:
        self._move(ChunkStatus.SUCCEEDED)
        self.text = text or ""

    def fail(self, reason: str) -> None:
        self._move(ChunkStatus.FAILED)
        self.error = reason

    def skip(self, reason: str) -> None:
        self._move(ChunkStatus.SKIPPED)
        self.error = reason

    @property
    def latency(self) -> float:
        """Seconds between the send and the final outcome."""
        if self.sent_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.sent_at
