"""Chunk segmenter: turns the capture buffer stream into sequenced chunks."""

import logging
import threading
import time
from typing import Callable, List, Optional

import numpy as np

from .dispatcher import ChunkDispatcher
from ..models.chunk import AudioPayload, Chunk
from ..models.events import AudioEvent

logger = logging.getLogger(__name__)


def rms_level(data: bytes) -> float:
    """RMS of 16-bit PCM, normalised to 0.0-1.0."""
    usable = len(data) - len(data) % 2
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(data[:usable], dtype=np.int16).astype(np.float64) / 32768.0
    return float(np.sqrt(np.mean(np.square(samples))))


class ChunkSegmenter:
    """Accumulates capture buffers and flushes them as chunks on a fixed interval.

    Buffers are appended from the capture thread and never wait on dispatch.
    Every flush assigns the next sequence number and hands the chunk to the
    dispatcher under the same lock, so queue order always matches sequence order.
    """

    def __init__(self,
                 dispatcher: ChunkDispatcher,
                 flush_interval: float = 5.0,
                 min_chunk_bytes: int = 1000,
                 silence_threshold: float = 0.0,
                 sample_rate: int = 16000,
                 channels: int = 1,
                 on_skipped: Optional[Callable[[Chunk], None]] = None):
        self.dispatcher = dispatcher
        self.flush_interval = flush_interval
        self.min_chunk_bytes = min_chunk_bytes
        self.silence_threshold = silence_threshold
        self.sample_rate = sample_rate
        self.channels = channels
        self.on_skipped = on_skipped

        # Audio buffering
        self.audio_buffer = bytearray()
        self.buffer_started_at: Optional[float] = None
        self.events_in_buffer = 0

        self.chunks: List[Chunk] = []
        self._next_sequence = 1
        self._lock = threading.Lock()
        self._accepting = True
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the periodic flush timer."""
        if self._timer_thread is not None:
            return
        self._timer_thread = threading.Thread(target=self._flush_loop, daemon=True)
        self._timer_thread.name = "ChunkSegmenterTimer"
        self._timer_thread.start()
        logger.info(f"Segmenter flushing every {self.flush_interval}s "
                    f"(min {self.min_chunk_bytes} bytes)")

    def _flush_loop(self) -> None:
        while not self._stop_event.wait(self.flush_interval):
            try:
                self.flush_now()
            except Exception as e:
                logger.error(f"Periodic flush failed: {e}", exc_info=True)

    def add_event(self, event: AudioEvent) -> None:
        """Append one capture buffer."""
        if not event.data:
            return
        with self._lock:
            if not self._accepting:
                return
            if self.buffer_started_at is None:
                self.buffer_started_at = event.timestamp
            self.audio_buffer.extend(event.data)
            self.events_in_buffer += 1

    def flush_now(self) -> Optional[Chunk]:
        """Turn everything buffered so far into one chunk.

        Returns:
            The new chunk, or None if nothing was buffered
        """
        with self._lock:
            if not self.audio_buffer:
                return None
            payload = AudioPayload(
                data=bytes(self.audio_buffer),
                sample_rate=self.sample_rate,
                channels=self.channels,
            )
            chunk = Chunk(
                sequence=self._next_sequence,
                payload=payload,
                captured_at=self.buffer_started_at or time.time(),
            )
            self._next_sequence += 1
            buffered_events = self.events_in_buffer
            self.audio_buffer.clear()
            self.buffer_started_at = None
            self.events_in_buffer = 0
            self.chunks.append(chunk)

            skip_reason = self._skip_reason(payload)
            if skip_reason is None:
                self.dispatcher.submit(chunk)

        if skip_reason is not None:
            chunk.skip(skip_reason)
            logger.debug(f"Skipped chunk {chunk.sequence}: {skip_reason}")
            if self.on_skipped:
                try:
                    self.on_skipped(chunk)
                except Exception as e:
                    logger.error(f"Error in skipped-chunk callback: {e}", exc_info=True)
        else:
            logger.debug(f"Flushed chunk {chunk.sequence}: {payload.size} bytes "
                         f"from {buffered_events} buffers")
        return chunk

    def _skip_reason(self, payload: AudioPayload) -> Optional[str]:
        if payload.size < self.min_chunk_bytes:
            return f"below minimum size ({payload.size} < {self.min_chunk_bytes} bytes)"
        if self.silence_threshold > 0:
            level = rms_level(payload.data)
            if level < self.silence_threshold:
                return f"silence (rms {level:.4f} < {self.silence_threshold})"
        return None

    def stop_accepting(self) -> None:
        with self._lock:
            self._accepting = False

    def close(self) -> None:
        """Stop accepting audio and stop the flush timer. Idempotent."""
        self.stop_accepting()
        self._stop_event.set()
        thread = self._timer_thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)
