"""Append-only transcript shared between the dispatcher and its readers."""

import threading
from typing import Optional, Tuple


class Transcript:
    """Ordered text segments, appended in strictly increasing sequence order.

    One writer appends; any number of readers take snapshots. A snapshot is an
    immutable tuple, so readers never see a segment change after the fact.
    """

    def __init__(self):
        self._segments: Tuple[str, ...] = ()
        self._last_sequence: Optional[int] = None
        self._lock = threading.Lock()

    def append(self, sequence: int, text: str) -> bool:
        """Append the text of chunk ``sequence``.

        Returns:
            True if a segment was added, False for empty text

        Raises:
            ValueError: ``sequence`` is not greater than the last appended one
        """
        with self._lock:
            if self._last_sequence is not None and sequence <= self._last_sequence:
                raise ValueError(
                    f"Out-of-order append: sequence {sequence} after {self._last_sequence}")
            self._last_sequence = sequence
            text = (text or "").strip()
            if not text:
                return False
            self._segments = self._segments + (text,)
            return True

    @property
    def segments(self) -> Tuple[str, ...]:
        return self._segments

    @property
    def last_sequence(self) -> Optional[int]:
        return self._last_sequence

    @property
    def text(self) -> str:
        return " ".join(self._segments)

    def __len__(self) -> int:
        return len(self._segments)
