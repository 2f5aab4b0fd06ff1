"""Audio-related data models."""

from dataclasses import dataclass


@dataclass
class CaptureStats:
    """Capture controller statistics."""
    is_capturing: bool
    is_paused: bool
    duration_seconds: float
    sample_rate: int
    chunk_size: int
    total_buffers: int
    peak_level: float = 0.0  # 0.0 to 1.0, loudest buffer so far
