"""Event models passed between capture, dispatch and session layers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict


@dataclass
class AudioEvent:
    """One raw buffer emitted by a capture controller."""
    buffer_id: str
    data: bytes
    timestamp: float  # Unix timestamp when buffer was captured
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1
    duration_ms: Optional[int] = None

    def __post_init__(self):
        """Calculate buffer duration if not provided."""
        if self.duration_ms is None and self.data:
            # 16-bit audio (2 bytes per sample)
            bytes_per_second = self.sample_rate * self.channels * 2
            self.duration_ms = int(len(self.data) / bytes_per_second * 1000)


@dataclass
class SessionEvent:
    """Session lifecycle event published on the ``livescribe.session`` topic."""
    session_id: str
    event_type: str  # "started", "restarted", "chunk_failed", "stopped", ...
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class Status:
    """Human-readable status strings delivered to ``on_status``."""
    LISTENING = "listening"
    PAUSED = "paused"
    PROCESSING_CHUNK = "processing chunk"
    RESTARTING = "restarting"
    FINALIZING = "finalizing"
    STOPPED = "stopped"
    RESTART_EXHAUSTED = "restart attempts exhausted"
    MAX_DURATION = "maximum duration reached"
