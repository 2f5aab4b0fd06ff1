"""Session-related data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from ..exceptions import LiveScribeError


class SessionState(Enum):
    """Lifecycle states of a transcription session."""
    IDLE = "idle"
    CAPTURING = "capturing"
    DRAINING = "draining"
    STOPPED = "stopped"

    def can_move_to(self, target: "SessionState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.CAPTURING, SessionState.STOPPED},
    SessionState.CAPTURING: {SessionState.DRAINING},
    SessionState.DRAINING: {SessionState.STOPPED},
    SessionState.STOPPED: set(),
}


@dataclass(frozen=True)
class SessionInfo:
    """Read-only snapshot of a session."""
    session_id: str
    state: SessionState
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    max_duration: float
    last_activity_at: Optional[float]
    restart_attempts: int
    segments: Tuple[str, ...]
    termination_reason: Optional[str] = None
    error: Optional[LiveScribeError] = None

    @property
    def transcript(self) -> str:
        return " ".join(self.segments)

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0.0
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds()
