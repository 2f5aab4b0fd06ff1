"""Console event log for session lifecycle events.

Subscribes to the session topic, keeps every event it sees and prints a
summary table on shutdown. Intended for the CLI and for debugging.
"""

import logging
import threading
from collections import Counter
from typing import Dict, List, Optional

from pubsub import pub
from rich.console import Console
from rich.table import Table

from .publisher import SESSION_TOPIC
from ..models.events import SessionEvent

logger = logging.getLogger(__name__)


class SessionEventLog:
    """Collects session events from pub/sub and prints them with rich."""

    def __init__(self, topic: str = SESSION_TOPIC, console: Optional[Console] = None,
                 echo: bool = False):
        """Initialize the event log.

        Args:
            topic: Session event topic to subscribe to
            console: Console to print to
            echo: Print each event as it arrives
        """
        self.topic = topic
        self.console = console or Console()
        self.echo = echo
        self.events: List[SessionEvent] = []
        self.lock = threading.RLock()

        pub.subscribe(self._on_event, topic)
        logger.info(f"SessionEventLog subscribed to {topic}")

    def _on_event(self, event: SessionEvent) -> None:
        with self.lock:
            self.events.append(event)
        if self.echo:
            details = ", ".join(f"{k}={v}" for k, v in event.metadata.items())
            self.console.print(f"[dim]{event.timestamp:%H:%M:%S}[/dim] {event.event_type} {details}")

    def counts(self, session_id: Optional[str] = None) -> Dict[str, int]:
        """Number of events per type, optionally for one session."""
        with self.lock:
            return dict(Counter(e.event_type for e in self.events
                                if session_id is None or e.session_id == session_id))

    def print_summary(self) -> None:
        with self.lock:
            session_ids = sorted({e.session_id for e in self.events})

        table = Table(title="Session events")
        table.add_column("Session")
        table.add_column("Restarts", justify="right")
        table.add_column("Chunks failed", justify="right")
        table.add_column("Chunks skipped", justify="right")
        table.add_column("Ended because")
        for session_id in session_ids:
            counts = self.counts(session_id)
            with self.lock:
                stopped = [e for e in self.events
                           if e.session_id == session_id and e.event_type == "stopped"]
            reason = stopped[-1].metadata.get("reason", "") if stopped else "running"
            table.add_row(session_id,
                          str(counts.get("restarted", 0)),
                          str(counts.get("chunk_failed", 0)),
                          str(counts.get("chunk_skipped", 0)),
                          str(reason))
        self.console.print(table)

    def shutdown(self) -> None:
        """Unsubscribe and print the summary."""
        try:
            pub.unsubscribe(self._on_event, self.topic)
        except Exception as e:
            logger.warning(f"Error during unsubscribe: {e}")
        self.print_summary()
