"""Session event publisher for pub/sub observers."""

import logging
from pubsub import pub
from ..models.events import SessionEvent

logger = logging.getLogger(__name__)

SESSION_TOPIC = "livescribe.session"


class SessionEventPublisher:
    """Publishes session lifecycle events using pubsub.pub."""

    def __init__(self, topic: str = SESSION_TOPIC):
        """Initialize session event publisher.

        Args:
            topic: Pub/sub topic name for session events
        """
        self.topic = topic
        logger.debug(f"SessionEventPublisher initialized with topic: {topic}")

    def publish(self, event: SessionEvent) -> None:
        """Publish a session event to the pub/sub topic."""
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published session event: {event.session_id} {event.event_type}")
