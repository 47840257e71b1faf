"""Chunk publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.events import ChunkCompletedEvent

logger = logging.getLogger(__name__)

CHUNK_COMPLETED_TOPIC = "chunk.completed"


class ChunkPublisher:
    """Publishes completed capture segments using pubsub.pub."""

    def __init__(self, topic: str = CHUNK_COMPLETED_TOPIC):
        """Initialize chunk publisher.

        Args:
            topic: Pub/sub topic name for completed chunk events
        """
        self.topic = topic
        logger.info(f"ChunkPublisher initialized with topic: {topic}")

    def publish_chunk_completed(self, event: ChunkCompletedEvent) -> None:
        """Publish a completed chunk. Listeners run synchronously on the caller's thread.

        Args:
            event: ChunkCompletedEvent to publish
        """
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published chunk event: {event.file_path} (#{event.sequence_number})")
