"""Stream capture and chunk event publishing."""

from .chunk_pub import ChunkPublisher, CHUNK_COMPLETED_TOPIC
from .recorder import Recorder, SegmentTracker

__all__ = [
    'ChunkPublisher',
    'CHUNK_COMPLETED_TOPIC',
    'Recorder',
    'SegmentTracker',
]
