"""Data models for the radio monitor."""

from .metadata import MetadataSample
from .chunk import ChunkInfo
from .events import (
    SegmentStarted,
    ProcessExited,
    ProcessErrored,
    RecorderEvent,
    ChunkCompletedEvent,
)
from .transcription import TranscriptSegment, TranscriptionResult
from .broadcast import Broadcast, broadcast_id_for, format_timestamp

__all__ = [
    "MetadataSample",
    "ChunkInfo",
    "SegmentStarted",
    "ProcessExited",
    "ProcessErrored",
    "RecorderEvent",
    "ChunkCompletedEvent",
    "TranscriptSegment",
    "TranscriptionResult",
    "Broadcast",
    "broadcast_id_for",
    "format_timestamp",
]
