"""Event models for the capture process and chunk pub/sub topics."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True)
class SegmentStarted:
    """The capture process opened a new segment file for writing."""
    path: str


@dataclass(frozen=True)
class ProcessExited:
    """The capture process terminated."""
    returncode: Optional[int]


@dataclass(frozen=True)
class ProcessErrored:
    """The capture process could not be started or crashed."""
    error: str


RecorderEvent = Union[SegmentStarted, ProcessExited, ProcessErrored]


@dataclass
class ChunkCompletedEvent:
    """A capture segment is complete and ready to be classified."""
    file_path: str
    start_time: datetime
    sequence_number: int
