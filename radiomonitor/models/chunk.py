"""Audio chunk models."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class ChunkInfo:
    """A finished capture segment and its speech/music classification.

    ``indeterminate`` means no metadata sample covered the chunk (e.g. a chunk
    left over from before a restart). Such chunks are labelled speech so their
    audio is kept.
    """
    file_path: str
    start_time: datetime
    duration_ms: int
    is_speech: bool
    speech_ratio: float = 0.0
    indeterminate: bool = False

    @property
    def end_time(self) -> datetime:
        """Nominal end of the chunk (start + fixed segment duration)."""
        return self.start_time + timedelta(milliseconds=self.duration_ms)
