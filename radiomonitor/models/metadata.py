"""Now-playing metadata models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class MetadataSample:
    """One poll of the now-playing endpoint."""
    timestamp: datetime
    artist: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_speech(self) -> bool:
        """No artist means the station is talking, not playing a track."""
        return not self.artist
