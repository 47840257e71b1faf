"""Persisted broadcast record."""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from .transcription import TranscriptSegment


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def broadcast_id_for(moment: datetime) -> str:
    """Filesystem-safe id derived from the first chunk's start time."""
    return format_timestamp(moment).replace(":", "-").replace(".", "-")


class Broadcast(BaseModel):
    """One merged, transcribed run of contiguous speech chunks."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str
    timestamp: datetime
    duration: int  # milliseconds
    audio_file: str = Field(alias="audioFile")
    transcript: List[TranscriptSegment] = Field(default_factory=list)

    def to_record(self) -> dict:
        """JSON-ready dict in the on-disk layout."""
        record = self.model_dump(mode="json", by_alias=True)
        record["timestamp"] = format_timestamp(self.timestamp)
        return record
