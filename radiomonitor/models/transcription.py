"""Transcription-related data models."""

from dataclasses import dataclass, field
from typing import List

from pydantic import BaseModel


class TranscriptSegment(BaseModel):
    """A piece of transcript text, in milliseconds from the start of the audio."""
    start: int
    end: int
    text: str


@dataclass
class TranscriptionResult:
    """Result of transcribing one audio file."""
    duration: float  # seconds, as reported by the service
    segments: List[TranscriptSegment] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(segment.text for segment in self.segments if segment.text)
