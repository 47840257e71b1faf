"""Broadcast title generation."""

from typing import Iterable

from ..models.transcription import TranscriptSegment

TRUNCATION_MARKER = "..."


def generate_title(segments: Iterable[TranscriptSegment], max_words: int = 10) -> str:
    """First ``max_words`` words of the transcript, with a marker if text was cut."""
    words = " ".join(segment.text for segment in segments).split()
    title = " ".join(words[:max_words])
    if len(words) > max_words:
        title += TRUNCATION_MARKER
    return title
