"""Transcription module for the radio monitor."""

from .base import AbstractTranscriptionBackend
from ..models.transcription import TranscriptionResult, TranscriptSegment
from .groq_backend import GroqWhisperBackend
from .gateway import TranscriptionGateway, merge_transcripts
from .titles import generate_title

__all__ = [
    "AbstractTranscriptionBackend",
    "TranscriptionResult",
    "TranscriptSegment",
    "GroqWhisperBackend",
    "TranscriptionGateway",
    "merge_transcripts",
    "generate_title",
]
