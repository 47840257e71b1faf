"""Transcription gateway: hides the service's upload size limit from callers."""

import logging
import os
import shutil
import tempfile
from typing import List, Sequence

from .. import TranscriptionError
from ..audio.ffmpeg import FFmpegError, split_audio_file
from ..models.transcription import TranscriptionResult, TranscriptSegment
from .base import AbstractTranscriptionBackend

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 20 * 1024 * 1024
# At 320kbps, 20MB is about 8.3 minutes
DEFAULT_SPLIT_SECONDS = 480


def merge_transcripts(results: Sequence[TranscriptionResult]) -> TranscriptionResult:
    """Join consecutive transcriptions into one timeline.

    Each part is shifted by the summed *reported* durations of the parts
    before it, so rounding in the split points does not accumulate.
    """
    merged: List[TranscriptSegment] = []
    offset_ms = 0
    total_duration = 0.0

    for result in results:
        for segment in result.segments:
            merged.append(TranscriptSegment(
                start=segment.start + offset_ms,
                end=segment.end + offset_ms,
                text=segment.text,
            ))
        offset_ms += int(round(result.duration * 1000))
        total_duration += result.duration

    return TranscriptionResult(duration=total_duration, segments=merged)


class TranscriptionGateway:
    """Transcribes a file of any size through a size-limited backend."""

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 max_file_size: int = DEFAULT_MAX_FILE_SIZE,
                 split_seconds: int = DEFAULT_SPLIT_SECONDS):
        self.backend = backend
        self.max_file_size = max_file_size
        self.split_seconds = split_seconds

    async def transcribe(self, audio_path: str) -> TranscriptionResult:
        """Transcribe ``audio_path``, splitting it first if it is too large."""
        try:
            file_size = os.path.getsize(audio_path)
        except OSError as e:
            raise TranscriptionError(f"Cannot read audio file {audio_path}: {e}") from e

        if file_size <= self.max_file_size:
            return await self.backend.transcribe_file(audio_path)

        name = os.path.basename(audio_path)
        logger.info(f"Transcribing {name} ({file_size / 1024 / 1024:.1f}MB) - splitting...")

        temp_dir = tempfile.mkdtemp(prefix="split_", dir=os.path.dirname(os.path.abspath(audio_path)))
        try:
            try:
                parts = await split_audio_file(audio_path, temp_dir, self.split_seconds)
            except FFmpegError as e:
                raise TranscriptionError(f"Failed to split {name}: {e}") from e
            if not parts:
                raise TranscriptionError(f"Splitting {name} produced no parts")

            logger.info(f"Split into {len(parts)} parts")
            results = []
            for i, part in enumerate(parts, 1):
                logger.info(f"Part {i}/{len(parts)} ({os.path.getsize(part) / 1024 / 1024:.1f}MB)...")
                results.append(await self.backend.transcribe_file(part))

            return merge_transcripts(results)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)
