"""Speech/music classification of finished chunks."""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from ..models.chunk import ChunkInfo
from .metadata_sampler import MetadataSampler

logger = logging.getLogger(__name__)


class ChunkClassifier:
    """Labels a chunk from the metadata samples that overlap its time range."""

    def __init__(self, sampler: MetadataSampler, chunk_seconds: int = 120):
        self.sampler = sampler
        self.chunk_seconds = chunk_seconds

    def classify(self, file_path: str, start_time: datetime) -> ChunkInfo:
        end_time = start_time + timedelta(seconds=self.chunk_seconds)
        name = Path(file_path).name

        if not self.sampler.samples_in_range(start_time, end_time):
            # No evidence either way: never treat it as confirmed music
            logger.warning(f"Chunk complete: {name} ({start_time:%H:%M:%S} - {end_time:%H:%M:%S}) "
                           f"has no metadata samples, keeping it as speech")
            return ChunkInfo(
                file_path=file_path,
                start_time=start_time,
                duration_ms=self.chunk_seconds * 1000,
                is_speech=True,
                speech_ratio=0.0,
                indeterminate=True,
            )

        is_speech = self.sampler.is_speech(start_time, end_time)
        speech_ratio = self.sampler.speech_ratio(start_time, end_time)

        logger.info(f"Chunk complete: {name} "
                    f"({start_time:%H:%M:%S} - {end_time:%H:%M:%S}) "
                    f"speech={'yes' if is_speech else 'no'} ({speech_ratio:.0%})")

        return ChunkInfo(
            file_path=file_path,
            start_time=start_time,
            duration_ms=self.chunk_seconds * 1000,
            is_speech=is_speech,
            speech_ratio=speech_ratio,
        )
