"""Turns a batch of contiguous speech chunks into a persisted broadcast."""

import logging
from typing import Awaitable, Callable, Sequence

from .. import MergeError, TranscriptionError
from ..audio.ffmpeg import FFmpegError, concat_audio_files
from ..models.broadcast import Broadcast, broadcast_id_for
from ..models.chunk import ChunkInfo
from ..storage.file_manager import FileManager
from ..storage.index_builder import IndexBuilder
from ..transcription.gateway import TranscriptionGateway
from ..transcription.titles import generate_title

logger = logging.getLogger(__name__)


class BroadcastMerger:
    """Concatenate, transcribe, title, persist, clean up, reindex."""

    def __init__(self,
                 file_manager: FileManager,
                 gateway: TranscriptionGateway,
                 index_builder: IndexBuilder,
                 title_words: int = 10,
                 concat: Callable[[Sequence[str], str], Awaitable[None]] = concat_audio_files):
        self.file_manager = file_manager
        self.gateway = gateway
        self.index_builder = index_builder
        self.title_words = title_words
        self.concat = concat

    async def merge(self, chunks: Sequence[ChunkInfo]) -> Broadcast:
        """Build and store one broadcast from ``chunks`` (in arrival order).

        Raises:
            MergeError: If concatenation or transcription fails. Nothing is
                persisted in that case and the chunk files are left alone.
        """
        if not chunks:
            raise MergeError("No chunks to merge")

        first_chunk = chunks[0]
        broadcast_id = broadcast_id_for(first_chunk.start_time)
        total_duration = sum(chunk.duration_ms for chunk in chunks)

        logger.info(f"Merging {len(chunks)} chunks into broadcast {broadcast_id}")
        self.file_manager.create_broadcast_directory(broadcast_id)
        audio_path = self.file_manager.broadcast_audio_path(broadcast_id)

        try:
            await self.concat([chunk.file_path for chunk in chunks], str(audio_path))
            logger.info(f"Merged audio: {total_duration / 1000 / 60:.1f} minutes")
            result = await self.gateway.transcribe(str(audio_path))
        except (FFmpegError, TranscriptionError, OSError) as e:
            self.file_manager.remove_broadcast_directory(broadcast_id)
            raise MergeError(f"Broadcast {broadcast_id} failed: {e}") from e

        transcript = sorted(result.segments, key=lambda segment: segment.start)
        title = generate_title(transcript, self.title_words)

        broadcast = Broadcast(
            id=broadcast_id,
            title=title,
            timestamp=first_chunk.start_time,
            duration=total_duration,
            audio_file=self.file_manager.relative_path(audio_path),
            transcript=transcript,
        )
        self.file_manager.save_broadcast(broadcast)

        for chunk in chunks:
            self.file_manager.delete_chunk(chunk.file_path)

        logger.info(f'Broadcast ready: "{title}"')

        try:
            self.index_builder.rebuild()
        except OSError as e:
            logger.error(f"Index rebuild failed after {broadcast_id}: {e}")

        return broadcast
