"""File management module for chunks, broadcasts and failed batches."""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..models.broadcast import Broadcast, format_timestamp
from ..models.chunk import ChunkInfo

logger = logging.getLogger(__name__)

BROADCAST_RECORD = "broadcast.json"
BROADCAST_AUDIO = "audio.mp3"
FAILED_BATCH_RECORD = "batch.json"


def write_json_atomic(destination: Path, payload: Any) -> None:
    """Write JSON next to ``destination`` and rename it into place."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_suffix(destination.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, destination)


class FileManager:
    """Manages the on-disk layout of the monitor's data directory.

    <data>/chunks/           segments written by the capture process
    <data>/live/<id>/        audio.mp3 + broadcast.json per broadcast
    <data>/live/index.json   manifest of all broadcasts
    <data>/failed/<id>/      chunks of batches that could not be merged
    """

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.chunks_dir = self.data_dir / "chunks"
        self.live_dir = self.data_dir / "live"
        self.failed_dir = self.data_dir / "failed"
        self.logs_dir = self.data_dir / "logs"

        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.chunks_dir, self.live_dir, self.failed_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def get_broadcast_path(self, broadcast_id: str) -> Path:
        return self.live_dir / broadcast_id

    def create_broadcast_directory(self, broadcast_id: str) -> Path:
        broadcast_path = self.get_broadcast_path(broadcast_id)
        broadcast_path.mkdir(parents=True, exist_ok=True)
        return broadcast_path

    def broadcast_audio_path(self, broadcast_id: str) -> Path:
        return self.get_broadcast_path(broadcast_id) / BROADCAST_AUDIO

    def relative_path(self, path: Path) -> str:
        """Path relative to the data directory, with forward slashes."""
        return Path(path).absolute().relative_to(self.data_dir.absolute()).as_posix()

    def save_broadcast(self, broadcast: Broadcast) -> str:
        """Write the broadcast record and return its path."""
        record_file = self.get_broadcast_path(broadcast.id) / BROADCAST_RECORD
        write_json_atomic(record_file, broadcast.to_record())
        logger.info(f"Broadcast saved: {record_file}")
        return str(record_file)

    def load_broadcast(self, broadcast_id: str) -> Optional[Broadcast]:
        """Load a broadcast record, or None if it is missing or unreadable."""
        record_file = self.get_broadcast_path(broadcast_id) / BROADCAST_RECORD

        if not record_file.exists():
            logger.warning(f"Broadcast record not found: {record_file}")
            return None

        try:
            with open(record_file, 'r', encoding='utf-8') as f:
                return Broadcast.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Error loading broadcast {broadcast_id}: {e}")
            return None

    def remove_broadcast_directory(self, broadcast_id: str) -> None:
        """Drop a partially written broadcast directory."""
        shutil.rmtree(self.get_broadcast_path(broadcast_id), ignore_errors=True)

    def delete_chunk(self, file_path: str) -> bool:
        """Delete a chunk file. Failures are logged, never raised."""
        try:
            os.remove(file_path)
            logger.debug(f"Deleted chunk: {file_path}")
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete chunk {file_path}: {e}")
            return False

    def dead_letter(self, batch_id: str, chunks: Sequence[ChunkInfo], error: str) -> Path:
        """Move the chunks of a failed merge aside so their audio is not lost.

        Returns:
            Path to the failed batch directory
        """
        batch_path = self.failed_dir / batch_id
        batch_path.mkdir(parents=True, exist_ok=True)

        moved: List[Dict[str, Any]] = []
        for chunk in chunks:
            source = Path(chunk.file_path)
            entry = {
                "file": source.name,
                "startTime": format_timestamp(chunk.start_time),
                "duration": chunk.duration_ms,
                "speechRatio": chunk.speech_ratio,
                "indeterminate": chunk.indeterminate,
                "preserved": False,
            }
            try:
                shutil.move(str(source), str(batch_path / source.name))
                entry["preserved"] = True
            except OSError as e:
                logger.warning(f"Could not move {source.name} to {batch_path}: {e}")
            moved.append(entry)

        write_json_atomic(batch_path / FAILED_BATCH_RECORD, {
            "id": batch_id,
            "error": error,
            "chunks": moved,
        })
        logger.warning(f"Failed batch {batch_id} preserved in {batch_path}")
        return batch_path

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage usage statistics."""
        try:
            total_size = 0
            broadcast_count = 0
            for broadcast_path in self.live_dir.iterdir():
                if broadcast_path.is_dir():
                    broadcast_count += 1
                    for file_path in broadcast_path.rglob("*"):
                        if file_path.is_file():
                            total_size += file_path.stat().st_size

            return {
                "total_size_bytes": total_size,
                "total_size_mb": round(total_size / (1024 * 1024), 2),
                "broadcast_count": broadcast_count,
                "pending_chunks": sum(1 for _ in self.chunks_dir.glob("chunk-*.mp3")),
                "failed_batches": sum(1 for p in self.failed_dir.iterdir() if p.is_dir()),
                "data_directory": str(self.data_dir),
            }

        except OSError as e:
            logger.error(f"Error getting storage stats: {e}")
            return {}
