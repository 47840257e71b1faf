"""Manifest generation for a directory of persisted records."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from .file_manager import BROADCAST_RECORD, write_json_atomic

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"


class ManifestEntry(BaseModel):
    """The fields every indexed record must carry. Anything else passes through."""
    model_config = ConfigDict(extra="allow")

    id: str
    timestamp: datetime


class IndexBuilder:
    """Rebuilds ``index.json`` from the records under a collection directory.

    The manifest is derived data: it can be deleted and regenerated at any
    time. A record that cannot be read or validated is skipped on its own.
    """

    def __init__(self, collection_dir: str, record_name: str = BROADCAST_RECORD, index_name: str = INDEX_FILE):
        self.collection_dir = Path(collection_dir)
        self.record_name = record_name
        self.index_path = self.collection_dir / index_name

    def load_records(self) -> List[Dict[str, Any]]:
        """Read every valid record, newest first."""
        entries: List[Tuple[datetime, Dict[str, Any]]] = []

        for entry in sorted(self.collection_dir.iterdir()):
            if not entry.is_dir():
                continue
            record_file = entry / self.record_name
            if not record_file.exists():
                continue

            try:
                with open(record_file, 'r', encoding='utf-8') as f:
                    record = json.load(f)
                parsed = ManifestEntry.model_validate(record)
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping unreadable record {record_file}: {e}")
                continue

            timestamp = parsed.timestamp
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            entries.append((timestamp, record))

        entries.sort(key=lambda item: item[0], reverse=True)
        return [record for _, record in entries]

    def rebuild(self) -> List[Dict[str, Any]]:
        """Write the full manifest and return its contents."""
        self.collection_dir.mkdir(parents=True, exist_ok=True)
        records = self.load_records()
        write_json_atomic(self.index_path, records)
        logger.info(f"Updated index {self.index_path}: {len(records)} records")
        return records
