"""Persistence for broadcasts, failed batches and manifests."""

from .file_manager import FileManager, write_json_atomic
from .index_builder import IndexBuilder

__all__ = [
    "FileManager",
    "IndexBuilder",
    "write_json_atomic",
]
