"""Services layer: metadata sampling, chunk classification and broadcast assembly."""

from .metadata_sampler import MetadataSampler
from .chunk_classifier import ChunkClassifier
from .broadcast_merger import BroadcastMerger
from .broadcast_assembler import AssemblerState, BroadcastAssembler

__all__ = [
    "MetadataSampler",
    "ChunkClassifier",
    "BroadcastMerger",
    "AssemblerState",
    "BroadcastAssembler",
]
