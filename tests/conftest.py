"""Pytest configuration and fixtures for radio monitor tests."""

import pytest
import tempfile
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from pubsub import pub

from radiomonitor.models.chunk import ChunkInfo
from radiomonitor.models.transcription import TranscriptionResult, TranscriptSegment
from radiomonitor.transcription.base import AbstractTranscriptionBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Fixed reference time so chunk names and ids are predictable
BASE_TIME = datetime(2024, 3, 1, 14, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests that wire several components together")


@pytest.fixture(autouse=True)
def reset_pubsub():
    """Listeners registered by one test must not see another test's messages."""
    yield
    pub.unsubAll()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


def chunk_name(start: datetime) -> str:
    return f"chunk-{start.astimezone():%Y%m%d-%H%M%S}.mp3"


@pytest.fixture
def make_chunk(temp_data_dir):
    """Write a fake chunk file and return its ChunkInfo."""
    chunks_dir = Path(temp_data_dir) / "chunks"
    chunks_dir.mkdir(parents=True, exist_ok=True)

    def _make(index: int, is_speech: bool = True, content: bytes = b"ID3 fake mp3 data",
              duration_seconds: int = 120) -> ChunkInfo:
        start = BASE_TIME + timedelta(seconds=index * duration_seconds)
        path = chunks_dir / chunk_name(start)
        path.write_bytes(content)
        return ChunkInfo(
            file_path=str(path),
            start_time=start,
            duration_ms=duration_seconds * 1000,
            is_speech=is_speech,
            speech_ratio=1.0 if is_speech else 0.0,
        )

    return _make


class FakeTranscriptionBackend(AbstractTranscriptionBackend):
    """Returns canned results in order and records which files it was given."""

    def __init__(self, results: Optional[List[TranscriptionResult]] = None, error: Optional[Exception] = None):
        super().__init__("de")
        self.results = list(results or [])
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    async def transcribe_file(self, audio_path: str) -> TranscriptionResult:
        self.calls.append(audio_path)
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return TranscriptionResult(
            duration=240.0,
            segments=[TranscriptSegment(start=0, end=2000, text="Guten Abend, hier sind die Nachrichten.")],
        )

    async def close(self) -> None:
        self.closed = True


async def fake_concat(input_paths, output_path):
    """Stands in for ffmpeg: appends the inputs byte for byte."""
    with open(output_path, "wb") as out:
        for path in input_paths:
            with open(path, "rb") as f:
                out.write(f.read())


@pytest.fixture
def fake_backend():
    return FakeTranscriptionBackend()
