"""Abstract base class for transcription backends."""

from abc import ABC, abstractmethod
import logging

from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for transcription backends."""

    def __init__(self, language: str = "de"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    async def transcribe_file(self, audio_path: str) -> TranscriptionResult:
        """Transcribe one audio file.

        Args:
            audio_path: Path to an audio file within the service's size limit

        Returns:
            TranscriptionResult with segment times relative to the file start

        Raises:
            TranscriptionError: If the service call fails
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
