"""Groq Whisper transcription backend."""

import logging
import os
from typing import Any, Dict, Optional

import aiohttp

from .. import TranscriptionError
from ..models.transcription import TranscriptionResult, TranscriptSegment
from .base import AbstractTranscriptionBackend

logger = logging.getLogger(__name__)

GROQ_TRANSCRIPTIONS_URL = "https://api.groq.com/openai/v1/audio/transcriptions"


def _to_ms(seconds: Any) -> int:
    return int(round(float(seconds) * 1000))


def parse_verbose_json(payload: Dict[str, Any]) -> TranscriptionResult:
    """Convert a verbose_json response (seconds) into a TranscriptionResult (ms)."""
    try:
        segments = []
        for raw in payload.get("segments") or []:
            start = _to_ms(raw["start"])
            end = max(start, _to_ms(raw["end"]))
            segments.append(TranscriptSegment(start=start, end=end, text=str(raw.get("text", "")).strip()))
        duration = float(payload.get("duration") or 0.0)
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptionError(f"Malformed transcription response: {e}") from e
    return TranscriptionResult(duration=duration, segments=segments)


class GroqWhisperBackend(AbstractTranscriptionBackend):
    """Speech-to-text through Groq's OpenAI-compatible Whisper endpoint."""

    def __init__(self,
                 api_key: str,
                 model: str = "whisper-large-v3-turbo",
                 language: str = "de",
                 base_url: str = GROQ_TRANSCRIPTIONS_URL,
                 timeout: Optional[float] = None):
        """Initialize Groq backend.

        Args:
            api_key: Groq API key
            model: Whisper model name
            language: Spoken language hint
            base_url: Transcriptions endpoint
            timeout: Optional request timeout in seconds; None waits indefinitely
        """
        super().__init__(language)
        if not api_key:
            raise ValueError("Groq API key is required - cannot initialize without credentials")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"GroqWhisperBackend initialized with model: {model}, language: {language}")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def transcribe_file(self, audio_path: str) -> TranscriptionResult:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        size_mb = os.path.getsize(audio_path) / (1024 * 1024)
        logger.info(f"Transcribing {os.path.basename(audio_path)} ({size_mb:.1f}MB)...")

        try:
            with open(audio_path, "rb") as audio_file:
                form = aiohttp.FormData()
                form.add_field("file", audio_file, filename=os.path.basename(audio_path))
                form.add_field("model", self.model)
                form.add_field("response_format", "verbose_json")
                form.add_field("language", self.language)

                async with self._get_session().post(self.base_url, headers=headers, data=form) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise TranscriptionError(f"Groq API error: {response.status} - {error_text}")
                    payload = await response.json()
        except aiohttp.ClientError as e:
            raise TranscriptionError(f"Groq request failed: {e}") from e

        result = parse_verbose_json(payload)
        logger.debug(f"Received {len(result.segments)} segments, duration {result.duration:.1f}s")
        return result

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
