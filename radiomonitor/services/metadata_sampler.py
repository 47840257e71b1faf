"""Now-playing sampler that keeps a rolling window of speech/music observations."""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, List, Optional, Set

import aiohttp

from ..models.metadata import MetadataSample

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class MetadataSampler:
    """Polls the now-playing endpoint and answers speech questions about time ranges.

    A failed poll is recorded as an empty sample, which reads as speech: losing
    a stretch of talk is worse than transcribing a few seconds of music.
    """

    def __init__(self,
                 metadata_url: str,
                 poll_interval: float = 1.0,
                 retention_seconds: float = 900.0,
                 request_timeout: float = 5.0,
                 clock: Callable[[], datetime] = _local_now):
        """Initialize metadata sampler.

        Args:
            metadata_url: Now-playing JSON endpoint
            poll_interval: Seconds between polls
            retention_seconds: How long samples are kept
            request_timeout: Per-request timeout in seconds
            clock: Returns the current aware wall-clock time
        """
        self.metadata_url = metadata_url
        self.poll_interval = poll_interval
        self.retention = timedelta(seconds=retention_seconds)
        self.request_timeout = request_timeout
        self.clock = clock

        self.samples: Deque[MetadataSample] = deque()
        self.failed_polls = 0
        self._last_is_speech: Optional[bool] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

        logger.info(f"MetadataSampler initialized: every {poll_interval}s, "
                    f"{retention_seconds:.0f}s retention")

    def start(self) -> None:
        """Start polling on the running event loop."""
        if self._task is not None:
            logger.warning("Metadata sampler already running")
            return
        self._task = asyncio.create_task(self._poll_loop(), name="metadata-sampler")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        in_flight = list(self._in_flight)
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _poll_loop(self) -> None:
        """Start one poll per tick on a fixed schedule, however long requests take."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            task = loop.create_task(self.poll_once())
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

            next_tick += self.poll_interval
            # Skip ticks that were missed entirely
            if next_tick < loop.time():
                next_tick = loop.time()
            await asyncio.sleep(next_tick - loop.time())

    async def poll_once(self) -> MetadataSample:
        """Fetch the current metadata and record it, whatever the outcome."""
        artist, title = await self.fetch_metadata()
        return self.record_sample(artist, title)

    async def fetch_metadata(self):
        """Return (artist, title); (None, None) if the endpoint cannot be read."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.request_timeout))
        try:
            async with self._session.get(self.metadata_url) as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=response.reason or "",
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.failed_polls += 1
            logger.warning(f"Metadata fetch failed: {e}")
            return None, None

        if not isinstance(data, dict):
            self.failed_polls += 1
            logger.warning(f"Unexpected metadata payload: {data!r}")
            return None, None

        return data.get("artist") or None, data.get("title") or None

    def record_sample(self,
                      artist: Optional[str],
                      title: Optional[str],
                      timestamp: Optional[datetime] = None) -> MetadataSample:
        """Append a sample and evict everything older than the retention window."""
        now = timestamp or self.clock()
        sample = MetadataSample(timestamp=now, artist=artist or None, title=title or None)
        self.samples.append(sample)

        cutoff = now - self.retention
        while self.samples and self.samples[0].timestamp < cutoff:
            self.samples.popleft()

        if sample.is_speech != self._last_is_speech:
            status = "Speech" if sample.is_speech else f"Music: {artist} - {title}"
            logger.info(f"Now playing changed -> {status}")
            self._last_is_speech = sample.is_speech
        logger.debug(f"Sample {now:%H:%M:%S}: artist={artist!r} title={title!r}")
        return sample

    def samples_in_range(self, start: datetime, end: datetime) -> List[MetadataSample]:
        """Samples whose timestamp falls within [start, end]."""
        return [s for s in self.samples if start <= s.timestamp <= end]

    def is_speech(self, start: datetime, end: datetime) -> bool:
        """True if any sample in the range had no artist."""
        return any(s.is_speech for s in self.samples_in_range(start, end))

    def speech_ratio(self, start: datetime, end: datetime) -> float:
        """Fraction of samples in the range without an artist.

        A range with no samples (e.g. older than the retention window) reports
        0.0. That means "unknown", not "music".
        """
        samples = self.samples_in_range(start, end)
        if not samples:
            return 0.0
        return sum(1 for s in samples if s.is_speech) / len(samples)

    def get_buffer_stats(self) -> dict:
        """Get buffer statistics."""
        return {
            "sample_count": len(self.samples),
            "oldest_timestamp": self.samples[0].timestamp if self.samples else None,
            "newest_timestamp": self.samples[-1].timestamp if self.samples else None,
            "failed_polls": self.failed_polls,
            "retention_seconds": self.retention.total_seconds(),
        }
