"""Stream recorder: runs the capture subprocess and reports finished chunks.

ffmpeg never says when a segment file is closed. The only signal is that it
opens the *next* one, so a segment counts as complete once a newer segment has
started or the capture process has exited. ``SegmentTracker`` owns that rule;
``Recorder`` turns the process's diagnostic output into events and feeds them
to the tracker.
"""

import asyncio
import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Set

from ..models.events import (
    ChunkCompletedEvent,
    ProcessErrored,
    ProcessExited,
    RecorderEvent,
    SegmentStarted,
)
from .chunk_pub import ChunkPublisher
from .ffmpeg import build_capture_command

logger = logging.getLogger(__name__)

CHUNK_FILENAME_PATTERN = "chunk-%Y%m%d-%H%M%S.mp3"

_OPENING_RE = re.compile(r"Opening '([^']+)' for writing")
_CHUNK_NAME_RE = re.compile(r"^chunk-(\d{8})-(\d{6})\.mp3$")


def parse_capture_line(line: str) -> Optional[SegmentStarted]:
    """Map one line of ffmpeg stderr to an event, or None if it is just noise."""
    match = _OPENING_RE.search(line)
    if match:
        return SegmentStarted(path=match.group(1))
    return None


def is_chunk_filename(name: str) -> bool:
    return _CHUNK_NAME_RE.match(name) is not None


def parse_chunk_start_time(name: str) -> Optional[datetime]:
    """Start time embedded in a chunk filename, as an aware local datetime."""
    match = _CHUNK_NAME_RE.match(Path(name).name)
    if not match:
        return None
    try:
        naive = datetime.strptime(match.group(1) + match.group(2), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return naive.astimezone()


class SegmentTracker:
    """Decides which chunk files are complete, reporting each one exactly once."""

    def __init__(self, chunks_dir: str):
        self.chunks_dir = Path(chunks_dir)
        self.completed: Set[str] = set()
        self.current_segment: Optional[str] = None

    def on_segment_started(self, path: str) -> List[str]:
        """A new segment opened: every older unacknowledged file is complete.

        Scans the directory rather than trusting the previous event, so
        segments whose start lines were missed or batched are still found.
        """
        name = Path(path).name
        completed = self._collect(before=name)
        self.current_segment = name
        return completed

    def on_process_exit(self) -> List[str]:
        """The capture process is gone, so nothing is being written any more."""
        completed = self._collect(before=None)
        self.current_segment = None
        return completed

    def _collect(self, before: Optional[str]) -> List[str]:
        try:
            on_disk = sorted(
                entry.name for entry in self.chunks_dir.iterdir()
                if entry.is_file() and is_chunk_filename(entry.name)
            )
        except OSError as e:
            logger.warning(f"Could not scan chunk directory {self.chunks_dir}: {e}")
            return []

        # Forget files that were consumed and deleted
        self.completed.intersection_update(on_disk)

        # Chunk names sort chronologically
        completed = []
        for name in on_disk:
            if (before is not None and name >= before) or name in self.completed:
                continue
            self.completed.add(name)
            completed.append(str(self.chunks_dir / name))
        return completed


class Recorder:
    """Owns the capture subprocess and restarts it forever."""

    def __init__(self,
                 stream_url: str,
                 chunks_dir: str,
                 publisher: ChunkPublisher,
                 chunk_seconds: int = 120,
                 restart_delay: float = 5.0,
                 stall_seconds: float = 300.0,
                 watchdog_interval: float = 30.0,
                 stop_timeout: float = 10.0,
                 command_factory: Callable[[str, str, int], List[str]] = build_capture_command,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize recorder.

        Args:
            stream_url: Source stream URL
            chunks_dir: Directory the capture process writes segments into
            publisher: Receives one event per completed chunk
            chunk_seconds: Nominal segment length
            restart_delay: Seconds to wait before restarting a dead process
            stall_seconds: Kill the process if no segment started for this long
            watchdog_interval: How often the stall check runs
            stop_timeout: How long stop() waits for the capture loop to wind down
            command_factory: Builds the capture command line
            clock: Monotonic clock used by the watchdog
        """
        self.stream_url = stream_url
        self.chunks_dir = Path(chunks_dir)
        self.publisher = publisher
        self.chunk_seconds = chunk_seconds
        self.restart_delay = restart_delay
        self.stall_seconds = stall_seconds
        self.watchdog_interval = watchdog_interval
        self.stop_timeout = stop_timeout
        self.command_factory = command_factory
        self.clock = clock

        self.tracker = SegmentTracker(str(self.chunks_dir))
        self.process: Optional[asyncio.subprocess.Process] = None
        self.sequence_number = 0
        self.restarts = 0
        self.last_segment_at = clock()

        self._stopping = False
        self._run_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None

    @property
    def segment_pattern(self) -> str:
        return str(self.chunks_dir / CHUNK_FILENAME_PATTERN)

    def start(self) -> None:
        """Start the capture loop and watchdog on the running event loop."""
        if self._run_task is not None:
            logger.warning("Recorder already running")
            return

        self.chunks_dir.mkdir(parents=True, exist_ok=True)
        self._stopping = False
        self._run_task = asyncio.create_task(self._run_forever(), name="recorder")
        self._watchdog_task = asyncio.create_task(self._watchdog_loop(), name="recorder-watchdog")
        logger.info(f"Recorder started: {self.stream_url} -> {self.chunks_dir}")

    async def stop(self) -> None:
        """Stop restarting, terminate the capture process and publish its last chunks."""
        self._stopping = True
        capturing = self.process is not None
        self._kill_process()

        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            await asyncio.gather(self._watchdog_task, return_exceptions=True)

        if self._run_task is not None:
            if capturing:
                # Let the capture loop see the exit and report the final segments itself
                try:
                    await asyncio.wait_for(self._run_task, self.stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Capture loop did not finish within {self.stop_timeout:g}s")
            else:
                self._run_task.cancel()
                await asyncio.gather(self._run_task, return_exceptions=True)

        # Anything the capture loop did not report before it ended
        self.handle_event(ProcessExited(returncode=None))

        self._run_task = None
        self._watchdog_task = None
        logger.info(f"Recorder stopped. Chunks completed: {self.sequence_number}, restarts: {self.restarts}")

    async def _run_forever(self) -> None:
        while not self._stopping:
            event = await self._run_once()
            self.handle_event(event)
            if self._stopping:
                break
            self.restarts += 1
            await asyncio.sleep(self.restart_delay)

    async def _run_once(self) -> RecorderEvent:
        """Run one capture process to completion and report how it ended."""
        cmd = self.command_factory(self.stream_url, self.segment_pattern, self.chunk_seconds)
        logger.info("Starting ffmpeg recording...")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ProcessErrored(error=str(e))

        # A fresh process gets a full stall window before the watchdog acts
        self.last_segment_at = self.clock()
        try:
            async for line in self._read_lines(self.process.stderr):
                event = parse_capture_line(line)
                if event is not None:
                    self.handle_event(event)
            returncode = await self.process.wait()
        finally:
            self.process = None
        return ProcessExited(returncode=returncode)

    @staticmethod
    async def _read_lines(stream: asyncio.StreamReader):
        """Yield text lines split on either newline or carriage return."""
        pending = ""
        while True:
            data = await stream.read(4096)
            if not data:
                break
            pending += data.decode("utf-8", errors="replace")
            parts = re.split(r"[\r\n]", pending)
            pending = parts.pop()
            for part in parts:
                if part:
                    yield part
        if pending:
            yield pending

    def handle_event(self, event: RecorderEvent) -> List[str]:
        """Apply one recorder event; returns the chunk files it completed."""
        if isinstance(event, SegmentStarted):
            self.last_segment_at = self.clock()
            logger.debug(f"Segment started: {event.path}")
            completed = self.tracker.on_segment_started(event.path)
        elif isinstance(event, ProcessExited):
            if not self._stopping:
                logger.error(f"ffmpeg exited with code {event.returncode}, restarting in {self.restart_delay:g}s...")
            completed = self.tracker.on_process_exit()
        elif isinstance(event, ProcessErrored):
            logger.error(f"ffmpeg error: {event.error}, restarting in {self.restart_delay:g}s...")
            completed = self.tracker.on_process_exit()
        else:
            raise TypeError(f"Unknown recorder event: {event!r}")

        for file_path in completed:
            self._dispatch(file_path)
        return completed

    def _dispatch(self, file_path: str) -> None:
        path = Path(file_path)
        start_time = parse_chunk_start_time(path.name)
        if start_time is None:
            logger.warning(f"Ignoring chunk with unparsable name: {path.name}")
            return

        try:
            if path.stat().st_size == 0:
                logger.warning(f"Discarding empty chunk: {path.name}")
                path.unlink()
                return
        except OSError as e:
            logger.warning(f"Chunk {path.name} vanished before processing: {e}")
            return

        self.sequence_number += 1
        event = ChunkCompletedEvent(
            file_path=str(path),
            start_time=start_time,
            sequence_number=self.sequence_number,
        )
        try:
            self.publisher.publish_chunk_completed(event)
        except Exception as e:
            logger.error(f"Chunk handler failed for {path.name}: {e}", exc_info=True)

    def check_stall(self) -> bool:
        """Kill a running process that has not started a segment in stall_seconds."""
        if self.process is None or self.process.returncode is not None:
            return False

        idle = self.clock() - self.last_segment_at
        if idle < self.stall_seconds:
            return False

        logger.warning(f"No new chunk for {idle:.0f}s, killing stalled ffmpeg (pid {self.process.pid})")
        self._kill_process()
        return True

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            self.check_stall()

    def _kill_process(self) -> None:
        if self.process is None or self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass
