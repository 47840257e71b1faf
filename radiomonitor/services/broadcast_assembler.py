"""Broadcast assembler: the state machine that groups speech chunks into broadcasts.

IDLE       no speech chunks pending
BUFFERING  one or more speech chunks pending
MERGING    a merge is in flight; at most one at a time

A music chunk or an idle timeout drains the pending queue into a merge. The
drain is a plain swap with no ``await`` in between, so nothing running on the
event loop can observe a half-drained queue. Chunks that arrive while a merge
runs collect in the fresh queue and wait for the next trigger.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .. import MergeError
from ..models.broadcast import Broadcast, broadcast_id_for
from ..models.chunk import ChunkInfo
from ..storage.file_manager import FileManager
from .broadcast_merger import BroadcastMerger

logger = logging.getLogger(__name__)


class AssemblerState(Enum):
    """Assembler states."""
    IDLE = "idle"
    BUFFERING = "buffering"
    MERGING = "merging"


def _local_now() -> datetime:
    return datetime.now().astimezone()


class BroadcastAssembler:
    """Buffers speech chunks and finalizes them one merge at a time."""

    def __init__(self,
                 merger: BroadcastMerger,
                 file_manager: FileManager,
                 idle_seconds: float = 300.0,
                 idle_check_interval: float = 60.0,
                 clock: Callable[[], datetime] = _local_now):
        """Initialize broadcast assembler.

        Args:
            merger: Runs the concat/transcribe/persist pipeline
            file_manager: Used to delete music chunks and keep failed batches
            idle_seconds: Force a merge once the newest pending chunk ended this long ago
            idle_check_interval: How often the idle check runs
            clock: Returns the current aware wall-clock time
        """
        self.merger = merger
        self.file_manager = file_manager
        self.idle_timeout = timedelta(seconds=idle_seconds)
        self.idle_check_interval = idle_check_interval
        self.clock = clock

        self.pending: List[ChunkInfo] = []
        self.merge_task: Optional[asyncio.Task] = None
        self.broadcasts: List[str] = []
        self.merges_started = 0
        self.merges_failed = 0

        self._idle_task: Optional[asyncio.Task] = None

    @property
    def is_merging(self) -> bool:
        return self.merge_task is not None and not self.merge_task.done()

    @property
    def state(self) -> AssemblerState:
        if self.is_merging:
            return AssemblerState.MERGING
        if self.pending:
            return AssemblerState.BUFFERING
        return AssemblerState.IDLE

    def start(self) -> None:
        """Start the periodic idle check on the running event loop."""
        if self._idle_task is not None:
            logger.warning("Assembler already running")
            return
        self._idle_task = asyncio.create_task(self._idle_loop(), name="assembler-idle-check")

    async def stop(self, flush: bool = True) -> None:
        """Stop the idle check and wait for merges to finish.

        Args:
            flush: Also finalize chunks that are still pending
        """
        if self._idle_task is not None:
            self._idle_task.cancel()
            await asyncio.gather(self._idle_task, return_exceptions=True)
            self._idle_task = None

        while True:
            await self.wait_for_merge()
            if not (flush and self.pending):
                break
            logger.info(f"Flushing {len(self.pending)} pending chunks on shutdown")
            self._start_merge("shutdown")

        if self.pending:
            logger.warning(f"Stopping with {len(self.pending)} unmerged chunks on disk")

    async def wait_for_merge(self) -> Optional[Broadcast]:
        """Wait for the in-flight merge, if any, and return its broadcast."""
        if self.merge_task is None:
            return None
        return await self.merge_task

    def on_chunk(self, chunk: ChunkInfo) -> Optional[asyncio.Task]:
        """Feed one classified chunk; returns the merge task if this chunk started one."""
        # Indeterminate chunks are buffered like speech and never trigger a merge
        if chunk.is_speech or chunk.indeterminate:
            self.pending.append(chunk)
            note = " (no metadata)" if chunk.indeterminate else ""
            logger.info(f"Buffered {Path(chunk.file_path).name}{note} ({len(self.pending)} chunks pending)")
            return None

        task = None
        if self.pending:
            if self.is_merging:
                logger.info(f"Music boundary during merge; {len(self.pending)} chunks wait for the next trigger")
            else:
                task = self._start_merge("music boundary")

        # Music is never part of a broadcast
        self.file_manager.delete_chunk(chunk.file_path)
        logger.info(f"Deleted {Path(chunk.file_path).name} (music only)")
        return task

    def check_idle(self, now: Optional[datetime] = None) -> Optional[asyncio.Task]:
        """Force a merge when no music boundary has arrived for idle_seconds."""
        if not self.pending or self.is_merging:
            return None

        now = now or self.clock()
        idle = now - self.pending[-1].end_time
        if idle <= self.idle_timeout:
            return None

        logger.info(f"Force merging due to idle timeout ({idle.total_seconds():.0f}s)")
        return self._start_merge("idle timeout")

    async def _idle_loop(self) -> None:
        while True:
            await asyncio.sleep(self.idle_check_interval)
            self.check_idle()

    def _start_merge(self, reason: str) -> asyncio.Task:
        batch, self.pending = self.pending, []
        self.merges_started += 1
        logger.debug(f"Starting merge #{self.merges_started} ({reason}) with {len(batch)} chunks")
        self.merge_task = asyncio.get_running_loop().create_task(
            self._run_merge(batch), name=f"merge-{self.merges_started}"
        )
        return self.merge_task

    async def _run_merge(self, batch: List[ChunkInfo]) -> Optional[Broadcast]:
        try:
            broadcast = await self.merger.merge(batch)
        except MergeError as e:
            self._handle_failed_merge(batch, e)
            return None
        except Exception as e:
            # Anything else is a bug, but the batch still must not vanish
            logger.error(f"Unexpected error while merging: {e}")
            self._handle_failed_merge(batch, e)
            return None

        self.broadcasts.append(broadcast.id)
        return broadcast

    def _handle_failed_merge(self, batch: List[ChunkInfo], error: Exception) -> None:
        """A failed batch is never requeued; its audio goes to the dead-letter directory."""
        self.merges_failed += 1
        logger.error(f"Merge failed: {error}", exc_info=error)
        try:
            self.file_manager.dead_letter(broadcast_id_for(batch[0].start_time), batch, str(error))
        except OSError as e:
            logger.error(f"Could not preserve failed batch: {e}")
