"""Unit tests for the BroadcastAssembler state machine."""

import asyncio
import json
import pytest
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

from radiomonitor import MergeError
from radiomonitor.models.chunk import ChunkInfo
from radiomonitor.services.broadcast_assembler import AssemblerState, BroadcastAssembler
from radiomonitor.storage.file_manager import FileManager


class RecordingMerger:
    """Records each batch; optionally holds every merge until released."""

    def __init__(self, hold: bool = False, error: Optional[Exception] = None):
        self.hold = hold
        self.error = error
        self.batches: List[List[ChunkInfo]] = []
        self.active = 0
        self.max_active = 0
        self.release: Optional[asyncio.Event] = None

    async def merge(self, chunks):
        self.batches.append(list(chunks))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hold:
                if self.release is None:
                    self.release = asyncio.Event()
                await self.release.wait()
                self.release = None
            else:
                await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            return SimpleNamespace(id=f"broadcast-{len(self.batches)}")
        finally:
            self.active -= 1


@pytest.fixture
def file_manager(temp_data_dir):
    return FileManager(temp_data_dir)


def names(batch):
    return [Path(c.file_path).name for c in batch]


@pytest.mark.unit
class TestBroadcastAssembler:
    """Test cases for buffering, triggers and merge serialization."""

    def test_music_boundary_merges_pending_speech(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)
        speech = [make_chunk(0), make_chunk(1)]
        music = make_chunk(2, is_speech=False)

        async def scenario():
            assert assembler.on_chunk(speech[0]) is None
            assert assembler.on_chunk(speech[1]) is None
            assert assembler.state == AssemblerState.BUFFERING
            task = assembler.on_chunk(music)
            assert task is not None
            assert assembler.state == AssemblerState.MERGING
            return await assembler.wait_for_merge()

        broadcast = asyncio.run(scenario())

        assert broadcast.id == "broadcast-1"
        assert len(merger.batches) == 1
        assert names(merger.batches[0]) == names(speech)
        assert not Path(music.file_path).exists()
        assert assembler.state == AssemblerState.IDLE
        assert assembler.broadcasts == ["broadcast-1"]

    def test_music_without_pending_speech_only_deletes(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)
        music = make_chunk(0, is_speech=False)

        async def scenario():
            return assembler.on_chunk(music)

        assert asyncio.run(scenario()) is None
        assert merger.batches == []
        assert not Path(music.file_path).exists()
        assert assembler.state == AssemblerState.IDLE

    def test_idle_timeout_forces_merge(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager, idle_seconds=300)
        chunk = make_chunk(0)

        async def scenario():
            assembler.on_chunk(chunk)
            assert assembler.check_idle(now=chunk.end_time + timedelta(seconds=300)) is None
            task = assembler.check_idle(now=chunk.end_time + timedelta(seconds=301))
            assert task is not None
            await task

        asyncio.run(scenario())

        assert [names(b) for b in merger.batches] == [names([chunk])]

    def test_idle_flush_matches_music_boundary(self, temp_data_dir, make_chunk):
        batches = []
        for trigger in ("music", "idle"):
            file_manager = FileManager(str(Path(temp_data_dir) / trigger))
            merger = RecordingMerger()
            assembler = BroadcastAssembler(merger, file_manager, idle_seconds=300)
            speech = [make_chunk(0), make_chunk(1)]

            async def scenario():
                for chunk in speech:
                    assembler.on_chunk(chunk)
                if trigger == "music":
                    assembler.on_chunk(make_chunk(2, is_speech=False))
                else:
                    assembler.check_idle(now=speech[-1].end_time + timedelta(minutes=6))
                await assembler.wait_for_merge()

            asyncio.run(scenario())
            assert len(merger.batches) == 1
            batches.append(merger.batches[0])

        assert batches[0] == batches[1]

    def test_idle_check_with_nothing_pending(self, file_manager):
        assembler = BroadcastAssembler(RecordingMerger(), file_manager)

        assert assembler.check_idle() is None

    def test_only_one_merge_at_a_time(self, file_manager, make_chunk):
        merger = RecordingMerger(hold=True)
        assembler = BroadcastAssembler(merger, file_manager)
        first_batch = [make_chunk(0), make_chunk(1)]
        late = make_chunk(3)

        async def scenario():
            for chunk in first_batch:
                assembler.on_chunk(chunk)
            assembler.on_chunk(make_chunk(2, is_speech=False))
            await asyncio.sleep(0)
            assert assembler.state == AssemblerState.MERGING

            # Arrives while the first merge is running
            assembler.on_chunk(late)
            assert assembler.on_chunk(make_chunk(4, is_speech=False)) is None
            assert assembler.check_idle(now=late.end_time + timedelta(hours=1)) is None
            assert names(assembler.pending) == names([late])

            merger.release.set()
            await assembler.wait_for_merge()
            assert assembler.state == AssemblerState.BUFFERING

            task = assembler.on_chunk(make_chunk(5, is_speech=False))
            assert task is not None
            await asyncio.sleep(0)
            merger.release.set()
            await task

        asyncio.run(scenario())

        assert merger.max_active == 1
        assert [names(b) for b in merger.batches] == [names(first_batch), names([late])]
        assert assembler.merges_started == 2
        assert assembler.state == AssemblerState.IDLE

    def test_each_chunk_merged_at_most_once(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)

        async def scenario():
            index = 0
            for pattern in [[True, True, False], [True, False], [False, False], [True, True, True]]:
                for is_speech in pattern:
                    assembler.on_chunk(make_chunk(index, is_speech=is_speech))
                    index += 1
                await assembler.wait_for_merge()
            await assembler.stop()

        asyncio.run(scenario())

        merged = [name for batch in merger.batches for name in names(batch)]
        assert len(merged) == len(set(merged)) == 6
        assert [len(b) for b in merger.batches] == [2, 1, 3]

    def test_failed_merge_is_dead_lettered(self, file_manager, make_chunk):
        merger = RecordingMerger(error=MergeError("Broadcast failed: Groq API error: 500"))
        assembler = BroadcastAssembler(merger, file_manager)
        speech = [make_chunk(0), make_chunk(1)]

        async def scenario():
            for chunk in speech:
                assembler.on_chunk(chunk)
            assembler.on_chunk(make_chunk(2, is_speech=False))
            return await assembler.wait_for_merge()

        assert asyncio.run(scenario()) is None
        assert assembler.merges_failed == 1
        assert assembler.state == AssemblerState.IDLE
        assert assembler.pending == []

        failed = list(file_manager.failed_dir.iterdir())
        assert len(failed) == 1
        assert sorted(p.name for p in failed[0].iterdir()) == sorted(names(speech) + ["batch.json"])
        record = json.loads((failed[0] / "batch.json").read_text())
        assert "500" in record["error"]

    def test_unexpected_error_does_not_escape_task(self, file_manager, make_chunk):
        merger = RecordingMerger(error=RuntimeError("bug"))
        assembler = BroadcastAssembler(merger, file_manager)

        async def scenario():
            assembler.on_chunk(make_chunk(0))
            assembler.on_chunk(make_chunk(1, is_speech=False))
            return await assembler.wait_for_merge()

        assert asyncio.run(scenario()) is None
        assert assembler.merges_failed == 1

    def test_stop_flushes_pending_chunks(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager, idle_check_interval=3600)

        async def scenario():
            assembler.start()
            assembler.on_chunk(make_chunk(0))
            await assembler.stop()

        asyncio.run(scenario())

        assert len(merger.batches) == 1
        assert assembler.state == AssemblerState.IDLE

    def test_stop_without_flush_keeps_chunks(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)
        chunk = make_chunk(0)

        async def scenario():
            assembler.on_chunk(chunk)
            await assembler.stop(flush=False)

        asyncio.run(scenario())

        assert merger.batches == []
        assert Path(chunk.file_path).exists()

    def test_indeterminate_chunk_is_buffered_not_deleted(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)
        leftover = replace(make_chunk(0, is_speech=True), speech_ratio=0.0, indeterminate=True)

        async def scenario():
            return assembler.on_chunk(leftover)

        assert asyncio.run(scenario()) is None
        assert Path(leftover.file_path).exists()
        assert names(assembler.pending) == names([leftover])
        assert assembler.state == AssemblerState.BUFFERING
        assert merger.batches == []

    def test_indeterminate_chunk_joins_the_next_broadcast(self, file_manager, make_chunk):
        merger = RecordingMerger()
        assembler = BroadcastAssembler(merger, file_manager)
        leftover = replace(make_chunk(0, is_speech=True), speech_ratio=0.0, indeterminate=True)
        speech = make_chunk(1)

        async def scenario():
            assembler.on_chunk(leftover)
            assembler.on_chunk(speech)
            assembler.on_chunk(make_chunk(2, is_speech=False))
            await assembler.wait_for_merge()

        asyncio.run(scenario())

        assert [names(b) for b in merger.batches] == [names([leftover, speech])]
