"""Unit tests for MetadataSampler and ChunkClassifier."""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from radiomonitor.services.chunk_classifier import ChunkClassifier
from radiomonitor.services.metadata_sampler import MetadataSampler

from conftest import BASE_TIME


def at(seconds: float):
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def sampler():
    return MetadataSampler("http://example.invalid/now_playing", clock=lambda: BASE_TIME)


@pytest.mark.unit
class TestMetadataSampler:
    """Test cases for sample recording and range queries."""

    def test_empty_range(self, sampler):
        assert sampler.speech_ratio(at(0), at(120)) == 0.0
        assert sampler.is_speech(at(0), at(120)) is False
        assert len(sampler.samples) == 0

    def test_all_music(self, sampler):
        for second in range(0, 120, 10):
            sampler.record_sample("Artist", "Song", timestamp=at(second))

        assert sampler.speech_ratio(at(0), at(120)) == 0.0
        assert sampler.is_speech(at(0), at(120)) is False

    def test_single_speech_sample_marks_range(self, sampler):
        sampler.record_sample("Artist", "Song", timestamp=at(0))
        sampler.record_sample(None, None, timestamp=at(30))
        sampler.record_sample("Artist", "Song", timestamp=at(60))
        sampler.record_sample("Artist", "Song", timestamp=at(90))

        assert sampler.is_speech(at(0), at(120)) is True
        assert sampler.speech_ratio(at(0), at(120)) == pytest.approx(0.25)

    def test_empty_string_artist_is_speech(self, sampler):
        sample = sampler.record_sample("", "Morning Show", timestamp=at(0))

        assert sample.is_speech
        assert sample.artist is None

    def test_range_bounds_are_inclusive(self, sampler):
        sampler.record_sample(None, None, timestamp=at(0))
        sampler.record_sample(None, None, timestamp=at(120))
        sampler.record_sample("Artist", "Song", timestamp=at(121))

        assert len(sampler.samples_in_range(at(0), at(120))) == 2
        assert sampler.speech_ratio(at(0), at(120)) == 1.0

    def test_retention_evicts_old_samples(self):
        sampler = MetadataSampler("http://example.invalid", retention_seconds=60)
        sampler.record_sample(None, None, timestamp=at(0))
        sampler.record_sample(None, None, timestamp=at(30))
        sampler.record_sample("Artist", "Song", timestamp=at(100))

        assert [s.timestamp for s in sampler.samples] == [at(100)]
        assert sampler.speech_ratio(at(0), at(50)) == 0.0

    def test_poll_failure_records_speech_sample(self, sampler):
        sampler.fetch_metadata = AsyncMock(return_value=(None, None))

        sample = asyncio.run(sampler.poll_once())

        assert sample.is_speech
        assert sampler.samples[-1] == sample

    def test_poll_records_track(self, sampler):
        sampler.fetch_metadata = AsyncMock(return_value=("Artist", "Song"))

        sample = asyncio.run(sampler.poll_once())

        assert not sample.is_speech
        assert sample.title == "Song"

    def test_poll_cadence_does_not_wait_for_slow_requests(self, sampler):
        sampler.poll_interval = 0.05
        started = []

        async def slow_fetch():
            started.append(asyncio.get_running_loop().time())
            await asyncio.sleep(0.25)
            return "Artist", "Song"

        sampler.fetch_metadata = slow_fetch

        async def scenario():
            sampler.start()
            await asyncio.sleep(0.32)
            await sampler.stop()

        asyncio.run(scenario())

        # A sleep-after-fetch loop would have started two polls by now
        assert len(started) >= 4
        assert len(sampler.samples) >= 1
        assert sampler._in_flight == set()

    def test_buffer_stats(self, sampler):
        sampler.record_sample("Artist", "Song", timestamp=at(0))
        sampler.record_sample(None, None, timestamp=at(1))

        stats = sampler.get_buffer_stats()

        assert stats["sample_count"] == 2
        assert stats["oldest_timestamp"] == at(0)
        assert stats["newest_timestamp"] == at(1)
        assert stats["failed_polls"] == 0


@pytest.mark.unit
class TestChunkClassifier:
    """Test cases for chunk classification."""

    def test_speech_chunk(self, sampler):
        sampler.record_sample(None, None, timestamp=at(10))
        sampler.record_sample("Artist", "Song", timestamp=at(20))
        classifier = ChunkClassifier(sampler, chunk_seconds=120)

        chunk = classifier.classify("/tmp/chunk-a.mp3", at(0))

        assert chunk.is_speech
        assert chunk.speech_ratio == pytest.approx(0.5)
        assert chunk.duration_ms == 120_000
        assert chunk.end_time == at(120)

    def test_music_chunk(self, sampler):
        sampler.record_sample("Artist", "Song", timestamp=at(10))
        classifier = ChunkClassifier(sampler, chunk_seconds=120)

        chunk = classifier.classify("/tmp/chunk-a.mp3", at(0))

        assert not chunk.is_speech
        assert chunk.speech_ratio == 0.0

    def test_chunk_without_samples_is_indeterminate(self, sampler):
        sampler.record_sample(None, None, timestamp=at(500))
        classifier = ChunkClassifier(sampler, chunk_seconds=120)

        chunk = classifier.classify("/tmp/chunk-a.mp3", at(0))

        assert chunk.indeterminate
        assert chunk.is_speech
        assert chunk.speech_ratio == 0.0

    def test_sampled_chunk_is_not_indeterminate(self, sampler):
        sampler.record_sample("Artist", "Song", timestamp=at(10))
        classifier = ChunkClassifier(sampler, chunk_seconds=120)

        assert not classifier.classify("/tmp/chunk-a.mp3", at(0)).indeterminate


@pytest.mark.unit
class TestSpeechQueryConsistency:
    """speech_ratio and is_speech must agree for every range."""

    @pytest.mark.parametrize("pattern", [
        [],
        [True],
        [False],
        [True, False, False],
        [False, False, True, True],
        [True] * 12,
    ])
    def test_ratio_bounds_and_agreement(self, sampler, pattern):
        for i, is_speech in enumerate(pattern):
            if is_speech:
                sampler.record_sample(None, None, timestamp=at(i * 10))
            else:
                sampler.record_sample("Artist", "Song", timestamp=at(i * 10))

        for start, end in [(0, 120), (0, 5), (15, 35), (200, 300)]:
            ratio = sampler.speech_ratio(at(start), at(end))
            assert 0.0 <= ratio <= 1.0
            assert sampler.is_speech(at(start), at(end)) == (ratio > 0)

    def test_no_sample_older_than_retention_after_insert(self):
        sampler = MetadataSampler("http://example.invalid", retention_seconds=30)

        for second in range(0, 200, 7):
            sampler.record_sample(None, None, timestamp=at(second))
            assert all(at(second) - s.timestamp <= timedelta(seconds=30) for s in sampler.samples)
