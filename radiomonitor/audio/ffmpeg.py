"""Helpers for building and running ffmpeg command lines."""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Sequence

from .. import RadioMonitorError

logger = logging.getLogger(__name__)

FFMPEG_BINARY = "ffmpeg"


class FFmpegError(RadioMonitorError):
    """Raised when an ffmpeg invocation fails."""


def build_capture_command(stream_url: str, segment_pattern: str, chunk_seconds: int) -> List[str]:
    """Return the command that records ``stream_url`` into fixed-length segments.

    The segment muxer expands ``segment_pattern`` with strftime, so each file
    name carries the wall-clock time its segment started.
    """
    return [
        FFMPEG_BINARY,
        "-y",
        "-nostats",
        "-reconnect", "1",
        "-reconnect_streamed", "1",
        "-reconnect_delay_max", "5",
        "-i", stream_url,
        "-c", "copy",
        "-f", "segment",
        "-segment_time", str(chunk_seconds),
        "-strftime", "1",
        "-reset_timestamps", "1",
        segment_pattern,
    ]


async def run_ffmpeg(args: Sequence[str]) -> None:
    """Run ffmpeg to completion, raising FFmpegError on a non-zero exit."""
    cmd = [FFMPEG_BINARY, *args]
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise FFmpegError(f"Failed to start FFmpeg: {e}") from e

    _, stderr = await process.communicate()
    if process.returncode != 0:
        stderr_text = stderr.decode("utf-8", errors="replace") if stderr else ""
        raise FFmpegError(f"FFmpeg failed with code {process.returncode}: {stderr_text.strip()}")


async def concat_audio_files(input_paths: Sequence[str], output_path: str) -> None:
    """Join audio files in order without re-encoding.

    A single input is copied as-is.
    """
    if not input_paths:
        raise FFmpegError("No input files to merge")

    if len(input_paths) == 1:
        shutil.copyfile(input_paths[0], output_path)
        return

    list_file = output_path + ".txt"
    with open(list_file, "w", encoding="utf-8") as f:
        for path in input_paths:
            escaped = str(Path(path).absolute()).replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")

    try:
        await run_ffmpeg([
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", list_file,
            "-c", "copy",
            output_path,
        ])
    finally:
        try:
            os.remove(list_file)
        except OSError:
            logger.debug(f"Could not remove concat list {list_file}")


async def split_audio_file(input_path: str, output_dir: str, segment_seconds: int) -> List[str]:
    """Cut a file into ``segment_seconds`` long parts and return them in order."""
    suffix = Path(input_path).suffix or ".mp3"
    pattern = str(Path(output_dir) / f"segment_%03d{suffix}")
    await run_ffmpeg([
        "-y",
        "-i", input_path,
        "-f", "segment",
        "-segment_time", str(segment_seconds),
        "-c", "copy",
        pattern,
    ])
    return sorted(
        str(path) for path in Path(output_dir).iterdir()
        if path.name.startswith("segment_") and path.suffix == suffix
    )
