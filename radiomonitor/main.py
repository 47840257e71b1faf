"""Main application entry point for the radio monitor."""

import sys
import json
import signal
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler
from pubsub import pub

from . import ConfigurationError, RadioMonitorError, __version__
from .audio.chunk_pub import CHUNK_COMPLETED_TOPIC, ChunkPublisher
from .audio.recorder import Recorder
from .config import MonitorConfig
from .models.events import ChunkCompletedEvent
from .services.broadcast_assembler import BroadcastAssembler
from .services.broadcast_merger import BroadcastMerger
from .services.chunk_classifier import ChunkClassifier
from .services.metadata_sampler import MetadataSampler
from .storage.file_manager import FileManager
from .storage.index_builder import IndexBuilder
from .transcription.gateway import TranscriptionGateway
from .transcription.groq_backend import GroqWhisperBackend

logger = logging.getLogger(__name__)


def build_gateway(config: MonitorConfig) -> TranscriptionGateway:
    """Groq backend behind the size-limit gateway. Raises ConfigurationError without a key."""
    backend = GroqWhisperBackend(
        api_key=config.get_api_key(),
        model=config.get('transcription.model'),
        language=config.get('transcription.language', 'de'),
        base_url=config.get('transcription.base_url'),
    )
    return TranscriptionGateway(
        backend,
        max_file_size=config.get('transcription.max_file_size_bytes'),
        split_seconds=config.get('transcription.split_seconds'),
    )


class Monitor:
    """Wires recorder, classifier, assembler and merger into one running service."""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self._stop_event: Optional[asyncio.Event] = None

    def init(self) -> None:
        logger.info("Initializing services...")

        chunk_seconds = self.config.get('recorder.chunk_seconds', 120)
        self.gateway = build_gateway(self.config)
        self.file_manager = FileManager(self.config.get_data_directory())

        self.sampler = MetadataSampler(
            self.config.get('stream.metadata_url'),
            poll_interval=self.config.get('stream.poll_interval_seconds', 1.0),
            retention_seconds=self.config.get('stream.metadata_retention_seconds', 900),
            request_timeout=self.config.get('stream.metadata_timeout_seconds', 5.0),
        )
        self.classifier = ChunkClassifier(self.sampler, chunk_seconds=chunk_seconds)

        self.index_builder = IndexBuilder(str(self.file_manager.live_dir))
        self.merger = BroadcastMerger(
            self.file_manager,
            self.gateway,
            self.index_builder,
            title_words=self.config.get('assembler.title_words', 10),
        )
        self.assembler = BroadcastAssembler(
            self.merger,
            self.file_manager,
            idle_seconds=self.config.get('assembler.idle_seconds', 300),
            idle_check_interval=self.config.get('assembler.idle_check_interval_seconds', 60),
        )

        self.chunk_publisher = ChunkPublisher(CHUNK_COMPLETED_TOPIC)
        self.recorder = Recorder(
            self.config.get('stream.url'),
            str(self.file_manager.chunks_dir),
            self.chunk_publisher,
            chunk_seconds=chunk_seconds,
            restart_delay=self.config.get('recorder.restart_delay_seconds', 5.0),
            stall_seconds=self.config.get('recorder.stall_seconds', 300),
            watchdog_interval=self.config.get('recorder.watchdog_interval_seconds', 30),
        )

        # pubsub keeps a weak reference; the bound method lives as long as self
        pub.subscribe(self._on_chunk_completed, CHUNK_COMPLETED_TOPIC)

        logger.info(f"Stream: {self.config.get('stream.url')}")
        logger.info(f"Data directory: {self.file_manager.data_dir}")

    def _on_chunk_completed(self, event: ChunkCompletedEvent) -> None:
        chunk = self.classifier.classify(event.file_path, event.start_time)
        self.assembler.on_chunk(chunk)

    async def run(self) -> None:
        """Run until stop() is called or the process receives SIGINT/SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Not available on every platform; KeyboardInterrupt still works
                pass

        self.sampler.start()
        self.assembler.start()
        self.recorder.start()
        logger.info("Monitor running")

        try:
            await self._stop_event.wait()
        finally:
            await self.cleanup()

    def stop(self) -> None:
        logger.info("Shutdown requested")
        if self._stop_event is not None:
            self._stop_event.set()

    async def cleanup(self) -> None:
        await self.recorder.stop()
        await self.assembler.stop()
        await self.sampler.stop()
        await self.gateway.backend.close()
        pub.unsubscribe(self._on_chunk_completed, CHUNK_COMPLETED_TOPIC)

        sampler_stats = self.sampler.get_buffer_stats()
        storage_stats = self.file_manager.get_storage_stats()
        logger.info(f"Broadcasts this session: {len(self.assembler.broadcasts)}, "
                    f"failed merges: {self.assembler.merges_failed}")
        logger.info(f"Metadata: {sampler_stats['sample_count']} samples buffered, "
                    f"{sampler_stats['failed_polls']} failed polls")
        if storage_stats:
            logger.info(f"Storage: {storage_stats['broadcast_count']} broadcasts "
                        f"({storage_stats['total_size_mb']}MB), "
                        f"{storage_stats['pending_chunks']} chunks left in chunks/, "
                        f"{storage_stats['failed_batches']} failed batches")


def setup_logging(config: MonitorConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get_log_file_path()
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = RichHandler(show_path=False, rich_tracebacks=True)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(logging.Formatter('%(name)s - %(message)s'))
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info(f"Radio monitor v{__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def cmd_run(config: MonitorConfig) -> int:
    monitor = Monitor(config)
    try:
        monitor.init()
    except ConfigurationError as e:
        logger.error(f"{e}")
        return 1

    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


def cmd_rebuild_index(config: MonitorConfig, collection: str) -> int:
    collection_dir = Path(config.get_data_directory()) / collection
    if not collection_dir.is_dir():
        logger.error(f"Collection directory not found: {collection_dir}")
        return 1

    records = IndexBuilder(str(collection_dir)).rebuild()
    print(f"Indexed {len(records)} records in {collection_dir}")
    return 0


async def _transcribe(config: MonitorConfig, audio_path: str) -> dict:
    gateway = build_gateway(config)
    try:
        result = await gateway.transcribe(audio_path)
    finally:
        await gateway.backend.close()
    return {
        "duration": result.duration,
        "segments": [segment.model_dump() for segment in result.segments],
    }


def cmd_transcribe(config: MonitorConfig, audio_path: str) -> int:
    if not Path(audio_path).is_file():
        logger.error(f"Audio file not found: {audio_path}")
        return 1
    try:
        output = asyncio.run(_transcribe(config, audio_path))
    except RadioMonitorError as e:
        logger.error(f"Transcription failed: {e}")
        return 1
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )
    common.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: logging.level from config)"
    )

    parser = argparse.ArgumentParser(
        prog="radiomonitor",
        description="Record a radio stream and keep transcribed spoken-word broadcasts",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"radiomonitor v{__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", parents=[common],
                          help="Record, classify and transcribe until interrupted")

    rebuild = subparsers.add_parser("rebuild-index", parents=[common],
                                    help="Regenerate a collection's index.json")
    rebuild.add_argument(
        "--collection",
        default="live",
        help="Collection directory under the data directory (default: live)"
    )

    transcribe = subparsers.add_parser("transcribe", parents=[common],
                                       help="Transcribe one audio file and print JSON")
    transcribe.add_argument("file", help="Audio file to transcribe")

    return parser


def main(argv: Optional[list] = None) -> None:
    """Main entry point for the radio monitor."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = MonitorConfig(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))

    if args.command == "rebuild-index":
        sys.exit(cmd_rebuild_index(config, args.collection))
    elif args.command == "transcribe":
        sys.exit(cmd_transcribe(config, args.file))
    else:
        sys.exit(cmd_run(config))


if __name__ == "__main__":
    main()
