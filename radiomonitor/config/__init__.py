"""YAML configuration loader for the radio monitor."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .. import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "stream": {
        "url": "https://stream.rcs.revma.com/3zudpqfxh0cwv",
        "metadata_url": "https://www.revma.com/api/stations/3zudpqfxh0cwv/now_playing/",
        "poll_interval_seconds": 1.0,
        "metadata_retention_seconds": 900,
        "metadata_timeout_seconds": 5.0,
    },
    "recorder": {
        "chunk_seconds": 120,
        "restart_delay_seconds": 5.0,
        "stall_seconds": 300,
        "watchdog_interval_seconds": 30,
    },
    "assembler": {
        "idle_seconds": 300,
        "idle_check_interval_seconds": 60,
        "title_words": 10,
    },
    "transcription": {
        "model": "whisper-large-v3-turbo",
        "language": "de",
        "base_url": "https://api.groq.com/openai/v1/audio/transcriptions",
        "max_file_size_bytes": 20 * 1024 * 1024,
        "split_seconds": 480,
    },
    "storage": {
        "data_directory": "./data",
    },
    "logging": {
        "level": "INFO",
        "file_path": None,
        "console_output": True,
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "DATA_DIR": "storage.data_directory",
    "GROQ_API_KEY": "transcription.api_key",
    "STREAM_URL": "stream.url",
    "METADATA_URL": "stream.metadata_url",
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class MonitorConfig:
    """Radio monitor configuration loader."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """Initialize configuration loader.

        Args:
            config_path: Optional path to a YAML config file. Built-in defaults
                        are used for every key the file does not set.
            environ: Environment mapping used for overrides (defaults to os.environ)
        """
        self.config_file = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ

        if self.config_file is not None and not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Build the effective configuration: defaults, YAML file, environment."""
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_file is not None:
            logger.info(f"Loading configuration from: {self.config_file}")
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

            if not isinstance(loaded, dict):
                raise ConfigurationError("Configuration file must contain a mapping")

            self._resolve_paths(loaded)
            _deep_merge(config, loaded)

        for env_name, key_path in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value:
                self._set_in(config, key_path, value)
                logger.debug(f"Configuration key '{key_path}' taken from ${env_name}")

        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        storage = config.get('storage')
        if isinstance(storage, dict) and storage.get('data_directory'):
            data_dir = storage['data_directory']
            if not os.path.isabs(data_dir):
                storage['data_directory'] = str(config_dir / data_dir)

        log_cfg = config.get('logging')
        if isinstance(log_cfg, dict) and log_cfg.get('file_path'):
            log_path = log_cfg['file_path']
            if not os.path.isabs(log_path):
                log_cfg['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'recorder.chunk_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config

        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        self._set_in(self.config, key_path, value)
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    @staticmethod
    def _set_in(config: Dict[str, Any], key_path: str, value: Any) -> None:
        keys = key_path.split('.')
        config_dict = config

        for key in keys[:-1]:
            if not isinstance(config_dict.get(key), dict):
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value

    def get_api_key(self) -> str:
        """Get the transcription API key - raises if it is not configured."""
        api_key = self.get('transcription.api_key')
        if not api_key:
            raise ConfigurationError("GROQ_API_KEY environment variable required")
        return api_key

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())

    def get_log_file_path(self) -> str:
        """Get log file path, defaulting to <data>/logs/radiomonitor.log."""
        log_path = self.get('logging.file_path')
        if not log_path:
            log_path = str(Path(self.get_data_directory()) / "logs" / "radiomonitor.log")
        return log_path
