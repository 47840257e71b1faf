"""Radio monitor: records a live stream and turns speech segments into transcribed broadcasts."""

__version__ = "0.1.0"


class RadioMonitorError(Exception):
    """Base class for radiomonitor errors."""


class ConfigurationError(RadioMonitorError):
    """Raised when required configuration is missing or invalid."""


class TranscriptionError(RadioMonitorError):
    """Raised when the transcription service fails."""


class MergeError(RadioMonitorError):
    """Raised when a batch of speech chunks cannot be turned into a broadcast."""
