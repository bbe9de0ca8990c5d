"""
Error taxonomy for video duplicate finding.

Per-file errors (ExtractionError, InsufficientFrames) are collected and
reported next to the successful results. Cache-level errors degrade to
recomputation. Only ConfigurationError is fatal to a whole run.
"""

from pathlib import Path
from typing import Optional


class VideoDupFinderError(Exception):
    """Base class for all errors raised by videodupfinder."""


class ConfigurationError(VideoDupFinderError):
    """Invalid search or cache configuration (thresholds, directories...)."""


class ExtractionError(VideoDupFinderError):
    """The decoder could not produce frames for a file."""

    def __init__(self, reason: str, path: Optional[Path] = None):
        self.reason = reason
        self.path = path
        if path is not None:
            super().__init__(f"{path}: {reason}")
        else:
            super().__init__(reason)


class InsufficientFrames(VideoDupFinderError):
    """The video is too short to be hashed reliably."""

    def __init__(self, available: int, required: int, path: Optional[Path] = None):
        self.available = available
        self.required = required
        self.path = path
        message = f"only {available} frame(s) available, {required} required"
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class CacheCorruption(VideoDupFinderError):
    """The persisted hash cache could not be read and was discarded."""

    def __init__(self, cache_path: Path, reason: str):
        self.cache_path = cache_path
        self.reason = reason
        super().__init__(f"Discarding hash cache {cache_path}: {reason}")


class VersionMismatch(VideoDupFinderError):
    """A cached hash was built by another builder version. Handled as a miss."""

    def __init__(self, cached_version: int, current_version: int):
        self.cached_version = cached_version
        self.current_version = current_version
        super().__init__(
            f"cached hash has builder version {cached_version}, expected {current_version}"
        )


class IndexInconsistency(VideoDupFinderError):
    """Two hashes of different length or builder version were compared."""
