"""
Common utilities and shared functionality for video duplicate finding.
"""

from .models import FileIdentity, FileResult, FileStatus, DuplicateGroup, CrossMatch, SearchOutput
from .utils import setup_logging, format_size, find_files, VERSION
from .errors import (
    VideoDupFinderError,
    ConfigurationError,
    ExtractionError,
    InsufficientFrames,
    CacheCorruption,
    VersionMismatch,
    IndexInconsistency,
)

__all__ = [
    'FileIdentity',
    'FileResult',
    'FileStatus',
    'DuplicateGroup',
    'CrossMatch',
    'SearchOutput',
    'setup_logging',
    'format_size',
    'find_files',
    'VERSION',
    'VideoDupFinderError',
    'ConfigurationError',
    'ExtractionError',
    'InsufficientFrames',
    'CacheCorruption',
    'VersionMismatch',
    'IndexInconsistency',
]
