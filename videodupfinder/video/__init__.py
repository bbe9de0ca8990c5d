"""
Video hashing and duplicate resolution.
"""

from functools import lru_cache
import subprocess
import logging

from ..common.utils import VIDEO_EXTENSIONS

logger = logging.getLogger(__name__)

@lru_cache(maxsize=None)
def check_ffmpeg() -> bool:
    """Check if ffmpeg and ffprobe are installed."""
    try:
        subprocess.run(["ffmpeg", "-version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True)
        subprocess.run(["ffprobe", "-version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True)
        return True
    except (subprocess.SubprocessError, FileNotFoundError):
        return False

# Export constants and functions
__all__ = [
    'VIDEO_EXTENSIONS',
    'check_ffmpeg',
]
