"""
videodupfinder - Near-duplicate video finder

Finds videos that show the same content, even when they were resized,
cropped, letterboxed, watermarked or re-encoded, by comparing cached
perceptual hashes.
"""

from .common.utils import VERSION

__version__ = VERSION
