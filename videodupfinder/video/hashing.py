"""
Perceptual hash construction from sampled video frames.

Each frame is reduced to the low-frequency block of its 2-D DCT (the same
transform imagehash's phash uses). Spatial bits compare every coefficient
with the median of that coefficient position over all sampled frames;
temporal bits record whether a coefficient grew since the previous frame.
A coarse duration field is appended so the final hash has the same length
for every video.
"""

import logging
import math
from pathlib import Path
from typing import List

import numpy as np
import scipy.fftpack
from PIL import Image

from ..common.errors import ExtractionError, InsufficientFrames
from .models import FrameSequence, PerceptualHash

logger = logging.getLogger(__name__)

# Bump whenever anything below changes the produced bits.
BUILDER_VERSION = 1

FRAME_SIZE = 32            # canonical frame resolution (FRAME_SIZE x FRAME_SIZE luma)
NUM_FRAMES = 10            # frames hashed, one every SAMPLE_INTERVAL seconds
MIN_FRAMES = 5             # fewer frames than this cannot be hashed reliably
SAMPLE_INTERVAL = 3.0      # seconds between sampled frames
SAMPLE_SPAN = NUM_FRAMES * SAMPLE_INTERVAL
DCT_BLOCK = 8              # top-left DCT_BLOCK x DCT_BLOCK coefficients are kept
DURATION_BITS = 8

COEFFS_PER_FRAME = DCT_BLOCK * DCT_BLOCK - 1  # DC term dropped
SPATIAL_BITS = NUM_FRAMES * COEFFS_PER_FRAME
TEMPORAL_BITS = (NUM_FRAMES - 1) * COEFFS_PER_FRAME
HASH_BITS = SPATIAL_BITS + TEMPORAL_BITS + DURATION_BITS


def to_canonical_frame(frame: np.ndarray) -> np.ndarray:
    """Return a FRAME_SIZE x FRAME_SIZE float64 luma grid for any input frame."""
    arr = np.asarray(frame)
    if arr.ndim == 2 and arr.shape == (FRAME_SIZE, FRAME_SIZE):
        return arr.astype(np.float64)

    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim not in (2, 3):
        raise ExtractionError(f"unsupported frame shape {arr.shape}")

    img = Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8))
    if img.mode != 'L':
        img = img.convert('L')
    img = img.resize((FRAME_SIZE, FRAME_SIZE), Image.Resampling.LANCZOS)
    return np.asarray(img, dtype=np.float64)


def low_frequency_coefficients(frame: np.ndarray) -> np.ndarray:
    """DCT-II of a frame, top-left block flattened row-major, DC excluded."""
    dct = scipy.fftpack.dct(scipy.fftpack.dct(frame, axis=0), axis=1)
    return dct[:DCT_BLOCK, :DCT_BLOCK].ravel()[1:]


def duration_bucket(duration: float) -> int:
    """Coarse logarithmic bucket of the duration, fitting in DURATION_BITS."""
    return min((1 << DURATION_BITS) - 1, int(round(8 * math.log2(1.0 + duration))))


def gray_code_bits(value: int, width: int) -> List[bool]:
    """Gray-code ``value`` so neighbouring buckets differ in a single bit."""
    gray = value ^ (value >> 1)
    return [bool((gray >> (width - 1 - i)) & 1) for i in range(width)]


class HashBuilder:
    """Turns a FrameSequence into a PerceptualHash.

    The builder is stateless: equal inputs always give equal hashes.
    """

    version = BUILDER_VERSION

    def __init__(self, num_frames: int = NUM_FRAMES, min_frames: int = MIN_FRAMES):
        if not 2 <= min_frames <= num_frames:
            raise ValueError(f"min_frames must be in [2, {num_frames}], got {min_frames}")
        self.num_frames = num_frames
        self.min_frames = min_frames

    def build(self, sequence: FrameSequence) -> PerceptualHash:
        """Compute the perceptual hash of a frame sequence.

        Raises:
            InsufficientFrames: fewer than ``min_frames`` frames are available.
            ExtractionError: the duration or the frames are unusable.
        """
        duration = sequence.duration
        if not math.isfinite(duration) or duration < 0:
            raise ExtractionError(f"invalid duration {duration!r}", sequence.source)

        frames = sequence.frames[:self.num_frames]
        if len(frames) < self.min_frames:
            raise InsufficientFrames(len(frames), self.min_frames, sequence.source)

        coeffs = np.vstack([low_frequency_coefficients(to_canonical_frame(f)) for f in frames])

        spatial = np.zeros((self.num_frames, COEFFS_PER_FRAME), dtype=bool)
        spatial[:len(frames)] = coeffs > np.median(coeffs, axis=0)

        temporal = np.zeros((self.num_frames - 1, COEFFS_PER_FRAME), dtype=bool)
        temporal[:len(frames) - 1] = np.diff(coeffs, axis=0) > 0

        bits = np.concatenate([
            spatial.ravel(),
            temporal.ravel(),
            np.array(gray_code_bits(duration_bucket(duration), DURATION_BITS), dtype=bool),
        ])

        logger.debug(f"Built hash from {len(frames)} frames ({duration:.1f}s) "
                     f"for {sequence.source or '<frames>'}")
        return PerceptualHash.from_bools(bits, self.version)

    def build_from_path(self, path: Path, decoder) -> PerceptualHash:
        """Decode ``path`` with the given decoder and hash the result.

        Decoder failures surface as ExtractionError and are not retried here.
        """
        return self.build(decoder.decode(path))

    @property
    def hash_length(self) -> int:
        return (self.num_frames * COEFFS_PER_FRAME
                + (self.num_frames - 1) * COEFFS_PER_FRAME
                + DURATION_BITS)
