"""
Video-specific data models.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple
import logging

import numpy as np

from ..common.models import FileIdentity

logger = logging.getLogger(__name__)

_WORD_MASK = (1 << 64) - 1


@dataclass(frozen=True)
class FrameSequence:
    """Sampled frames of one video, as produced by the decoder.

    Frames are 2-D grayscale pixel grids in playback order. ``duration`` is
    the total duration of the source video in seconds, not the span covered
    by the frames.
    """
    frames: Tuple[np.ndarray, ...]
    duration: float
    timestamps: Tuple[float, ...] = ()
    source: Optional[Path] = None

    def __post_init__(self):
        frozen_frames = []
        for frame in self.frames:
            frame = np.array(frame, copy=True)
            frame.setflags(write=False)
            frozen_frames.append(frame)
        object.__setattr__(self, 'frames', tuple(frozen_frames))
        object.__setattr__(self, 'timestamps', tuple(float(t) for t in self.timestamps))
        object.__setattr__(self, 'duration', float(self.duration))
        if self.timestamps and len(self.timestamps) != len(self.frames):
            raise ValueError(
                f"{len(self.timestamps)} timestamps given for {len(self.frames)} frames"
            )

    def __len__(self) -> int:
        return len(self.frames)


@dataclass(frozen=True, order=True)
class PerceptualHash:
    """Fixed-length bit string produced by a given builder version.

    Bit 0 of the logical bit string is the most significant bit of ``bits``.
    """
    bits: int
    length: int
    version: int

    def __post_init__(self):
        if self.length <= 0:
            raise ValueError(f"Hash length must be positive, got {self.length}")
        if self.bits < 0 or self.bits >> self.length:
            raise ValueError(f"Hash value does not fit in {self.length} bits")

    def __len__(self) -> int:
        return self.length

    @classmethod
    def from_bools(cls, values: Sequence[bool], version: int) -> 'PerceptualHash':
        """Build a hash from a flat sequence of booleans, first value first."""
        arr = np.asarray(values, dtype=bool).ravel()
        if arr.size == 0:
            raise ValueError("Cannot build a hash from zero bits")
        packed = np.packbits(arr)
        pad = (-arr.size) % 8
        bits = int.from_bytes(packed.tobytes(), 'big') >> pad
        return cls(bits=bits, length=int(arr.size), version=version)

    def to_bools(self) -> np.ndarray:
        """Inverse of :meth:`from_bools`."""
        pad = (-self.length) % 8
        raw = (self.bits << pad).to_bytes((self.length + pad) // 8, 'big')
        return np.unpackbits(np.frombuffer(raw, dtype=np.uint8))[:self.length].astype(bool)

    @property
    def num_words(self) -> int:
        return (self.length + 63) // 64

    def to_words(self) -> np.ndarray:
        """Split into 64-bit words, least significant word first."""
        return np.array(
            [(self.bits >> (64 * i)) & _WORD_MASK for i in range(self.num_words)],
            dtype=np.uint64,
        )

    def to_hex(self) -> str:
        """Zero-padded hex representation, used by the cache store."""
        return format(self.bits, f'0{(self.length + 3) // 4}x')

    @classmethod
    def from_hex(cls, value: str, length: int, version: int) -> 'PerceptualHash':
        return cls(bits=int(value, 16), length=int(length), version=int(version))

    def __str__(self) -> str:
        return self.to_hex()


@dataclass(frozen=True)
class HashedVideo:
    """A file with its perceptual hash and duration, as fed to the resolver."""
    identity: FileIdentity
    phash: PerceptualHash
    duration: float

    @property
    def path(self) -> Path:
        return self.identity.path


def hash_matrix(hashes: Iterable[PerceptualHash]) -> np.ndarray:
    """Stack hashes of equal length into an (n, words) uint64 matrix."""
    rows = [h.to_words() for h in hashes]
    if not rows:
        return np.zeros((0, 0), dtype=np.uint64)
    return np.vstack(rows)
