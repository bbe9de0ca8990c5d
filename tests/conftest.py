"""
Shared fixtures: synthetic frame sequences, a fake decoder and hash factories.

Nothing here needs ffmpeg; the decoder is replaced by an in-memory fake that
counts how often each file is decoded.
"""

import threading
import time
from collections import Counter
from pathlib import Path

import numpy as np
import pytest

from videodupfinder.common.errors import ExtractionError
from videodupfinder.common.models import FileIdentity
from videodupfinder.video.models import FrameSequence, HashedVideo, PerceptualHash


def synthetic_frames(seed: int, count: int = 10, size: int = 32) -> np.ndarray:
    """Random but reproducible grayscale frames."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(count, size, size)).astype(np.uint8)


class FakeDecoder:
    """In-memory decoder keyed by file name."""

    def __init__(self, sequences=None, errors=None, delay: float = 0.0):
        self.sequences = dict(sequences or {})
        self.errors = dict(errors or {})
        self.delay = delay
        self.calls = Counter()
        self._lock = threading.Lock()

    def decode(self, path):
        path = Path(path)
        with self._lock:
            self.calls[path.name] += 1
        if self.delay:
            time.sleep(self.delay)
        if path.name in self.errors:
            raise self.errors[path.name]
        try:
            return self.sequences[path.name]
        except KeyError:
            raise ExtractionError("no such test video", path)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


@pytest.fixture
def make_sequence():
    """Factory: FrameSequence from a seed, frame count and duration."""
    def _make(seed: int = 0, count: int = 10, duration: float = 60.0, scale: float = 1.0):
        frames = synthetic_frames(seed, count)
        if scale != 1.0:
            frames = frames.astype(np.float64) * scale
        return FrameSequence(frames=tuple(frames), duration=duration,
                             timestamps=tuple(3.0 * i for i in range(count)))
    return _make


@pytest.fixture
def fake_decoder():
    return FakeDecoder()


@pytest.fixture
def make_video_file(tmp_path):
    """Factory: create a small placeholder video file and return its resolved path."""
    def _make(name: str, content: bytes = b"video", directory: Path = None) -> Path:
        directory = directory or tmp_path / "videos"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(content)
        return path.resolve()
    return _make


def bits_hash(indices, length: int = 128, version: int = 1) -> PerceptualHash:
    """Hash with the given logical bit positions set (bit 0 first)."""
    value = 0
    for i in indices:
        value |= 1 << (length - 1 - i)
    return PerceptualHash(bits=value, length=length, version=version)


@pytest.fixture
def make_hash():
    return bits_hash


@pytest.fixture
def make_record():
    """Factory: HashedVideo for a fake path, without touching the filesystem."""
    def _make(name: str, phash: PerceptualHash, duration: float = 100.0) -> HashedVideo:
        identity = FileIdentity(path=Path("/videos") / name, size=1, mtime=0.0)
        return HashedVideo(identity=identity, phash=phash, duration=duration)
    return _make


@pytest.fixture
def random_hashes():
    """Factory: n random hashes, with some near-copies to get non-trivial pairs."""
    def _make(n: int, length: int = 128, seed: int = 7):
        rng = np.random.default_rng(seed)
        hashes = []
        for i in range(n):
            if hashes and i % 3 == 0:
                base = hashes[int(rng.integers(0, len(hashes)))]
                flips = rng.choice(length, size=int(rng.integers(0, 12)), replace=False)
                value = base.bits
                for f in flips:
                    value ^= 1 << int(f)
            else:
                value = int.from_bytes(rng.bytes((length + 7) // 8), 'big') >> ((-length) % 8)
            hashes.append(PerceptualHash(bits=value, length=length, version=1))
        return hashes
    return _make


@pytest.fixture
def decoder_factory():
    """The FakeDecoder class, for tests that need a custom delay."""
    return FakeDecoder
