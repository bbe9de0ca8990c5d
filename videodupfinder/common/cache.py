"""
Persistent perceptual-hash cache.

The cache maps a file's identity (path, size, mtime) to the outcome of
hashing it: a hash and duration, or the reason it could not be hashed. It is
an explicit session object: open it once, share it with the workers, close
it (or leave the ``with`` block) to flush it to disk.
"""

import json
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from threading import Event, Lock
from typing import Dict, Iterable, List, Optional, Set

import psutil
from tqdm import tqdm

from ..video.decoder import FfmpegDecoder
from ..video.hashing import MIN_FRAMES, NUM_FRAMES, HashBuilder
from ..video.models import HashedVideo, PerceptualHash
from .errors import (CacheCorruption, ConfigurationError, ExtractionError, InsufficientFrames,
                     VersionMismatch)
from .models import FileIdentity, FileResult, FileStatus
from .utils import VERBOSE, default_cache_path

logger = logging.getLogger(__name__)

CACHE_FORMAT = "videodupfinder-hash-cache"
SCHEMA_VERSION = 1
DEFAULT_SAVE_THRESHOLD = 100


@dataclass(frozen=True)
class CacheEntry:
    """Stored outcome for one file identity."""
    identity: FileIdentity
    builder_version: int
    status: FileStatus
    phash: Optional[PerceptualHash] = None
    duration: Optional[float] = None
    reason: Optional[str] = None
    frames: Optional[int] = None

    def to_json(self) -> Dict:
        return {
            'size': self.identity.size,
            'mtime': self.identity.mtime,
            'builder_version': self.builder_version,
            'status': self.status.value,
            'hash_bits': self.phash.to_hex() if self.phash is not None else None,
            'hash_length': self.phash.length if self.phash is not None else None,
            'duration': self.duration,
            'reason': self.reason,
            'frames': self.frames,
        }

    @classmethod
    def from_json(cls, key: str, data: Dict) -> 'CacheEntry':
        """Rebuild an entry. Raises KeyError, TypeError or ValueError on bad data."""
        identity = FileIdentity(path=Path(key), size=int(data['size']), mtime=float(data['mtime']))
        version = int(data['builder_version'])
        status = FileStatus(data['status'])

        phash = None
        if status is FileStatus.OK:
            phash = PerceptualHash.from_hex(data['hash_bits'], int(data['hash_length']), version)
            if data.get('duration') is None:
                raise ValueError(f"entry for {key} has a hash but no duration")

        duration = data.get('duration')
        frames = data.get('frames')
        return cls(
            identity=identity,
            builder_version=version,
            status=status,
            phash=phash,
            duration=float(duration) if duration is not None else None,
            reason=data.get('reason'),
            frames=int(frames) if frames is not None else None,
        )

    def to_result(self) -> FileResult:
        return FileResult(
            path=self.identity.path,
            status=self.status,
            phash=self.phash,
            duration=self.duration,
            reason=self.reason,
            identity=self.identity,
        )


def hashed_videos(results: Iterable[FileResult]) -> List[HashedVideo]:
    """Resolver input built from the successful results of a batch."""
    return [
        HashedVideo(identity=r.identity, phash=r.phash, duration=r.duration)
        for r in results if r.ok
    ]


class _Pending:
    """Outcome of a computation another worker is running."""

    def __init__(self):
        self.entry: Optional[CacheEntry] = None
        self.error: Optional[BaseException] = None
        self._done = Event()

    def set(self, entry: Optional[CacheEntry] = None, error: Optional[BaseException] = None):
        self.entry = entry
        self.error = error
        self._done.set()

    def wait(self) -> CacheEntry:
        self._done.wait()
        if self.error is not None:
            raise self.error
        return self.entry


class HashCache:
    """Concurrency-safe, persistent map from FileIdentity to hashing outcome.

    Each identity is computed at most once per session: the first worker to
    miss registers a pending slot and the others wait for it.
    """

    def __init__(self,
                 cache_path: Optional[Path] = None,
                 builder: Optional[HashBuilder] = None,
                 decoder=None,
                 save_threshold: int = DEFAULT_SAVE_THRESHOLD,
                 retry_failed: bool = False):
        self.cache_path = Path(cache_path) if cache_path is not None else default_cache_path()
        self.builder = builder if builder is not None else HashBuilder()
        # Stored entries are keyed by builder version only, which stands for
        # the default frame counts
        if (self.builder.num_frames, self.builder.min_frames) != (NUM_FRAMES, MIN_FRAMES):
            raise ConfigurationError(
                f"cached hashes need a builder with {NUM_FRAMES} frames (minimum {MIN_FRAMES}), "
                f"got {self.builder.num_frames} (minimum {self.builder.min_frames})"
            )
        self.decoder = decoder if decoder is not None else FfmpegDecoder()
        self.save_threshold = save_threshold
        self.retry_failed = retry_failed

        self.corruption: Optional[CacheCorruption] = None
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[FileIdentity, _Pending] = {}
        self._computed: Set[str] = set()
        self._modified = 0
        self._loaded = False
        self._lock = Lock()
        self._save_lock = Lock()

    # Lifecycle

    def open(self) -> 'HashCache':
        """Load the store from disk. Calling it again is a no-op."""
        with self._lock:
            if self._loaded:
                return self
            self._entries = self._load()
            self._loaded = True
        logger.debug(f"Loaded {len(self._entries)} cache entries from {self.cache_path}")
        return self

    def close(self) -> None:
        """Flush pending modifications."""
        if self._loaded and self._modified:
            self.save()

    def __enter__(self) -> 'HashCache':
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def _load(self) -> Dict[str, CacheEntry]:
        if not self.cache_path.exists():
            return {}

        try:
            with open(self.cache_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict) or data.get('format') != CACHE_FORMAT:
                raise ValueError("not a videodupfinder hash cache")
            if data.get('schema_version') != SCHEMA_VERSION:
                raise ValueError(f"unsupported schema version {data.get('schema_version')!r}")
            raw_entries = data['entries']
            if not isinstance(raw_entries, dict):
                raise ValueError("'entries' is not a mapping")
            return {key: CacheEntry.from_json(key, value) for key, value in raw_entries.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.corruption = CacheCorruption(self.cache_path, str(e))
            logger.warning(f"{self.corruption}; starting with an empty cache")
            return {}

    def save(self) -> None:
        """Atomically write the store: temp file in the same directory, then rename."""
        self.open()
        with self._lock:
            document = {
                'format': CACHE_FORMAT,
                'schema_version': SCHEMA_VERSION,
                'entries': {key: entry.to_json() for key, entry in sorted(self._entries.items())},
            }
            self._modified = 0

        with self._save_lock:
            tmp_name = None
            try:
                self.cache_path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=f".{self.cache_path.name}.",
                                                suffix=".tmp", dir=self.cache_path.parent)
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(document, f)
                os.replace(tmp_name, self.cache_path)
                tmp_name = None
                logger.debug(f"Saved {len(document['entries'])} cache entries to {self.cache_path}")
            except OSError as e:
                logger.warning(f"Failed to save hash cache {self.cache_path}: {e}")
            finally:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)

    def clear(self) -> None:
        """Forget every entry. The empty store is written on the next save."""
        with self._lock:
            self._entries.clear()
            self._computed.clear()
            self._modified += 1
            self._loaded = True
        logger.info(f"Cleared hash cache {self.cache_path}")

    def prune(self, keep_paths: Optional[Iterable[Path]] = None) -> int:
        """Drop entries for files that no longer exist, or that are not in keep_paths.

        Returns the number of removed entries.
        """
        self.open()
        keep = None
        if keep_paths is not None:
            keep = {str(Path(p).expanduser().resolve()) for p in keep_paths}

        with self._lock:
            stale = [
                key for key in self._entries
                if (keep is not None and key not in keep) or not os.path.exists(key)
            ]
            for key in stale:
                del self._entries[key]
                self._computed.discard(key)
            if stale:
                self._modified += 1

        if stale:
            logger.log(VERBOSE, f"Pruned {len(stale)} stale cache entries")
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path) -> bool:
        return str(Path(path).expanduser().resolve()) in self._entries

    # Lookups

    def _lookup(self, identity: FileIdentity) -> Optional[CacheEntry]:
        """Valid cached entry for identity, or None. Caller holds the lock."""
        entry = self._entries.get(identity.key)
        if entry is None:
            logger.debug(f"Cache miss: {identity.path}")
            return None

        if entry.identity != identity:
            logger.debug(f"Cache entry is stale: {identity.path}")
            return None

        if entry.builder_version != self.builder.version:
            mismatch = VersionMismatch(entry.builder_version, self.builder.version)
            logger.debug(f"Cache entry ignored for {identity.path}: {mismatch}")
            return None

        if (entry.status is not FileStatus.OK and self.retry_failed
                and identity.key not in self._computed):
            logger.debug(f"Retrying previously failed file: {identity.path}")
            return None

        logger.debug(f"Cache hit: {identity.path}")
        return entry

    def _compute(self, identity: FileIdentity) -> CacheEntry:
        path = identity.path
        version = self.builder.version
        try:
            sequence = self.decoder.decode(path)
            phash = self.builder.build(sequence)
        except InsufficientFrames as e:
            logger.warning(f"Skipping {path}: too short to hash ({e.available} frames)")
            return CacheEntry(identity, version, FileStatus.SKIPPED_TOO_SHORT,
                              reason=f"{e.available} of {e.required} frames", frames=e.available)
        except ExtractionError as e:
            logger.warning(f"Could not extract frames from {path}: {e.reason}")
            return CacheEntry(identity, version, FileStatus.EXTRACTION_FAILED, reason=e.reason)
        except Exception as e:
            logger.warning(f"Error hashing {path}: {e}")
            return CacheEntry(identity, version, FileStatus.EXTRACTION_FAILED,
                              reason=f"{type(e).__name__}: {e}")

        logger.log(VERBOSE, f"Hashed {path}")
        return CacheEntry(identity, version, FileStatus.OK, phash=phash,
                          duration=sequence.duration, frames=len(sequence))

    def _entry_for(self, identity: FileIdentity) -> CacheEntry:
        """Cached entry for identity, computing it at most once across threads."""
        self.open()
        with self._lock:
            entry = self._lookup(identity)
            if entry is not None:
                return entry
            pending = self._in_flight.get(identity)
            owner = pending is None
            if owner:
                pending = _Pending()
                self._in_flight[identity] = pending

        if not owner:
            return pending.wait()

        try:
            entry = self._compute(identity)
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(identity, None)
            pending.set(error=e)
            raise

        with self._lock:
            self._entries[identity.key] = entry
            self._computed.add(identity.key)
            self._in_flight.pop(identity, None)
            self._modified += 1
            flush = self._modified >= self.save_threshold
        pending.set(entry)

        if flush:
            self.save()
        return entry

    def _raise_for(self, entry: CacheEntry) -> None:
        if entry.status is FileStatus.SKIPPED_TOO_SHORT:
            available = entry.frames if entry.frames is not None else 0
            raise InsufficientFrames(available, self.builder.min_frames, entry.identity.path)
        if entry.status is FileStatus.EXTRACTION_FAILED:
            raise ExtractionError(entry.reason or "unknown error", entry.identity.path)

    def get_or_compute(self, path: Path) -> PerceptualHash:
        """Hash of ``path``, from the cache when its identity is unchanged.

        Raises:
            InsufficientFrames: the video is too short (possibly cached).
            ExtractionError: the file could not be decoded (possibly cached).
            OSError: the file cannot be accessed.
        """
        entry = self._entry_for(FileIdentity.from_path(path))
        self._raise_for(entry)
        return entry.phash

    def get_record(self, path: Path) -> HashedVideo:
        """Like get_or_compute, with the identity and duration attached."""
        entry = self._entry_for(FileIdentity.from_path(path))
        self._raise_for(entry)
        return HashedVideo(identity=entry.identity, phash=entry.phash, duration=entry.duration)

    def resolve(self, path: Path) -> FileResult:
        """Non-raising lookup used by batch runs."""
        try:
            identity = FileIdentity.from_path(path)
        except OSError as e:
            logger.warning(f"Cannot access {path}: {e}")
            return FileResult(path=Path(path), status=FileStatus.EXTRACTION_FAILED,
                              reason=f"cannot access file: {e.strerror or e}")
        return self._entry_for(identity).to_result()

    def bulk_populate(self, paths: Iterable[Path],
                      workers: Optional[int] = None,
                      progress: bool = True) -> List[FileResult]:
        """Resolve many files in parallel. Results are sorted by path."""
        paths = list(paths)
        if workers is None:
            workers = psutil.cpu_count() or 1
        self.open()

        results = []
        with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            futures = [executor.submit(self.resolve, path) for path in paths]
            for future in tqdm(as_completed(futures), total=len(futures),
                               desc="Hashing videos", disable=not progress):
                results.append(future.result())

        results.sort(key=lambda r: r.path)
        failed = sum(1 for r in results if not r.ok)
        logger.info(f"Hashed {len(results) - failed} of {len(results)} files"
                    + (f", {failed} could not be processed" if failed else ""))
        return results
