"""
Common data models for video duplicate finding.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class FileIdentity:
    """(path, size, mtime) freshness proxy for a file.

    Equal identities mean the file is assumed unchanged, not that the
    contents are bit-identical.
    """
    path: Path
    size: int
    mtime: float

    @classmethod
    def from_path(cls, path: Path) -> 'FileIdentity':
        """Stat a file. Raises OSError if it cannot be accessed."""
        canonical = Path(path).expanduser().resolve()
        stat = canonical.stat()
        return cls(path=canonical, size=stat.st_size, mtime=stat.st_mtime)

    @property
    def key(self) -> str:
        return str(self.path)


class FileStatus(Enum):
    OK = "ok"
    SKIPPED_TOO_SHORT = "too_short"
    EXTRACTION_FAILED = "failed"


@dataclass(frozen=True)
class FileResult:
    """Outcome of hashing one file: Ok(hash) | SkippedTooShort | ExtractionFailed(reason)."""
    path: Path
    status: FileStatus
    phash: Optional[Any] = None  # PerceptualHash when status is OK
    duration: Optional[float] = None
    reason: Optional[str] = None
    identity: Optional[FileIdentity] = None

    @property
    def ok(self) -> bool:
        return self.status is FileStatus.OK

    def describe(self) -> str:
        """Human-readable reason for the 'could not be processed' list."""
        if self.status is FileStatus.SKIPPED_TOO_SHORT:
            return f"video too short to hash ({self.reason})" if self.reason else "video too short to hash"
        if self.status is FileStatus.EXTRACTION_FAILED:
            return f"could not extract frames: {self.reason}"
        return "ok"

    def to_dict(self) -> Dict:
        return {
            'path': str(self.path),
            'status': self.status.value,
            'reason': self.describe() if not self.ok else None,
        }


@dataclass
class DuplicateGroup:
    """Connected set of similar files.

    ``members`` holds (path, distance to representative) pairs, representative
    first, ordered by ascending distance then path.
    """
    members: List[Tuple[Path, int]] = field(default_factory=list)

    @property
    def representative(self) -> Optional[Path]:
        return self.members[0][0] if self.members else None

    @property
    def paths(self) -> List[Path]:
        return [path for path, _ in self.members]

    @property
    def max_distance(self) -> int:
        return max((d for _, d in self.members), default=0)

    def __len__(self) -> int:
        return len(self.members)

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            'representative': str(self.representative) if self.representative else None,
            'files': [{'path': str(p), 'distance': d} for p, d in self.members],
        }


@dataclass
class CrossMatch:
    """A target file and the reference files it matched, closest first."""
    target: Path
    references: List[Tuple[Path, int]] = field(default_factory=list)

    @property
    def reference_paths(self) -> List[Path]:
        return [path for path, _ in self.references]

    def to_dict(self) -> Dict:
        return {
            'target': str(self.target),
            'references': [{'path': str(p), 'distance': d} for p, d in self.references],
        }


@dataclass
class SearchOutput:
    """Everything a presentation layer needs to report one search."""
    groups: List[DuplicateGroup] = field(default_factory=list)
    unique: List[Path] = field(default_factory=list)
    matches: List[CrossMatch] = field(default_factory=list)
    failures: List[FileResult] = field(default_factory=list)
    with_references: bool = False

    @property
    def duplicate_paths(self) -> List[Path]:
        return [path for group in self.groups for path in group.paths]

    def to_dict(self) -> Dict:
        return {
            'with_references': self.with_references,
            'duplicate_groups': [g.to_dict() for g in self.groups],
            'unique_files': [str(p) for p in self.unique],
            'reference_matches': [m.to_dict() for m in self.matches],
            'failures': [f.to_dict() for f in self.failures],
        }
