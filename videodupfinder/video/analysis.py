"""
Duplicate resolution over a set of hashed videos.

Files are nodes; two files are linked when their hashes are within
``max_distance`` bits and their durations agree within ``duration_ratio``.
Duplicate groups are the connected components of that graph, unique files
are its isolated nodes, and in reference mode only target/reference edges
are considered.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..common.errors import ConfigurationError, IndexInconsistency
from ..common.models import CrossMatch, DuplicateGroup, FileResult, SearchOutput
from .distance import check_comparable, distance
from .hashing import HASH_BITS
from .models import HashedVideo
from .search import DEFAULT_BK_TREE_CROSSOVER, STRATEGIES, select_strategy

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.05
DEFAULT_DURATION_RATIO = 0.05
STRATEGY_CHOICES = ('auto',) + tuple(STRATEGIES)


@dataclass(frozen=True)
class SearchConfig:
    """Thresholds and strategy for one resolver run."""
    max_distance: int
    duration_ratio: float = DEFAULT_DURATION_RATIO
    strategy: str = 'auto'
    bk_tree_crossover: int = DEFAULT_BK_TREE_CROSSOVER
    workers: int = 1

    def __post_init__(self):
        if isinstance(self.max_distance, bool) or not isinstance(self.max_distance, int):
            raise ConfigurationError(f"max_distance must be an integer, got {self.max_distance!r}")
        if self.max_distance < 0:
            raise ConfigurationError(f"max_distance must be >= 0, got {self.max_distance}")
        if not (isinstance(self.duration_ratio, (int, float)) and 0.0 <= self.duration_ratio <= 1.0):
            raise ConfigurationError(f"duration_ratio must be in [0, 1], got {self.duration_ratio!r}")
        if self.strategy not in STRATEGY_CHOICES:
            raise ConfigurationError(
                f"strategy must be one of {', '.join(STRATEGY_CHOICES)}, got {self.strategy!r}")
        if self.bk_tree_crossover < 1:
            raise ConfigurationError(f"bk_tree_crossover must be >= 1, got {self.bk_tree_crossover}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")

    @classmethod
    def from_tolerance(cls, tolerance: float = DEFAULT_TOLERANCE,
                       hash_length: int = HASH_BITS, **kwargs) -> 'SearchConfig':
        """Build a config from a tolerance expressed as a fraction of the hash length."""
        if not (isinstance(tolerance, (int, float)) and math.isfinite(tolerance)
                and 0.0 <= tolerance <= 1.0):
            raise ConfigurationError(f"tolerance must be in [0, 1], got {tolerance!r}")
        return cls(max_distance=int(math.floor(tolerance * hash_length)), **kwargs)


def duration_ratio(d1: float, d2: float) -> float:
    """Relative duration difference |d1 - d2| / max(d1, d2); 0 for two empty videos."""
    longest = max(d1, d2)
    if longest <= 0:
        return 0.0
    return abs(d1 - d2) / longest


class UnionFind:
    """Disjoint sets over 0..n-1 with path halving and union by rank."""

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, x: int, y: int) -> bool:
        px, py = self.find(x), self.find(y)
        if px == py:
            return False
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1
        return True


def _partition(records: Iterable[HashedVideo]) -> Dict[Tuple[int, int], List[HashedVideo]]:
    """Split records by (hash length, builder version), each part sorted by path."""
    parts: Dict[Tuple[int, int], List[HashedVideo]] = defaultdict(list)
    for record in records:
        parts[(record.phash.length, record.phash.version)].append(record)
    for part in parts.values():
        part.sort(key=lambda r: r.path)
    if len(parts) > 1:
        logger.warning(f"Hashes come from {len(parts)} incompatible builders "
                       f"{sorted(parts)}; files are only compared within the same builder")
    return dict(parts)


class DuplicateResolver:
    """Presentation-agnostic duplicate search over HashedVideo records."""

    def __init__(self, config: SearchConfig):
        self.config = config

    def _index(self, records: Sequence[HashedVideo]):
        search_cls = select_strategy(len(records), self.config.strategy, self.config.bk_tree_crossover)
        return search_cls([r.phash for r in records], workers=self.config.workers)

    def _links(self, a: HashedVideo, b: HashedVideo) -> bool:
        return duration_ratio(a.duration, b.duration) <= self.config.duration_ratio

    def _components(self, records: Sequence[HashedVideo]) -> List[List[HashedVideo]]:
        """Connected components of the similarity graph of one partition."""
        if not records:
            return []

        index = self._index(records)
        uf = UnionFind(len(records))
        edges = 0
        for i, j, _ in index.pairs_within(self.config.max_distance):
            if self._links(records[i], records[j]):
                uf.union(i, j)
                edges += 1
        logger.debug(f"{edges} similarity links among {len(records)} files")

        components: Dict[int, List[HashedVideo]] = defaultdict(list)
        for i, record in enumerate(records):
            components[uf.find(i)].append(record)
        return list(components.values())

    def _all_components(self, records: Iterable[HashedVideo]) -> List[List[HashedVideo]]:
        components = []
        for part in _partition(records).values():
            components.extend(self._components(part))
        return components

    @staticmethod
    def _make_group(members: List[HashedVideo]) -> DuplicateGroup:
        representative = min(members, key=lambda r: r.path)
        ranked = sorted(
            ((r.path, distance(representative.phash, r.phash)) for r in members),
            key=lambda pd: (pd[1], pd[0]),
        )
        return DuplicateGroup(members=ranked)

    def find_duplicates(self, records: Iterable[HashedVideo]) -> List[DuplicateGroup]:
        """Connected components of two or more files, ordered by representative path."""
        groups = [self._make_group(c) for c in self._all_components(records) if len(c) > 1]
        groups.sort(key=lambda g: g.representative)
        logger.info(f"Found {len(groups)} duplicate groups")
        return groups

    def find_unique(self, records: Iterable[HashedVideo]) -> List[Path]:
        """Files linked to no other file, sorted by path."""
        return sorted(c[0].path for c in self._all_components(records) if len(c) == 1)

    def find_with_refs(self, targets: Iterable[HashedVideo],
                       references: Iterable[HashedVideo]) -> List[CrossMatch]:
        """Match every target against the reference set only.

        Raises:
            ConfigurationError: a path belongs to both sets.
        """
        targets = list(targets)
        references = list(references)

        overlap = {t.path for t in targets} & {r.path for r in references}
        if overlap:
            sample = ', '.join(str(p) for p in sorted(overlap)[:3])
            raise ConfigurationError(
                f"{len(overlap)} file(s) are both targets and references: {sample}")

        ref_parts = _partition(references)
        indexes = {key: self._index(part) for key, part in ref_parts.items()}

        matches = []
        for target in sorted(targets, key=lambda t: t.path):
            key = (target.phash.length, target.phash.version)
            index = indexes.get(key)
            if index is None:
                if references:
                    try:
                        check_comparable(target.phash, references[0].phash)
                    except IndexInconsistency as e:
                        logger.warning(f"Skipping {target.path}: {e}")
                continue

            part = ref_parts[key]
            found = [
                (part[j].path, d)
                for j, d in index.within(target.phash, self.config.max_distance)
                if self._links(target, part[j])
            ]
            if found:
                found.sort(key=lambda pd: (pd[1], pd[0]))
                matches.append(CrossMatch(target=target.path, references=found))

        logger.info(f"{len(matches)} of {len(targets)} target files matched a reference")
        return matches

    def search(self, targets: Iterable[HashedVideo],
               references: Optional[Iterable[HashedVideo]] = None,
               failures: Iterable[FileResult] = ()) -> SearchOutput:
        """Run every mode at once and bundle the results for a reporter.

        Without references, groups and unique files cover the targets. With
        references, ``matches`` holds the cross matches and ``unique`` lists the
        targets that matched nothing.
        """
        failures = sorted(failures, key=lambda f: f.path)
        targets = list(targets)

        if references is None:
            components = self._all_components(targets)
            groups = sorted((self._make_group(c) for c in components if len(c) > 1),
                            key=lambda g: g.representative)
            unique = sorted(c[0].path for c in components if len(c) == 1)
            logger.info(f"Found {len(groups)} duplicate groups and {len(unique)} unique files")
            return SearchOutput(groups=groups, unique=unique, failures=failures)

        matches = self.find_with_refs(targets, references)
        matched = {m.target for m in matches}
        unique = sorted(t.path for t in targets if t.path not in matched)
        return SearchOutput(matches=matches, unique=unique, failures=failures,
                            with_references=True)
