"""
Radius search over Hamming space.

Two interchangeable strategies answer the same questions ("which hashes lie
within radius r of this one?" and "which pairs lie within r of each other?"):

* LinearSearch compares against every hash, vectorised over 64-bit words.
* BKTree prunes subtrees with the triangle inequality.

On real video hashes the BK-tree prunes poorly (hashes cluster densely and
useful radii are large compared to the hash entropy), so the linear scan is
usually faster despite its worse complexity. The choice is therefore a
tunable crossover on the file count, not a fixed rule.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .distance import distance, distances_to
from .models import PerceptualHash, hash_matrix

logger = logging.getLogger(__name__)

# Neighbour lists are (index, distance) pairs; edges are (i, j, distance), i < j.
Neighbour = Tuple[int, int]
Edge = Tuple[int, int, int]

DEFAULT_BK_TREE_CROSSOVER = 100_000


class SimilaritySearch:
    """Common behaviour of the search strategies."""

    name = "base"

    def __init__(self, hashes: Sequence[PerceptualHash], workers: int = 1):
        self.hashes = list(hashes)
        self.workers = max(1, workers)

    def __len__(self) -> int:
        return len(self.hashes)

    def within(self, query: PerceptualHash, radius: int) -> List[Neighbour]:
        """All indexed hashes at distance <= radius from query, by index."""
        raise NotImplementedError

    def _row_edges(self, i: int, radius: int) -> List[Edge]:
        return [(i, j, d) for j, d in self.within(self.hashes[i], radius) if j > i]

    def pairs_within(self, radius: int) -> List[Edge]:
        """Every unordered pair of indexed hashes at distance <= radius."""
        edges = _collect_rows(lambda i: self._row_edges(i, radius), len(self.hashes), self.workers)
        edges.sort()
        return edges


def _collect_rows(row_fn: Callable[[int], List[Edge]], num_rows: int, workers: int) -> List[Edge]:
    """Run row_fn over all rows, optionally spread over a thread pool.

    Rows are dealt round-robin so that early (longer) rows do not all land in
    the same worker. Results go to a single append-only collector.
    """
    if workers <= 1 or num_rows < 2:
        edges: List[Edge] = []
        for i in range(num_rows):
            edges.extend(row_fn(i))
        return edges

    edges = []
    lock = Lock()

    def run_stripe(start: int) -> None:
        for i in range(start, num_rows, workers):
            found = row_fn(i)
            if found:
                with lock:
                    edges.extend(found)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        # list() re-raises any worker exception here
        list(executor.map(run_stripe, range(workers)))
    return edges


class LinearSearch(SimilaritySearch):
    """Exhaustive comparison, vectorised with numpy word popcounts."""

    name = "linear"

    def __init__(self, hashes: Sequence[PerceptualHash], workers: int = 1):
        super().__init__(hashes, workers)
        self._matrix = hash_matrix(self.hashes)

    def within(self, query: PerceptualHash, radius: int) -> List[Neighbour]:
        if not self.hashes:
            return []
        dists = distances_to(query.to_words(), self._matrix)
        hits = np.nonzero(dists <= radius)[0]
        return [(int(i), int(dists[i])) for i in hits]

    def _row_edges(self, i: int, radius: int) -> List[Edge]:
        dists = distances_to(self._matrix[i], self._matrix[i + 1:])
        hits = np.nonzero(dists <= radius)[0]
        return [(i, i + 1 + int(k), int(dists[k])) for k in hits]


class _BKNode:
    __slots__ = ('index', 'children')

    def __init__(self, index: int):
        self.index = index
        self.children: Dict[int, '_BKNode'] = {}


class BKTree(SimilaritySearch):
    """Burkhard-Keller tree keyed by integer Hamming distance."""

    name = "bktree"

    def __init__(self, hashes: Sequence[PerceptualHash], workers: int = 1):
        super().__init__([], workers)
        self._root: Optional[_BKNode] = None
        for h in hashes:
            self.add(h)

    def add(self, phash: PerceptualHash) -> int:
        """Insert a hash, returning its index."""
        index = len(self.hashes)
        self.hashes.append(phash)

        if self._root is None:
            self._root = _BKNode(index)
            return index

        node = self._root
        while True:
            d = distance(self.hashes[node.index], phash)
            child = node.children.get(d)
            if child is None:
                node.children[d] = _BKNode(index)
                return index
            node = child

    def within(self, query: PerceptualHash, radius: int) -> List[Neighbour]:
        if self._root is None:
            return []

        found: List[Neighbour] = []
        stack = [self._root]
        while stack:
            node = stack.pop()
            d = distance(self.hashes[node.index], query)
            if d <= radius:
                found.append((node.index, d))
            # Triangle inequality: matches can only live in children keyed d-radius..d+radius
            low, high = d - radius, d + radius
            for key, child in node.children.items():
                if low <= key <= high:
                    stack.append(child)

        found.sort()
        return found

    def depth(self) -> int:
        """Height of the tree (0 when empty)."""
        if self._root is None:
            return 0
        best = 0
        stack = [(self._root, 1)]
        while stack:
            node, level = stack.pop()
            best = max(best, level)
            stack.extend((child, level + 1) for child in node.children.values())
        return best


STRATEGIES = {
    LinearSearch.name: LinearSearch,
    BKTree.name: BKTree,
}


def select_strategy(num_files: int, strategy: str = "auto",
                    crossover: int = DEFAULT_BK_TREE_CROSSOVER) -> type:
    """Pick a search class. 'auto' uses the BK-tree only from ``crossover`` files up."""
    if strategy == "auto":
        chosen = BKTree if num_files >= crossover else LinearSearch
    elif strategy in STRATEGIES:
        chosen = STRATEGIES[strategy]
    else:
        raise ValueError(f"Unknown search strategy: {strategy}")
    logger.debug(f"Using {chosen.name} search for {num_files} files")
    return chosen
