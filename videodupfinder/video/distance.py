"""
Hamming distance between perceptual hashes.
"""

import numpy as np

from ..common.errors import IndexInconsistency
from .models import PerceptualHash


def check_comparable(h1: PerceptualHash, h2: PerceptualHash) -> None:
    """Raise IndexInconsistency unless both hashes share length and version."""
    if h1.length != h2.length or h1.version != h2.version:
        raise IndexInconsistency(
            f"cannot compare hash of {h1.length} bits (v{h1.version}) "
            f"with hash of {h2.length} bits (v{h2.version})"
        )


def distance(h1: PerceptualHash, h2: PerceptualHash) -> int:
    """Number of differing bits."""
    check_comparable(h1, h2)
    return (h1.bits ^ h2.bits).bit_count()


def normalized_distance(h1: PerceptualHash, h2: PerceptualHash) -> float:
    """Distance as a fraction of the hash length, in [0, 1]."""
    return distance(h1, h2) / h1.length


def distances_to(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Distances from one hash (a row of words) to every row of ``matrix``.

    Both arguments come from :meth:`PerceptualHash.to_words` /
    :func:`hash_matrix`, so all rows have the same number of 64-bit words.
    """
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.int64)
    xor = np.bitwise_xor(matrix, query)
    return np.bitwise_count(xor).sum(axis=1, dtype=np.int64)
