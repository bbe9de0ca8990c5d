#!/usr/bin/env python3
"""
Tests for the Hamming distance metric.
"""

import itertools

import numpy as np
import pytest

from videodupfinder.common.errors import IndexInconsistency
from videodupfinder.video.distance import distance, distances_to, normalized_distance
from videodupfinder.video.models import PerceptualHash, hash_matrix


def test_distance_counts_differing_bits():
    h1 = PerceptualHash(bits=0b1011, length=4, version=1)
    h2 = PerceptualHash(bits=0b0001, length=4, version=1)

    assert distance(h1, h2) == 2
    assert normalized_distance(h1, h2) == 0.5


def test_metric_properties(random_hashes):
    hashes = random_hashes(12, length=200)

    for a in hashes:
        assert distance(a, a) == 0
    for a, b in itertools.combinations(hashes, 2):
        assert distance(a, b) == distance(b, a)
        if a != b:
            assert distance(a, b) > 0
    for a, b, c in itertools.permutations(hashes[:6], 3):
        assert distance(a, c) <= distance(a, b) + distance(b, c)


def test_normalized_distance_range(random_hashes):
    a, b = random_hashes(2, length=1205)
    assert 0.0 <= normalized_distance(a, b) <= 1.0


def test_length_mismatch_is_rejected():
    with pytest.raises(IndexInconsistency):
        distance(PerceptualHash(0, 8, 1), PerceptualHash(0, 16, 1))


def test_version_mismatch_is_rejected():
    with pytest.raises(IndexInconsistency):
        distance(PerceptualHash(0, 8, 1), PerceptualHash(0, 8, 2))


def test_vectorised_distances_match_scalar(random_hashes):
    hashes = random_hashes(30, length=1205)
    matrix = hash_matrix(hashes)
    query = hashes[4]

    dists = distances_to(query.to_words(), matrix)

    assert dists.tolist() == [distance(query, h) for h in hashes]


def test_vectorised_distances_on_empty_matrix():
    query = PerceptualHash(1, 64, 1)
    dists = distances_to(query.to_words(), np.zeros((0, 1), dtype=np.uint64))
    assert dists.shape == (0,)
