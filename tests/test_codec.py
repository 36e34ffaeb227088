"""Tests for embedding encoding and cosine similarity."""

import pytest

from hearth_memory.embeddings.codec import (
    cosine_similarity,
    decode_embedding,
    encode_embedding,
    top_k,
    top_k_scored,
)
from hearth_memory.errors import InvalidArgumentError


def test_encode_is_little_endian_float32():
    assert encode_embedding([1.0]) == b"\x00\x00\x80\x3f"
    assert len(encode_embedding([0.1, 0.2, 0.3])) == 12


def test_decode_restores_values():
    vec = [0.5, -1.25, 3.0, 0.0]
    assert decode_embedding(encode_embedding(vec)) == vec


def test_empty_and_missing():
    assert encode_embedding(None) is None
    assert encode_embedding([]) is None
    assert decode_embedding(None) is None
    assert decode_embedding(b"") is None


def test_decode_rejects_partial_float():
    with pytest.raises(InvalidArgumentError):
        decode_embedding(b"\x00\x00\x80")


def test_cosine_identical_and_opposite():
    v = [0.3, -0.4, 1.2]
    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, [-x for x in v]) == pytest.approx(-1.0)


def test_cosine_orthogonal():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0


def test_cosine_degenerate_inputs():
    assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity(None, [1.0]) == 0.0


def test_top_k_descending():
    query = [1.0, 0.0]
    candidates = [[0.0, 1.0], [1.0, 0.0], [0.7, 0.7]]
    assert top_k(query, candidates, 2) == [1, 2]


def test_top_k_ties_keep_insertion_order():
    query = [1.0, 0.0]
    candidates = [[2.0, 0.0], [0.0, 1.0], [1.0, 0.0]]
    assert top_k(query, candidates, 3) == [0, 2, 1]


def test_top_k_limits():
    query = [1.0, 0.0]
    candidates = [[1.0, 0.0], [0.5, 0.5]]
    assert top_k(query, candidates, 0) == []
    assert top_k(query, candidates, 10) == [0, 1]
    assert top_k(query, [], 3) == []


def test_top_k_scored_returns_scores():
    ranked = top_k_scored([1.0, 0.0], [[0.0, 1.0], [1.0, 0.0]], 1)
    assert ranked == [(1, pytest.approx(1.0))]
