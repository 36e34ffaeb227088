"""Embedding blob codec and cosine similarity helpers.

Embeddings are stored in SQLite BLOB columns as concatenated little-endian
IEEE-754 float32 values, 4 bytes per dimension. Similarity search is a
linear scan; the facts table stays small enough for that to be fine.
"""

from __future__ import annotations

import struct
from collections.abc import Sequence

import numpy as np

from hearth_memory.errors import InvalidArgumentError


def encode_embedding(vector: Sequence[float] | None) -> bytes | None:
    """Pack a float vector for storage. Empty or missing input gives None."""
    if vector is None or len(vector) == 0:
        return None
    return struct.pack(f"<{len(vector)}f", *vector)


def decode_embedding(data: bytes | None) -> list[float] | None:
    """Unpack a stored blob back into a float list."""
    if not data:
        return None
    if len(data) % 4:
        raise InvalidArgumentError(f"embedding blob length {len(data)} is not a multiple of 4")
    count = len(data) // 4
    return list(struct.unpack(f"<{count}f", data))


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for empty vectors, mismatched lengths, or a zero-norm side.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def top_k_scored(
    query: Sequence[float], candidates: Sequence[Sequence[float]], k: int,
) -> list[tuple[int, float]]:
    """(index, score) pairs for the k candidates most similar to query.

    Sorted by descending score; ties keep insertion order.
    """
    if k <= 0 or not candidates:
        return []
    scores = np.array([cosine_similarity(query, c) for c in candidates])
    order = np.argsort(-scores, kind="stable")[:k]
    return [(int(i), float(scores[i])) for i in order]


def top_k(
    query: Sequence[float], candidates: Sequence[Sequence[float]], k: int,
) -> list[int]:
    """Indices of the k candidates most similar to query, best first."""
    return [i for i, _ in top_k_scored(query, candidates, k)]
