"""Keyword-hash embeddings and their one-byte-per-dimension storage format.

Embeddings here are a cheap stand-in for a semantic model: each keyword is
hashed and scattered over a few dimensions, then the vector is L2-normalized.
The only guarantees are determinism, fixed dimensionality and values in
[-1, 1]. Stored vectors map each float to ``round((v + 1) * 127.5)``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from ..config import (
    EMBEDDING_DIMENSIONS,
    EMBEDDING_KEYWORD_LIMIT,
    EMBEDDING_SCATTER_DIMS,
    EMBEDDING_SCATTER_STRIDE,
)
from ..models import WeightedKeyword

log = logging.getLogger(__name__)

VectorLike = bytes | bytearray | memoryview | Sequence[float] | np.ndarray

_QUANT_SCALE = 127.5

# Number of cosine comparisons skipped because the operands had different lengths
_dimension_mismatches = 0


def dimension_mismatch_count() -> int:
    return _dimension_mismatches


def quantize(vector: Sequence[float] | np.ndarray) -> bytes:
    """Pack floats into bytes. Values outside [-1, 1] are clamped first."""
    values = np.clip(np.asarray(vector, dtype=np.float64), -1.0, 1.0)
    # Round half up, not numpy's round-half-even
    return np.floor((values + 1.0) * _QUANT_SCALE + 0.5).astype(np.uint8).tobytes()


def dequantize(data: bytes | bytearray | memoryview) -> list[float]:
    return (_unpack(data)).tolist()


def _unpack(data: bytes | bytearray | memoryview) -> np.ndarray:
    return np.frombuffer(bytes(data), dtype=np.uint8).astype(np.float64) / _QUANT_SCALE - 1.0


def _as_array(vector: VectorLike) -> np.ndarray:
    if isinstance(vector, (bytes, bytearray, memoryview)):
        return _unpack(vector)
    return np.asarray(vector, dtype=np.float64)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine similarity of two vectors, either of which may be stored bytes.

    Returns 0.0 when either vector has zero magnitude or when the lengths
    differ. Mismatches are counted and logged.
    """
    global _dimension_mismatches

    va = _as_array(a)
    vb = _as_array(b)
    if va.shape != vb.shape:
        _dimension_mismatches += 1
        log.warning("Embedding dimension mismatch (%d vs %d), treating as unrelated", va.size, vb.size)
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, similarity))


def _hash_word(word: str) -> int:
    """31-multiplier rolling hash, wrapped to a signed 32-bit integer."""
    h = 0
    for ch in word:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


def generate_embedding(keywords: Sequence[WeightedKeyword]) -> list[float]:
    """Project weighted keywords onto a normalized EMBEDDING_DIMENSIONS vector.

    Same keywords and weights always produce the same vector.
    """
    vector = np.zeros(EMBEDDING_DIMENSIONS, dtype=np.float64)

    for keyword in keywords[:EMBEDDING_KEYWORD_LIMIT]:
        h = _hash_word(keyword.word.lower())
        for dim in range(EMBEDDING_SCATTER_DIMS):
            index = (abs(h) + dim * EMBEDDING_SCATTER_STRIDE) % EMBEDDING_DIMENSIONS
            vector[index] += keyword.weight * (0.5 + 0.5 * np.sin(h + dim))

    magnitude = float(np.linalg.norm(vector))
    if magnitude > 0:
        vector = vector / magnitude
    return vector.tolist()
