"""Tests for the embedding codec: quantization, cosine similarity, hash embeddings."""

import math

import numpy as np
import pytest

from itemkb.ai import embeddings
from itemkb.ai.embeddings import (
    cosine_similarity,
    dequantize,
    dimension_mismatch_count,
    generate_embedding,
    quantize,
)
from itemkb.config import EMBEDDING_DIMENSIONS
from itemkb.models import WeightedKeyword


def _kw(word: str, weight: float = 1.0) -> WeightedKeyword:
    return WeightedKeyword(word=word, weight=weight)


class TestQuantize:
    """Float <-> byte packing."""

    def test_known_values(self):
        """-1, 0 and 1 map to the ends and the (rounded-up) middle of the byte range."""
        assert quantize([-1.0, 0.0, 1.0]) == bytes([0, 128, 255])

    def test_out_of_range_values_are_clamped(self):
        assert quantize([2.5, -7.0]) == bytes([255, 0])

    def test_length_preserved(self):
        assert len(quantize([0.1] * EMBEDDING_DIMENSIONS)) == EMBEDDING_DIMENSIONS

    def test_dequantize_endpoints(self):
        assert dequantize(bytes([0, 255])) == [-1.0, 1.0]

    def test_round_trip_error_is_bounded(self):
        """Every value in [-1, 1] survives a round trip within one quantization step."""
        for value in np.linspace(-1.0, 1.0, 401):
            restored = dequantize(quantize([value]))[0]
            assert abs(restored - value) <= 1 / 127.5


class TestCosineSimilarity:
    """cosine_similarity over floats, bytes and mixes of both."""

    def test_symmetry(self):
        rng = np.random.default_rng(7)
        for _ in range(20):
            a = rng.uniform(-1, 1, EMBEDDING_DIMENSIONS)
            b = rng.uniform(-1, 1, EMBEDDING_DIMENSIONS)
            assert cosine_similarity(a, b) == cosine_similarity(b, a)
            assert cosine_similarity(quantize(a), b) == cosine_similarity(b, quantize(a))

    def test_self_similarity_floats(self):
        v = [0.3, -0.2, 0.9, 0.0]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_self_similarity_bytes(self):
        v = quantize([0.3, -0.2, 0.9, 0.0])
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_bytes_close_to_source_floats(self):
        v = np.linspace(-0.9, 0.9, EMBEDDING_DIMENSIONS)
        assert cosine_similarity(v, quantize(v)) > 0.999

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector_returns_zero(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
        assert cosine_similarity([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0

    def test_dimension_mismatch_returns_zero_and_is_counted(self):
        before = dimension_mismatch_count()
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
        assert dimension_mismatch_count() == before + 1

    def test_accepts_bytearray_and_memoryview(self):
        data = quantize([0.5, 0.5])
        assert cosine_similarity(bytearray(data), memoryview(data)) == pytest.approx(1.0)


class TestGenerateEmbedding:
    """Deterministic keyword-hash embeddings."""

    def test_deterministic(self):
        keywords = [_kw("graph", 0.9), _kw("database", 0.7)]
        assert generate_embedding(keywords) == generate_embedding(list(keywords))

    def test_fixed_dimension_and_unit_norm(self):
        vector = generate_embedding([_kw("graph"), _kw("retrieval", 0.5)])
        assert len(vector) == EMBEDDING_DIMENSIONS
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)
        assert all(-1.0 <= v <= 1.0 for v in vector)

    def test_empty_keywords_give_zero_vector(self):
        assert generate_embedding([]) == [0.0] * EMBEDDING_DIMENSIONS

    def test_case_insensitive(self):
        assert generate_embedding([_kw("Graph")]) == generate_embedding([_kw("graph")])

    def test_only_first_ten_keywords_count(self):
        ten = [_kw(f"word{i}") for i in range(10)]
        assert generate_embedding(ten + [_kw("extra")]) == generate_embedding(ten)

    def test_different_keywords_differ(self):
        assert generate_embedding([_kw("graph")]) != generate_embedding([_kw("kitchen")])

    def test_small_addition_stays_close(self):
        a = generate_embedding([_kw("graph"), _kw("database")])
        b = generate_embedding([_kw("graph"), _kw("database"), _kw("query", 0.1)])
        assert cosine_similarity(a, b) > 0.85


class TestHashWord:
    """The 31-multiplier string hash wraps to signed 32 bits."""

    def test_small_values(self):
        assert embeddings._hash_word("a") == 97
        assert embeddings._hash_word("ab") == 97 * 31 + 98

    def test_wraps_to_negative(self):
        # Well-known string whose 31-hash is exactly -2**31
        assert embeddings._hash_word("polygenelubricants") == -(2**31)
