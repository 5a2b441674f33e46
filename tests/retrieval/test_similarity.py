"""Tests for cosine and Jaccard similarity helpers."""

import math

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ragkit.errors import DimensionMismatchError
from ragkit.retrieval.similarity import (
    cosine_similarity,
    jaccard_similarity,
    pairwise_cosine_similarity,
    text_similarity,
    word_set,
)

vectors = st.lists(st.integers(min_value=-100, max_value=100).map(float), min_size=1, max_size=8)
word_sets = st.sets(st.sampled_from(["alpha", "beta", "gamma", "delta", "omega"]), max_size=5)


class TestSimilarityProperties:
    @settings(deadline=None)
    @given(a=vectors)
    def test_cosine_bounded_and_symmetric(self, a):
        b = list(reversed(a))

        value = cosine_similarity(a, b)

        assert -1.0 - 1e-9 <= value <= 1.0 + 1e-9
        assert value == pytest.approx(cosine_similarity(b, a))

    @settings(deadline=None)
    @given(a=word_sets, b=word_sets)
    def test_jaccard_bounded_and_symmetric(self, a, b):
        value = jaccard_similarity(a, b)

        assert 0.0 <= value <= 1.0
        assert value == jaccard_similarity(b, a)
        if a == b:
            assert value == 1.0

    @settings(deadline=None)
    @given(text=st.text(max_size=60))
    def test_jaccard_reflexive(self, text):
        assert jaccard_similarity(word_set(text), word_set(text)) == 1.0
        assert text_similarity(text, text) == 1.0


class TestCosineSimilarity:
    def test_known_values(self):
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
        assert cosine_similarity([1, 1], [1, 0]) == pytest.approx(1 / math.sqrt(2))

    def test_zero_vector(self):
        assert cosine_similarity([0, 0], [1, 2]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError) as exc_info:
            cosine_similarity([1, 2], [1, 2, 3])

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3

    def test_pairwise_matrix(self):
        matrix = pairwise_cosine_similarity([[1, 0], [0, 1], [0, 0]])

        np.testing.assert_allclose(matrix, [[1, 0, 0], [0, 1, 0], [0, 0, 0]], atol=1e-12)

    def test_pairwise_empty(self):
        assert pairwise_cosine_similarity([]).shape == (0, 0)

    def test_pairwise_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            pairwise_cosine_similarity([[1, 0], [1, 0, 0]])


class TestJaccardSimilarity:
    def test_word_set_normalization(self):
        assert word_set("The cat, the HAT! a") == {"the", "cat", "hat"}

    def test_empty_sets(self):
        assert jaccard_similarity(set(), set()) == 1.0
        assert jaccard_similarity({"a"}, set()) == 0.0

    def test_text_similarity(self):
        # {the, quick, fox} vs {the, slow, fox}
        assert text_similarity("the quick fox", "the slow fox") == pytest.approx(2 / 4)

    def test_punctuation_only_texts_are_identical(self):
        assert text_similarity("!!", "?") == 1.0
