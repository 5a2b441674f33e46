"""Vector and token-set similarity measures."""

import re
from collections.abc import Sequence

import numpy as np

from ragkit.errors import DimensionMismatchError

_PUNCTUATION = re.compile(r"[^\w\s]")
MIN_WORD_LENGTH = 2


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors have different lengths
    """
    if len(a) != len(b):
        raise DimensionMismatchError(expected=len(a), actual=len(b))
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def pairwise_cosine_similarity(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine similarity matrix for a set of equal-length vectors.

    Rows and columns of zero-magnitude vectors are 0.

    Raises:
        DimensionMismatchError: If the vectors have different lengths
    """
    if not vectors:
        return np.zeros((0, 0))
    expected = len(vectors[0])
    for vector in vectors:
        if len(vector) != expected:
            raise DimensionMismatchError(expected=expected, actual=len(vector))

    matrix = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    zero = norms == 0.0
    unit = matrix / np.where(zero, 1.0, norms)[:, None]
    similarities = unit @ unit.T
    similarities[zero, :] = 0.0
    similarities[:, zero] = 0.0
    return similarities


def word_set(text: str) -> set[str]:
    """Lower-case words of at least two characters, punctuation removed."""
    words = _PUNCTUATION.sub(" ", text.lower()).split()
    return {word for word in words if len(word) >= MIN_WORD_LENGTH}


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    """|A ∩ B| / |A ∪ B|. Two empty sets are identical (1.0); one empty set gives 0.0."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def text_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two texts."""
    return jaccard_similarity(word_set(a), word_set(b))
