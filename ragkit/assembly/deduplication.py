"""Near-duplicate removal using Jaccard similarity of word sets."""

import logging
from typing import Any, Protocol, TypeVar

from ragkit.errors import ConfigError
from ragkit.models.chunk import Chunk
from ragkit.models.context import DeduplicationResult, DuplicateRecord, SimilarityAnalysis
from ragkit.retrieval.similarity import jaccard_similarity, word_set

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8


class Scored(Protocol):
    id: str
    chunk: Chunk
    score: float


T = TypeVar("T", bound=Scored)


def validate_threshold(threshold: float) -> float:
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"similarity_threshold must be between 0 and 1, got {threshold}")
    return threshold


def deduplicate(
    results: list[T],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    keep_highest_score: bool = True,
) -> DeduplicationResult[T]:
    """Remove near-duplicate results.

    Every pair is compared in input order. A pair is a duplicate when its
    Jaccard similarity is at least ``similarity_threshold``. With
    ``keep_highest_score`` the lower scoring item is removed (ties keep the
    earlier one); otherwise the later item is removed. Removed items take
    no part in later comparisons, so the outcome depends on input order.

    Args:
        results: Results in ranked order
        similarity_threshold: Similarity in [0, 1] at which items are duplicates
        keep_highest_score: Keep the higher scoring item of a duplicate pair

    Returns:
        Unique results in input order, removed duplicates, and comparison count

    Raises:
        ConfigError: If the threshold is outside [0, 1]
    """
    validate_threshold(similarity_threshold)
    if len(results) < 2:
        return DeduplicationResult(unique=list(results))

    words = [word_set(result.chunk.content) for result in results]
    removed: set[int] = set()
    duplicates: list[DuplicateRecord[T]] = []
    comparisons = 0

    for i in range(len(results)):
        if i in removed:
            continue
        for j in range(i + 1, len(results)):
            if j in removed:
                continue
            comparisons += 1
            similarity = jaccard_similarity(words[i], words[j])
            if similarity < similarity_threshold:
                continue

            if keep_highest_score and results[j].score > results[i].score:
                removed.add(i)
                duplicates.append(DuplicateRecord(results[i], results[j].id, similarity))
                break
            removed.add(j)
            duplicates.append(DuplicateRecord(results[j], results[i].id, similarity))

    unique = [result for idx, result in enumerate(results) if idx not in removed]
    if duplicates:
        logger.info(
            f"  Deduplication removed {len(duplicates)} of {len(results)} results "
            f"(threshold={similarity_threshold}, {comparisons} comparisons)"
        )
    return DeduplicationResult(unique=unique, duplicates=duplicates, comparisons=comparisons)


def find_similar_pairs(
    results: list[T],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[tuple[T, T, float]]:
    """All pairs at or above the threshold, most similar first."""
    validate_threshold(similarity_threshold)
    words = [word_set(result.chunk.content) for result in results]
    pairs = []
    for i in range(len(results)):
        for j in range(i + 1, len(results)):
            similarity = jaccard_similarity(words[i], words[j])
            if similarity >= similarity_threshold:
                pairs.append((results[i], results[j], similarity))
    pairs.sort(key=lambda pair: pair[2], reverse=True)
    return pairs


def analyze_similarity(
    results: list[Any],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> SimilarityAnalysis:
    """Pairwise similarity statistics, useful for tuning the threshold."""
    validate_threshold(similarity_threshold)
    words = [word_set(result.chunk.content) for result in results]
    similarities = [
        jaccard_similarity(words[i], words[j])
        for i in range(len(words))
        for j in range(i + 1, len(words))
    ]
    if not similarities:
        return SimilarityAnalysis(
            comparisons=0,
            average_similarity=0.0,
            max_similarity=0.0,
            min_similarity=0.0,
            pairs_above_threshold=0,
            threshold=similarity_threshold,
        )
    return SimilarityAnalysis(
        comparisons=len(similarities),
        average_similarity=sum(similarities) / len(similarities),
        max_similarity=max(similarities),
        min_similarity=min(similarities),
        pairs_above_threshold=sum(1 for s in similarities if s >= similarity_threshold),
        threshold=similarity_threshold,
    )
