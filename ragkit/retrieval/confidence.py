"""Confidence scores for fused retrieval results.

A result that several retrievers rank highly, with similar scores, is more
trustworthy than one found by a single retriever. Confidence combines:

- rank agreement (weight 0.4): average normalized rank across the lists the
  result appeared in, penalized by the spread of those ranks
- score consistency (weight 0.3): 1 minus the coefficient of variation of
  the per-list scores
- multi-signal presence (weight 0.3): share of retrievers that found it
"""

import math
from collections.abc import Sequence

from ragkit.models.search import ConfidenceScore, RRFContribution, RRFResult

RANK_AGREEMENT_WEIGHT = 0.4
SCORE_CONSISTENCY_WEIGHT = 0.3
MULTI_SIGNAL_WEIGHT = 0.3

MIN_RANK_SCALE = 10
MAX_RANK_PENALTY = 0.5


def calculate_rank_agreement(
    contributions: Sequence[RRFContribution],
    total_candidates: int,
) -> float:
    ranks = [c.rank for c in contributions if c.rank is not None]
    if not ranks:
        return 0.0

    scale = max(total_candidates, MIN_RANK_SCALE)
    normalized = [1 - (rank - 1) / scale for rank in ranks]
    mean = sum(normalized) / len(normalized)
    variance = sum((r - mean) ** 2 for r in normalized) / len(normalized)
    penalty = min(math.sqrt(variance), MAX_RANK_PENALTY)
    return max(0.0, min(1.0, mean * (1 - penalty)))


def calculate_score_consistency(contributions: Sequence[RRFContribution]) -> float:
    scores = [c.score for c in contributions if c.score is not None and c.score > 0]
    # A single signal is consistent with itself
    if len(scores) <= 1:
        return 1.0

    mean = sum(scores) / len(scores)
    std_dev = math.sqrt(sum((s - mean) ** 2 for s in scores) / len(scores))
    return max(0.0, min(1.0, 1 - std_dev / mean))


def calculate_confidence(
    result: RRFResult,
    num_rankers: int,
    total_candidates: int,
) -> ConfidenceScore:
    """Compute the confidence of one fused result.

    Args:
        result: Fused result with its per-list contributions
        num_rankers: Number of retrievers that were fused
        total_candidates: Number of fused candidates (scales rank normalization)

    Returns:
        ConfidenceScore with the overall value and its factors
    """
    contributions = result.contributions
    rank_agreement = calculate_rank_agreement(contributions, total_candidates)
    score_consistency = calculate_score_consistency(contributions)
    signal_count = sum(1 for c in contributions if c.rank is not None)
    presence = signal_count / num_rankers if num_rankers > 0 else 0.0

    overall = (
        RANK_AGREEMENT_WEIGHT * rank_agreement
        + SCORE_CONSISTENCY_WEIGHT * score_consistency
        + MULTI_SIGNAL_WEIGHT * presence
    )

    return ConfidenceScore(
        overall=max(0.0, min(1.0, overall)),
        rank_agreement=rank_agreement,
        score_consistency=score_consistency,
        signal_count=signal_count,
        multi_signal_presence=signal_count == num_rankers,
        signals={c.list_name: c.score for c in contributions if c.score is not None},
    )
