"""Reciprocal Rank Fusion (RRF) for combining multiple ranked lists."""

import logging
from collections.abc import Sequence

from ragkit.errors import ConfigError, InvalidInputError
from ragkit.models.search import RankedItem, RankedList, RRFContribution, RRFResult

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60.0


def rrf_score(rank: int, k: float = DEFAULT_RRF_K) -> float:
    """Contribution of a single 1-indexed rank: 1 / (k + rank)."""
    return 1.0 / (k + rank)


def max_rrf_score(num_lists: int, k: float = DEFAULT_RRF_K) -> float:
    """Highest fused score possible: rank 1 in every list."""
    return num_lists / (k + 1)


def normalize_rrf_scores(
    results: Sequence[RRFResult],
    num_lists: int,
    k: float = DEFAULT_RRF_K,
) -> list[RRFResult]:
    """Scale fused scores into [0, 1] by the theoretical maximum.

    Args:
        results: Fused results
        num_lists: Number of lists that were fused
        k: RRF constant used for fusion

    Returns:
        New results with normalized scores, in the same order
    """
    max_score = max_rrf_score(num_lists, k)
    if max_score <= 0:
        return list(results)
    return [
        result.model_copy(update={"score": min(1.0, result.score / max_score)})
        for result in results
    ]


def reciprocal_rank_fusion(
    ranked_lists: Sequence[RankedList],
    k: float = DEFAULT_RRF_K,
) -> list[RRFResult]:
    """Fuse ranked lists with Reciprocal Rank Fusion.

    RRF score for item d: sum over the lists containing d of 1 / (k + rank(d)).
    Items are matched across lists by ``id``. Within one list a repeated id
    keeps its first (best) rank.

    Output is sorted by fused score descending, then by the item's best rank
    in any list, then by the order in which items were first encountered.

    Args:
        ranked_lists: Named ranked lists
        k: RRF smoothing constant (default 60)

    Returns:
        Fused results with a per-list contribution breakdown

    Raises:
        ConfigError: If k is negative
        InvalidInputError: If two lists share a name
    """
    if k < 0:
        raise ConfigError(f"RRF k must be non-negative, got {k}")

    names = [ranked_list.name for ranked_list in ranked_lists]
    if len(set(names)) != len(names):
        raise InvalidInputError(f"Ranked list names must be unique, got {names}")

    # id -> item, in first-encounter order across lists
    first_seen: dict[str, RankedItem] = {}
    positions: list[dict[str, RankedItem]] = []

    for ranked_list in ranked_lists:
        by_id: dict[str, RankedItem] = {}
        for item in ranked_list.items:
            if item.id in by_id:
                continue
            by_id[item.id] = item
            if item.id not in first_seen:
                first_seen[item.id] = item
            elif first_seen[item.id].chunk is None and item.chunk is not None:
                # Keep encounter position, prefer an entry that carries the chunk
                first_seen[item.id] = item
        positions.append(by_id)

    fused: list[RRFResult] = []
    for item_id, item in first_seen.items():
        contributions: list[RRFContribution] = []
        total = 0.0
        best_rank: int | None = None

        for ranked_list, by_id in zip(ranked_lists, positions):
            ranked = by_id.get(item_id)
            if ranked is None:
                contributions.append(RRFContribution(list_name=ranked_list.name))
                continue
            contribution = rrf_score(ranked.rank, k)
            total += contribution
            best_rank = ranked.rank if best_rank is None else min(best_rank, ranked.rank)
            contributions.append(
                RRFContribution(
                    list_name=ranked_list.name,
                    rank=ranked.rank,
                    score=ranked.score,
                    contribution=contribution,
                )
            )

        fused.append(
            RRFResult(
                id=item_id,
                score=total,
                contributions=contributions,
                best_rank=best_rank,
                item=item,
            )
        )

    # Stable sort: equal (score, best_rank) keeps first-encounter order
    fused.sort(key=lambda result: (-result.score, result.best_rank))

    logger.debug(
        f"RRF fused {len(ranked_lists)} lists "
        f"({', '.join(f'{n}={len(lst.items)}' for n, lst in zip(names, ranked_lists))}) "
        f"into {len(fused)} unique results"
    )
    return fused
