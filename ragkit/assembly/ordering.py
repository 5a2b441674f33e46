"""Final ordering of context chunks.

LLMs attend most to the start and end of a long context and least to the
middle ("lost in the middle"). Besides plain relevance order, the
``sandwich`` strategy puts strong chunks at both ends.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ragkit.errors import ConfigError, RegistryError
from ragkit.registry import Registry

T = TypeVar("T")

OrderingFunc = Callable[[list[Any], int | None], list[Any]]


def order_by_relevance(results: list[T], start_count: int | None = None) -> list[T]:
    """Stable sort by score descending."""
    return sorted(results, key=lambda r: r.score, reverse=True)


def order_by_sandwich(results: list[T], start_count: int | None = None) -> list[T]:
    """Strongest chunks first, next strongest last, weakest in the middle.

    The top ``start_count`` results (default: half, rounded up, clamped to
    [1, n - 1]) open the context in descending order. The rest follow in
    ascending order, so the best of them closes the context.

    The tail is intentionally ascending, not descending: the weakest chunk
    sits in the middle and the second-strongest group at the end.
    """
    ordered = order_by_relevance(results)
    if len(ordered) <= 2:
        return ordered

    count = math.ceil(len(ordered) / 2) if start_count is None else start_count
    count = max(1, min(count, len(ordered) - 1))
    return ordered[:count] + ordered[count:][::-1]


def order_chronologically(results: list[T], start_count: int | None = None) -> list[T]:
    """Group by document, then by position in the document."""

    def key(result: Any) -> tuple[str, float, float]:
        chunk = result.chunk
        start = chunk.metadata.start_index
        return (
            chunk.document_id or "",
            math.inf if start is None else start,
            -result.score,
        )

    return sorted(results, key=key)


ordering_registry: Registry[OrderingFunc] = Registry("ordering strategy")
ordering_registry.register("relevance", order_by_relevance)
ordering_registry.register("sandwich", order_by_sandwich)
ordering_registry.register("chronological", order_chronologically)


def order_results(
    results: list[T],
    strategy: str = "relevance",
    sandwich_start_count: int | None = None,
) -> list[T]:
    """Order results with a registered strategy.

    Args:
        results: Scored results (anything with ``score`` and ``chunk``)
        strategy: Registered strategy name
        sandwich_start_count: Chunks placed at the start by 'sandwich'

    Returns:
        New list in the requested order

    Raises:
        ConfigError: If the strategy is not registered
    """
    try:
        order = ordering_registry.get_or_raise(strategy)
    except RegistryError as e:
        raise ConfigError(
            f"Unknown ordering strategy '{strategy}', expected one of {ordering_registry.names()}"
        ) from e
    if not results:
        return []
    return order(list(results), sandwich_start_count)


@dataclass(frozen=True)
class OrderingAnalysis:
    """Average score per third of an ordered list."""

    total_count: int
    average_score: float
    start_average: float
    middle_average: float
    end_average: float
    high_attention_score_sum: float
    middle_score_sum: float


def analyze_ordering(results: list[Any]) -> OrderingAnalysis:
    """Score distribution over the start, middle and end thirds."""
    if not results:
        return OrderingAnalysis(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    scores = [r.score for r in results]
    third = math.ceil(len(scores) / 3)
    start = scores[:third]
    end = scores[-third:] if len(scores) > third else []
    middle = scores[third : len(scores) - len(end)]

    def avg(values: list[float]) -> float:
        return sum(values) / len(values) if values else 0.0

    return OrderingAnalysis(
        total_count=len(scores),
        average_score=avg(scores),
        start_average=avg(start),
        middle_average=avg(middle),
        end_average=avg(end),
        high_attention_score_sum=sum(start) + sum(end),
        middle_score_sum=sum(middle),
    )
