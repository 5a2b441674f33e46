"""Token estimation and budget enforcement for assembled context."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ragkit.errors import ConfigError, TokenBudgetExceededError
from ragkit.models.chunk import Chunk
from ragkit.models.context import BudgetResult

logger = logging.getLogger(__name__)

# Rough average for English text with GPT/Claude style tokenizers
CHARS_PER_TOKEN = 4

DEFAULT_CONTEXT_WINDOW_SIZE = 8192
DEFAULT_BUDGET_PERCENTAGE = 0.5

OVERFLOW_STRATEGIES = ("drop", "truncate")

T = TypeVar("T")


def estimate_tokens(text: str) -> int:
    """Estimate the token count of text (4 characters per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def calculate_token_budget(
    max_tokens: int | None = None,
    context_window_size: int = DEFAULT_CONTEXT_WINDOW_SIZE,
    budget_percentage: float = DEFAULT_BUDGET_PERCENTAGE,
) -> int:
    """Effective budget: ``max_tokens`` if given, else a share of the context window."""
    if max_tokens is not None:
        return max_tokens
    return math.floor(context_window_size * budget_percentage)


def _chunk_of(item: Any) -> Chunk:
    return item if isinstance(item, Chunk) else item.chunk


def _with_content(item: T, content: str) -> T:
    if isinstance(item, Chunk):
        return item.with_content(content)
    return item.model_copy(update={"chunk": item.chunk.with_content(content)})


def apply_token_budget(
    items: list[T],
    max_tokens: int,
    overflow_strategy: str = "drop",
) -> BudgetResult[T]:
    """Select items, in their given order, that fit within ``max_tokens``.

    Items are chunks or results holding a ``chunk``. Each item is included
    while ``used + tokens <= max_tokens``. On overflow, ``drop`` skips the
    item and keeps evaluating later (possibly smaller) items. ``truncate``
    cuts the first overflowing item to the remaining budget, includes it,
    and drops everything after it.

    Args:
        items: Items in final order
        max_tokens: Token ceiling
        overflow_strategy: 'drop' or 'truncate'

    Returns:
        Included and dropped items with token accounting

    Raises:
        ConfigError: If max_tokens is negative or the strategy is unknown
        TokenBudgetExceededError: If, under 'drop', no item fits at all
    """
    if max_tokens < 0:
        raise ConfigError(f"max_tokens must be non-negative, got {max_tokens}")
    if overflow_strategy not in OVERFLOW_STRATEGIES:
        raise ConfigError(
            f"Unknown overflow strategy '{overflow_strategy}', expected one of {OVERFLOW_STRATEGIES}"
        )

    included: list[T] = []
    dropped: list[T] = []
    used = 0
    was_truncated = False

    for item in items:
        if was_truncated:
            dropped.append(item)
            continue

        tokens = estimate_tokens(_chunk_of(item).content)
        if used + tokens <= max_tokens:
            included.append(item)
            used += tokens
            continue

        remaining = max_tokens - used
        if overflow_strategy == "truncate" and remaining > 0:
            content = _chunk_of(item).content[: remaining * CHARS_PER_TOKEN]
            included.append(_with_content(item, content))
            used += estimate_tokens(content)
            was_truncated = True
        else:
            dropped.append(item)

    if items and not included and overflow_strategy == "drop":
        smallest = min(estimate_tokens(_chunk_of(item).content) for item in items)
        raise TokenBudgetExceededError(max_tokens, smallest)

    if dropped or was_truncated:
        logger.info(
            f"  Token budget {max_tokens}: kept {len(included)}, dropped {len(dropped)}, "
            f"used {used} tokens{' (truncated)' if was_truncated else ''}"
        )

    return BudgetResult(
        included=included,
        dropped=dropped,
        used_tokens=used,
        remaining_tokens=max_tokens - used,
        was_truncated=was_truncated,
    )


@dataclass(frozen=True)
class ChunkTokenAnalysis:
    id: str
    tokens: int
    cumulative_tokens: int
    fits_in_budget: bool
    percent_of_budget: float


@dataclass(frozen=True)
class BudgetAnalysis:
    """How a list of items would fill a budget, without modifying it."""

    budget: int
    total_items: int
    total_tokens: int
    included_count: int
    dropped_count: int
    budget_utilization: float
    items: list[ChunkTokenAnalysis] = field(default_factory=list)


def analyze_budget(items: list[Any], budget: int) -> BudgetAnalysis:
    """Per-item token breakdown against a budget, for planning and debugging."""
    total = 0
    analysis = []
    for item in items:
        chunk = _chunk_of(item)
        tokens = estimate_tokens(chunk.content)
        total += tokens
        analysis.append(
            ChunkTokenAnalysis(
                id=chunk.id,
                tokens=tokens,
                cumulative_tokens=total,
                fits_in_budget=total <= budget,
                percent_of_budget=(tokens / budget * 100) if budget else 0.0,
            )
        )

    included_count = sum(1 for a in analysis if a.fits_in_budget)
    return BudgetAnalysis(
        budget=budget,
        total_items=len(items),
        total_tokens=total,
        included_count=included_count,
        dropped_count=len(items) - included_count,
        budget_utilization=(min(total, budget) / budget * 100) if budget else 0.0,
        items=analysis,
    )
