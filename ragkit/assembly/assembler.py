"""Context assembly: dedup → order → budget → format in one call."""

import logging
from typing import Any

from ragkit.assembly.deduplication import DEFAULT_SIMILARITY_THRESHOLD, deduplicate
from ragkit.assembly.formatters import ContextFormatter, create_formatter
from ragkit.assembly.ordering import order_results
from ragkit.assembly.token_budget import apply_token_budget, calculate_token_budget, estimate_tokens
from ragkit.models.context import AssembledContext, SourceAttribution
from ragkit.models.search import RerankerResult, RetrievalResult

logger = logging.getLogger(__name__)


def build_source_attributions(results: list[Any]) -> list[SourceAttribution]:
    """Citations for results in final order.

    Location is ``page N`` when the page is known, else ``char N`` from the
    start offset. Source is the first of metadata ``source``, ``file_path``
    or ``url``.
    """
    sources = []
    for index, result in enumerate(results, 1):
        chunk = result.chunk
        metadata = chunk.metadata
        location = None
        if metadata.page_number is not None:
            location = f"page {metadata.page_number}"
        elif metadata.start_index is not None:
            location = f"char {metadata.start_index}"

        sources.append(
            SourceAttribution(
                index=index,
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                source=metadata.source or metadata.file_path or metadata.url,
                location=location,
                score=result.score,
                section=metadata.section,
            )
        )
    return sources


def render_context(
    formatter: ContextFormatter,
    results: list[Any],
    *,
    preamble: str | None = None,
    postamble: str | None = None,
    deduplicated_count: int = 0,
    dropped_count: int = 0,
) -> AssembledContext:
    """Format final results and wrap them in optional preamble/postamble."""
    chunks = [result.chunk for result in results]
    sources = build_source_attributions(results)

    parts = []
    if preamble:
        parts.append(preamble)
    parts.append(formatter.format(chunks, sources))
    if postamble:
        parts.append(postamble)
    content = "\n\n".join(parts)

    return AssembledContext(
        content=content,
        estimated_tokens=estimate_tokens(content),
        chunk_count=len(chunks),
        deduplicated_count=deduplicated_count,
        dropped_count=dropped_count,
        sources=sources,
        chunks=chunks,
    )


def _as_reranker_results(results: list[Any]) -> list[RerankerResult]:
    return [
        RerankerResult.from_retrieval(result, rank) if isinstance(result, RetrievalResult) else result
        for rank, result in enumerate(results, 1)
    ]


def assemble_context(
    results: list[RetrievalResult | RerankerResult],
    *,
    formatter: ContextFormatter | None = None,
    output_format: str = "xml",
    deduplicate_results: bool = True,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    keep_highest_score: bool = True,
    ordering: str = "relevance",
    sandwich_start_count: int | None = None,
    max_tokens: int | None = None,
    overflow_strategy: str = "drop",
    preamble: str | None = None,
    postamble: str | None = None,
    include_scores: bool = False,
) -> AssembledContext:
    """Turn ranked results into a formatted, token-bounded context.

    Args:
        results: Ranked retrieval or reranker results
        formatter: Formatter instance (default: created from output_format)
        output_format: Registered formatter name
        deduplicate_results: Remove near-duplicates first
        similarity_threshold: Jaccard threshold for duplicates
        keep_highest_score: Duplicate resolution policy
        ordering: Registered ordering strategy
        sandwich_start_count: Chunks at the start for 'sandwich'
        max_tokens: Token budget (default: half of an 8192 token window)
        overflow_strategy: 'drop' or 'truncate'
        preamble: Text placed before the formatted chunks
        postamble: Text placed after the formatted chunks
        include_scores: Show scores in the formatted output

    Returns:
        Assembled context with source attributions

    Raises:
        ConfigError: On invalid threshold, strategy or format
        TokenBudgetExceededError: If no chunk fits the budget under 'drop'
    """
    if formatter is None:
        formatter = create_formatter(output_format, include_scores=include_scores)

    working = _as_reranker_results(results)
    logger.info(f"→ Context Assembly START - {len(working)} results")

    deduplicated_count = 0
    if deduplicate_results:
        dedup = deduplicate(working, similarity_threshold, keep_highest_score)
        working = dedup.unique
        deduplicated_count = len(dedup.duplicates)

    working = order_results(working, ordering, sandwich_start_count)

    budget = apply_token_budget(working, calculate_token_budget(max_tokens), overflow_strategy)

    context = render_context(
        formatter,
        budget.included,
        preamble=preamble,
        postamble=postamble,
        deduplicated_count=deduplicated_count,
        dropped_count=len(budget.dropped),
    )

    logger.info(
        f"✓ Context Assembly COMPLETE: {context.chunk_count} chunks, "
        f"~{context.estimated_tokens} tokens ({deduplicated_count} duplicates, "
        f"{context.dropped_count} over budget)"
    )
    return context
