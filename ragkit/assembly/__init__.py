"""Context assembly stages: deduplication, ordering, token budget, formatting."""

from ragkit.assembly.assembler import assemble_context, build_source_attributions, render_context
from ragkit.assembly.deduplication import analyze_similarity, deduplicate, find_similar_pairs
from ragkit.assembly.formatters import (
    MarkdownFormatter,
    XMLFormatter,
    create_formatter,
    formatter_registry,
)
from ragkit.assembly.ordering import analyze_ordering, order_results, ordering_registry
from ragkit.assembly.token_budget import (
    analyze_budget,
    apply_token_budget,
    calculate_token_budget,
    estimate_tokens,
)

__all__ = [
    "MarkdownFormatter",
    "XMLFormatter",
    "analyze_budget",
    "analyze_ordering",
    "analyze_similarity",
    "apply_token_budget",
    "assemble_context",
    "build_source_attributions",
    "calculate_token_budget",
    "create_formatter",
    "deduplicate",
    "estimate_tokens",
    "find_similar_pairs",
    "formatter_registry",
    "order_results",
    "ordering_registry",
]
