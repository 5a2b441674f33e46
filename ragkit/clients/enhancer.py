"""Query enhancer interface.

Enhancers rewrite or expand a query before retrieval (HyDE, multi-query
generation, ...). They usually call a chat model and live outside ragkit;
the pipeline only depends on this interface.
"""

from typing import Protocol

from ragkit.models.query import EnhancementResult


class QueryEnhancer(Protocol):
    async def enhance(self, query: str) -> EnhancementResult: ...


def queries_to_search(result: EnhancementResult) -> list[str]:
    """Original query followed by distinct enhanced variants."""
    queries = [result.original]
    for query in result.enhanced:
        if query and query.strip() and query not in queries:
            queries.append(query)
    return queries
