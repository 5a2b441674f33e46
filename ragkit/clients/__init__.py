"""Interfaces to external collaborators (embedding models, query enhancers)."""

from ragkit.clients.embeddings import (
    CachedEmbeddingProvider,
    EmbeddingProvider,
    EmbeddingResult,
)
from ragkit.clients.enhancer import QueryEnhancer, queries_to_search

__all__ = [
    "CachedEmbeddingProvider",
    "EmbeddingProvider",
    "EmbeddingResult",
    "QueryEnhancer",
    "queries_to_search",
]
