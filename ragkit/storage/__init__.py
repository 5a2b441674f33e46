"""Vector storage and metadata filtering."""

from ragkit.storage.filters import matches_filter
from ragkit.storage.vector_store import InMemoryVectorStore, VectorSearchHit, VectorStore

__all__ = [
    "InMemoryVectorStore",
    "VectorSearchHit",
    "VectorStore",
    "matches_filter",
]
