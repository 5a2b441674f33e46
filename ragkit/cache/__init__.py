"""Caching for embeddings and search responses."""

from ragkit.cache.lru_cache import (
    CacheProvider,
    CacheStats,
    LRUCacheProvider,
    NoCacheProvider,
)

__all__ = [
    "CacheProvider",
    "CacheStats",
    "LRUCacheProvider",
    "NoCacheProvider",
]
