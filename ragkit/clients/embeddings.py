"""Embedding provider interface and a caching wrapper around any provider."""

import hashlib
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ragkit.cache.lru_cache import CacheProvider, CacheStats, LRUCacheProvider

logger = logging.getLogger(__name__)


class EmbeddingResult(BaseModel):
    """Embedding vector for one text."""

    model_config = ConfigDict(frozen=True)

    vector: list[float]
    token_count: int = Field(default=0, ge=0)


class EmbeddingProvider(Protocol):
    """Anything that turns text into vectors (local model, remote API, ...)."""

    async def embed(self, text: str) -> EmbeddingResult: ...

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]: ...

    def is_available(self) -> bool: ...


class CachedEmbeddingProvider:
    """Embedding provider that memoizes another provider's results.

    Holds a cache and an inner provider and implements the same interface,
    so it can be used anywhere an :class:`EmbeddingProvider` is expected.
    Cache keys are SHA-256 digests of the text, prefixed with a namespace so
    two models can share one cache without colliding.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: CacheProvider[EmbeddingResult] | None = None,
        namespace: str = "default",
        ttl: float | None = None,
    ):
        """Initialize the wrapper.

        Args:
            provider: Provider that computes embeddings on a miss
            cache: Cache to use (default: a 10,000 entry LRU cache)
            namespace: Key prefix, typically the embedding model name
            ttl: TTL in seconds for new entries (default: the cache's default)
        """
        self.provider = provider
        self.cache = cache if cache is not None else LRUCacheProvider[EmbeddingResult]()
        self.namespace = namespace
        self.ttl = ttl

    @classmethod
    def from_settings(
        cls,
        provider: EmbeddingProvider,
        settings: Any,
        namespace: str = "default",
    ) -> "CachedEmbeddingProvider":
        """Wrap a provider in an LRU cache sized by ``embedding_cache_size``."""
        cache = LRUCacheProvider[EmbeddingResult](max_size=settings.embedding_cache_size)
        return cls(provider, cache=cache, namespace=namespace)

    def cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"emb:{self.namespace}:{digest}"

    async def embed(self, text: str) -> EmbeddingResult:
        key = self.cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        result = await self.provider.embed(text)
        self.cache.set(key, result, self.ttl)
        return result

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        """Embed texts, sending only cache misses to the inner provider.

        Repeated texts in one batch are embedded once.

        Args:
            texts: Texts to embed

        Returns:
            One result per input text, in input order
        """
        if not texts:
            return []

        results: dict[str, EmbeddingResult] = {}
        missing: list[str] = []
        for text in texts:
            if text in results or text in missing:
                continue
            cached = self.cache.get(self.cache_key(text))
            if cached is not None:
                results[text] = cached
            else:
                missing.append(text)

        if missing:
            embedded = await self.provider.embed_batch(missing)
            for text, result in zip(missing, embedded):
                self.cache.set(self.cache_key(text), result, self.ttl)
                results[text] = result

        logger.debug(
            f"Embedded batch of {len(texts)}: {len(texts) - len(missing)} cached, "
            f"{len(missing)} computed"
        )
        return [results[text] for text in texts]

    def is_available(self) -> bool:
        return self.provider.is_available()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()
