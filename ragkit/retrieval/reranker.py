"""Rerankers: MMR for result diversity and a cross-encoder for relevance."""

import asyncio
import hashlib
import logging
import math
import threading
from typing import Any, Protocol

import numpy as np

from ragkit.cache.lru_cache import CacheProvider, LRUCacheProvider
from ragkit.clients.embeddings import EmbeddingProvider
from ragkit.errors import ConfigError, EmbeddingRequiredError
from ragkit.models.search import RerankerResult, RerankerScores, RetrievalResult
from ragkit.retrieval.similarity import pairwise_cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_CROSS_ENCODER_MODEL = "BAAI/bge-reranker-base"


class Reranker(Protocol):
    async def rerank(
        self,
        query: str,
        results: list[RetrievalResult],
        *,
        top_k: int | None = None,
    ) -> list[RerankerResult]: ...


def validate_lambda(lambda_: float) -> float:
    if not 0.0 <= lambda_ <= 1.0:
        raise ConfigError(f"MMR lambda must be between 0 and 1, got {lambda_}")
    return lambda_


def normalize_scores(scores: list[float]) -> list[float]:
    """Min-max normalize scores to [0, 1]. All-equal scores map to 1.0."""
    if not scores:
        return []

    min_score = min(scores)
    max_score = max(scores)
    if max_score == min_score:
        return [1.0] * len(scores)
    return [(s - min_score) / (max_score - min_score) for s in scores]


class MMRReranker:
    """Reorders results to balance relevance against redundancy.

    Each step selects the candidate maximizing::

        MMR(d) = lambda * score(d) - (1 - lambda) * max_sim(d, selected)

    where ``max_sim`` is the highest cosine similarity between ``d`` and any
    already selected result, floored at 0 (so 0 before the first pick). The
    penalty is never negative, so MMR values and output scores never increase
    in selection order. ``lambda = 1`` keeps the input order; ``lambda = 0``
    picks purely for dissimilarity after the first result.
    """

    def __init__(self, embedding_provider: EmbeddingProvider | None = None, lambda_: float = 0.5):
        """Initialize reranker.

        Args:
            embedding_provider: Used to embed results that carry no embedding
            lambda_: Default relevance/diversity trade-off in [0, 1]

        Raises:
            ConfigError: If lambda_ is outside [0, 1]
        """
        self.embedding_provider = embedding_provider
        self.lambda_ = validate_lambda(lambda_)

        logger.info(f"Initialized MMRReranker: lambda={lambda_}")

    async def rerank(
        self,
        query: str,
        results: list[RetrievalResult],
        *,
        lambda_: float | None = None,
        top_k: int | None = None,
    ) -> list[RerankerResult]:
        """Rerank results with MMR.

        Args:
            query: Search query (logged only, relevance comes from result scores)
            results: Candidates in relevance order
            lambda_: Trade-off override
            top_k: Number of results to select (default: all)

        Returns:
            Selected results in selection order

        Raises:
            ConfigError: If lambda_ is outside [0, 1]
            EmbeddingRequiredError: If some result has no embedding and no
                provider is available to compute it
        """
        lam = validate_lambda(self.lambda_ if lambda_ is None else lambda_)
        if not results:
            return []

        limit = len(results) if top_k is None else max(0, min(top_k, len(results)))

        logger.info(f"→ MMR Reranking START - {len(results)} candidates → top {limit} (lambda={lam})")
        logger.info(f"  Query: {query}")

        embeddings = await self._resolve_embeddings(results)
        similarity = pairwise_cosine_similarity(embeddings)
        relevance = np.array([result.score for result in results], dtype=float)

        selected: list[int] = []
        mmr_values: list[float] = []
        penalties: list[float] = []
        remaining = list(range(len(results)))
        max_sim = np.zeros(len(results))

        while remaining and len(selected) < limit:
            best_idx = -1
            best_mmr = -np.inf
            best_penalty = 0.0
            for idx in remaining:
                penalty = (1.0 - lam) * max_sim[idx]
                mmr = lam * relevance[idx] - penalty
                # Strict comparison: ties go to the earlier candidate
                if best_idx == -1 or mmr > best_mmr:
                    best_idx, best_mmr, best_penalty = idx, mmr, penalty

            selected.append(best_idx)
            mmr_values.append(float(best_mmr))
            penalties.append(float(best_penalty))
            remaining.remove(best_idx)
            max_sim = np.maximum(max_sim, similarity[best_idx])

        normalized = normalize_scores(mmr_values)
        reranked = []
        for new_rank, (idx, mmr, penalty, score) in enumerate(
            zip(selected, mmr_values, penalties, normalized), 1
        ):
            result = results[idx]
            reranked.append(
                RerankerResult(
                    id=result.id,
                    chunk=result.chunk,
                    score=score,
                    original_rank=idx + 1,
                    new_rank=new_rank,
                    scores=RerankerScores(
                        original_score=result.score,
                        reranker_score=mmr,
                        relevance_score=result.score,
                        diversity_penalty=penalty,
                    ),
                    retrieval_scores=result.scores,
                    embedding=embeddings[idx],
                )
            )

        logger.info(f"✓ MMR Reranking COMPLETE - returning top {len(reranked)}:")
        for res in reranked[:5]:
            logger.info(
                f"    {res.new_rank}. mmr={res.scores.reranker_score:.4f} "
                f"(orig_rank={res.original_rank}, penalty={res.scores.diversity_penalty:.4f}) | "
                f"id={res.id}"
            )

        return reranked

    async def _resolve_embeddings(self, results: list[RetrievalResult]) -> list[list[float]]:
        missing = [i for i, result in enumerate(results) if result.embedding is None]
        embeddings: list[list[float] | None] = [result.embedding for result in results]
        if not missing:
            return embeddings

        if self.embedding_provider is None or not self.embedding_provider.is_available():
            raise EmbeddingRequiredError(
                f"{len(missing)} result(s) have no embedding and no embedding provider is available"
            )

        logger.debug(f"  Embedding {len(missing)} results without vectors")
        embedded = await self.embedding_provider.embed_batch([results[i].chunk.content for i in missing])
        for i, embedding in zip(missing, embedded):
            embeddings[i] = embedding.vector
        return embeddings


def sigmoid(x: float) -> float:
    """Logistic function, computed without overflow for large |x|."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


class CrossEncoderReranker:
    """Reranks results using a cross-encoder model.

    Cross-encoders jointly encode query and document to produce
    a relevance score, providing better ranking than bi-encoders.
    Raw model scores are mapped to (0, 1) with a sigmoid, which keeps
    their order and gives comparable values across queries.

    The model is loaded on first use (or by :meth:`load_model`) so that
    constructing a pipeline does not pull in torch.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_CROSS_ENCODER_MODEL,
        device: str | None = None,
        batch_size: int = 32,
        enable_caching: bool = True,
        cache: CacheProvider[float] | None = None,
        model: Any | None = None,
    ):
        """Initialize reranker with specified model.

        Args:
            model_name: HuggingFace model name for the cross-encoder
            device: Device to use ('cpu', 'cuda', 'mps'; None lets the library pick)
            batch_size: Batch size for scoring
            enable_caching: Whether to cache (query, content) scores
            cache: Score cache (default: an LRU cache)
            model: Already loaded model exposing ``predict(pairs, batch_size=...)``

        Raises:
            ConfigError: If batch_size < 1
        """
        if batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {batch_size}")

        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self.score_cache: CacheProvider[float] | None = None
        if enable_caching:
            self.score_cache = cache if cache is not None else LRUCacheProvider[float]()

        self.model = model
        self._load_lock = threading.Lock()

        logger.info(
            f"Initialized CrossEncoderReranker: model={model_name}, "
            f"device={device or 'auto'}, batch_size={batch_size}, caching={enable_caching}"
        )

    @classmethod
    def from_settings(cls, settings: Any, model: Any | None = None) -> "CrossEncoderReranker":
        return cls(
            model_name=settings.reranker_model,
            device=settings.reranker_device,
            batch_size=settings.reranking_batch_size,
            enable_caching=settings.cache_reranking_scores,
            model=model,
        )

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def load_model(self) -> Any:
        """Load the cross-encoder model if it is not loaded yet.

        Raises:
            ConfigError: If the model cannot be loaded
        """
        with self._load_lock:
            if self.model is None:
                from sentence_transformers import CrossEncoder

                try:
                    self.model = CrossEncoder(self.model_name, device=self.device)
                except Exception as e:
                    raise ConfigError(
                        f"Failed to load cross-encoder model '{self.model_name}': {e}"
                    ) from e
                logger.info(f"Loaded cross-encoder model: {self.model_name}")
        return self.model

    async def rerank(
        self,
        query: str,
        results: list[RetrievalResult],
        *,
        top_k: int | None = None,
    ) -> list[RerankerResult]:
        """Rerank results by cross-encoder relevance to the query.

        Args:
            query: Search query
            results: Candidates in retrieval order
            top_k: Number of results to return (default: all)

        Returns:
            Results sorted by reranker score, ties kept in retrieval order
        """
        if not results:
            return []

        limit = len(results) if top_k is None else max(0, min(top_k, len(results)))

        logger.info(f"→ Cross-Encoder Reranking START - {len(results)} candidates → top {limit}")
        logger.info(f"  Query: {query}")

        texts = [result.chunk.content for result in results]
        raw_scores = await asyncio.to_thread(self.score_pairs, query, texts)

        order = sorted(range(len(results)), key=lambda i: raw_scores[i], reverse=True)
        reranked = []
        for new_rank, idx in enumerate(order[:limit], 1):
            result = results[idx]
            score = sigmoid(raw_scores[idx])
            reranked.append(
                RerankerResult(
                    id=result.id,
                    chunk=result.chunk,
                    score=score,
                    original_rank=idx + 1,
                    new_rank=new_rank,
                    scores=RerankerScores(
                        original_score=result.score,
                        reranker_score=score,
                        relevance_score=raw_scores[idx],
                    ),
                    retrieval_scores=result.scores,
                    embedding=result.embedding,
                )
            )

        logger.info("✓ Cross-Encoder Reranking COMPLETE:")
        for res in reranked[:5]:
            orig_score = res.scores.original_score
            change = "↑" if res.score > orig_score else "↓" if res.score < orig_score else "="
            logger.info(
                f"    {res.new_rank}. rerank={res.score:.4f} (was {orig_score:.4f} {change}, "
                f"orig_rank={res.original_rank}) | id={res.id}"
            )

        return reranked

    def score_pairs(self, query: str, texts: list[str]) -> list[float]:
        """Raw cross-encoder scores for (query, text) pairs, in input order.

        Cached pairs are not sent to the model.
        """
        scores: list[float] = [0.0] * len(texts)
        uncached: list[int] = []
        for i, text in enumerate(texts):
            cached = None
            if self.score_cache is not None:
                cached = self.score_cache.get(self._cache_key(query, text))
            if cached is not None:
                scores[i] = cached
            else:
                uncached.append(i)

        if uncached:
            model = self.load_model()
            pairs = [(query, texts[i]) for i in uncached]
            predicted = model.predict(pairs, batch_size=self.batch_size)
            for i, score in zip(uncached, predicted):
                scores[i] = float(score)
                if self.score_cache is not None:
                    self.score_cache.set(self._cache_key(query, texts[i]), scores[i])

        logger.debug(f"  Scored {len(texts)} pairs: {len(texts) - len(uncached)} cached")
        return scores

    def clear_cache(self) -> None:
        """Clear the score cache."""
        if self.score_cache is not None:
            self.score_cache.clear()
        logger.info("Cleared reranking score cache")

    def _cache_key(self, query: str, text: str) -> str:
        digest = hashlib.sha256(f"{query}\x00{text}".encode("utf-8")).hexdigest()
        return f"rerank:{self.model_name}:{digest}"
