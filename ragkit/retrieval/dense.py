"""Dense (embedding similarity) and sparse (BM25) retrievers.

Both expose the same async ``retrieve`` signature so the hybrid retriever
and the search pipeline can treat them interchangeably.
"""

import logging
from typing import Any

from ragkit.clients.embeddings import EmbeddingProvider
from ragkit.errors import InvalidInputError
from ragkit.models.search import HybridScores, RetrievalResult
from ragkit.retrieval.bm25_index import BM25Index
from ragkit.storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


def _log_top_results(label: str, results: list[RetrievalResult]) -> None:
    logger.info(f"  {label} - found {len(results)} results:")
    for i, res in enumerate(results[:5], 1):  # Log top 5
        logger.info(
            f"    {i}. score={res.score:.4f} | "
            f"id={res.id} | content={res.chunk.content[:80]}..."
        )
    if len(results) > 5:
        logger.info(f"    ... and {len(results) - 5} more results")


class DenseRetriever:
    """Embeds the query and searches a vector store."""

    name = "dense"

    def __init__(self, embedding_provider: EmbeddingProvider, vector_store: VectorStore):
        """Initialize dense retriever.

        Args:
            embedding_provider: Provider used to embed queries
            vector_store: Store searched with the query vector
        """
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

    async def retrieve(
        self,
        query: str,
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievalResult]:
        """Perform vector similarity search.

        Args:
            query: Query text
            top_k: Number of results to return
            min_score: Minimum similarity score
            metadata_filter: Optional metadata filter

        Returns:
            Results ordered by similarity (descending)

        Raises:
            InvalidInputError: If the query is empty
        """
        if not query or not query.strip():
            raise InvalidInputError("Query cannot be empty")

        try:
            embedding = await self.embedding_provider.embed(query)
            hits = await self.vector_store.search(
                embedding.vector,
                top_k=top_k,
                min_score=min_score,
                metadata_filter=metadata_filter,
            )
        except Exception as e:
            logger.error(f"  Vector search FAILED: {e}")
            raise

        results = [
            RetrievalResult(
                id=hit.id,
                chunk=hit.chunk,
                score=hit.score,
                scores=HybridScores(dense=hit.score),
                dense_rank=rank,
                embedding=hit.embedding,
            )
            for rank, hit in enumerate(hits, 1)
        ]
        _log_top_results("Vector Search", results)
        return results


class SparseRetriever:
    """Async adapter over a :class:`BM25Index`."""

    name = "sparse"

    def __init__(self, index: BM25Index):
        self.index = index

    async def retrieve(
        self,
        query: str,
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievalResult]:
        """Perform BM25 keyword search.

        ``min_score`` applies to the normalized score, like every other
        retriever's output.
        """
        results = self.index.retrieve(query, top_k=top_k, metadata_filter=metadata_filter)
        if min_score is not None:
            results = [result for result in results if result.score >= min_score]
        _log_top_results("BM25 Keyword Search", results)
        return results
