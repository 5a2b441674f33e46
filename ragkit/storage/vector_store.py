"""Vector store interface and an in-memory implementation."""

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import numpy as np
from pydantic import BaseModel, ConfigDict

from ragkit.errors import DimensionMismatchError, InvalidInputError
from ragkit.models.chunk import Chunk
from ragkit.storage.filters import matches_filter

logger = logging.getLogger(__name__)


class VectorSearchHit(BaseModel):
    """Single similarity search hit."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    chunk: Chunk
    embedding: list[float] | None = None


class VectorStore(Protocol):
    """Pluggable similarity search provider."""

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorSearchHit]: ...


class InMemoryVectorStore:
    """Brute-force cosine similarity store held in process memory.

    Suitable for tests, small corpora and as a reference implementation of
    :class:`VectorStore`. Adding a chunk whose id already exists replaces it.
    """

    def __init__(self, include_vectors: bool = True):
        """Initialize an empty store.

        Args:
            include_vectors: Return stored embeddings with search hits
        """
        self.include_vectors = include_vectors
        self._chunks: dict[str, Chunk] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._dimension: int | None = None

        logger.info("Initialized InMemoryVectorStore")

    @property
    def dimension(self) -> int | None:
        return self._dimension

    async def add(
        self,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        """Store chunks with their embeddings.

        Args:
            chunks: Chunks to store
            embeddings: One embedding per chunk

        Returns:
            int: Number of chunks stored

        Raises:
            InvalidInputError: If chunks and embeddings differ in length or are empty
            DimensionMismatchError: If an embedding does not match the store's dimension
        """
        if not chunks:
            raise InvalidInputError("Cannot add empty chunk list")
        if len(chunks) != len(embeddings):
            raise InvalidInputError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings"
            )

        dimension = self._dimension if self._dimension is not None else len(embeddings[0])
        for embedding in embeddings:
            if len(embedding) != dimension:
                raise DimensionMismatchError(expected=dimension, actual=len(embedding))

        for chunk, embedding in zip(chunks, embeddings):
            self._chunks[chunk.id] = chunk
            self._vectors[chunk.id] = np.asarray(embedding, dtype=float)
        self._dimension = dimension

        logger.info(f"Added {len(chunks)} embeddings (store size {len(self._chunks)})")
        return len(chunks)

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorSearchHit]:
        """Perform cosine similarity search.

        Args:
            query_vector: Query embedding vector
            top_k: Number of results to return
            min_score: Minimum cosine similarity
            metadata_filter: Optional metadata filter

        Returns:
            Hits ordered by similarity (descending)

        Raises:
            InvalidInputError: If query_vector is empty or top_k is invalid
            DimensionMismatchError: If the query does not match the store's dimension
        """
        if len(query_vector) == 0:
            raise InvalidInputError("Query vector cannot be empty")
        if top_k < 1:
            raise InvalidInputError("top_k must be at least 1")
        if self._dimension is None:
            return []
        if len(query_vector) != self._dimension:
            raise DimensionMismatchError(expected=self._dimension, actual=len(query_vector))

        query = np.asarray(query_vector, dtype=float)
        query_norm = float(np.linalg.norm(query))

        hits: list[VectorSearchHit] = []
        for chunk_id, chunk in self._chunks.items():
            if not matches_filter(chunk, metadata_filter):
                continue
            vector = self._vectors[chunk_id]
            denominator = query_norm * float(np.linalg.norm(vector))
            score = float(np.dot(query, vector) / denominator) if denominator > 0 else 0.0
            if min_score is not None and score < min_score:
                continue
            hits.append(
                VectorSearchHit(
                    id=chunk_id,
                    score=score,
                    chunk=chunk,
                    embedding=vector.tolist() if self.include_vectors else None,
                )
            )

        hits.sort(key=lambda hit: hit.score, reverse=True)
        logger.debug(f"Vector search returned {min(len(hits), top_k)} results (requested top_k={top_k})")
        return hits[:top_k]

    async def delete(self, chunk_ids: Sequence[str]) -> int:
        """Remove chunks by id. Returns the number removed."""
        removed = 0
        for chunk_id in chunk_ids:
            if self._chunks.pop(chunk_id, None) is not None:
                del self._vectors[chunk_id]
                removed += 1
        return removed

    async def delete_document(self, document_id: str) -> int:
        """Remove every chunk belonging to a document.

        Returns:
            int: Number of chunks removed (0 if none were found)
        """
        ids = [chunk_id for chunk_id, chunk in self._chunks.items() if chunk.document_id == document_id]
        removed = await self.delete(ids)
        if removed:
            logger.info(f"Deleted {removed} chunks for document '{document_id}'")
        else:
            logger.info(f"No chunks found for document '{document_id}'")
        return removed

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        return self._chunks.get(chunk_id)

    async def count(self, document_id: str | None = None) -> int:
        """Count chunks, optionally for one document."""
        if document_id is None:
            return len(self._chunks)
        return sum(1 for chunk in self._chunks.values() if chunk.document_id == document_id)

    def clear(self) -> None:
        """Remove everything, including the recorded dimension."""
        self._chunks.clear()
        self._vectors.clear()
        self._dimension = None
        logger.warning("Cleared in-memory vector store")
