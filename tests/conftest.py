"""Pytest configuration and shared fixtures."""

import os
import zlib
from collections.abc import Sequence

import pytest

from ragkit.clients.embeddings import EmbeddingResult
from ragkit.config import Settings
from ragkit.models.chunk import Chunk, ChunkMetadata
from ragkit.models.search import RetrievalResult
from ragkit.retrieval.similarity import word_set

EMBEDDING_DIM = 64


def hash_embedding(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic bag-of-words vector: each word adds 1 to a hashed slot."""
    vector = [0.0] * dim
    for word in word_set(text):
        vector[zlib.crc32(word.encode("utf-8")) % dim] += 1.0
    return vector


class FakeEmbeddingProvider:
    """In-process embedding provider for tests.

    Texts with shared words get similar vectors, so dense retrieval and MMR
    behave sensibly without a model.
    """

    def __init__(self, dim: int = EMBEDDING_DIM, available: bool = True):
        self.dim = dim
        self.available = available
        self.embed_calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    async def embed(self, text: str) -> EmbeddingResult:
        self.embed_calls.append(text)
        return EmbeddingResult(vector=hash_embedding(text, self.dim), token_count=len(text.split()))

    async def embed_batch(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        self.batch_calls.append(list(texts))
        return [
            EmbeddingResult(vector=hash_embedding(text, self.dim), token_count=len(text.split()))
            for text in texts
        ]

    def is_available(self) -> bool:
        return self.available


def make_chunk(
    chunk_id: str,
    content: str,
    document_id: str | None = None,
    **metadata,
) -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content,
        document_id=document_id,
        metadata=ChunkMetadata(**metadata),
    )


def make_result(
    chunk_id: str,
    content: str,
    score: float,
    embedding: list[float] | None = None,
    **metadata,
) -> RetrievalResult:
    return RetrievalResult(
        id=chunk_id,
        chunk=make_chunk(chunk_id, content, **metadata),
        score=score,
        embedding=embedding,
    )


def result_from_chunk(chunk: Chunk, score: float, embedding: list[float] | None = None) -> RetrievalResult:
    return RetrievalResult(id=chunk.id, chunk=chunk, score=score, embedding=embedding)


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def sample_chunks():
    """Small corpus about databases and search."""
    return [
        make_chunk("c1", "PostgreSQL is a relational database", document_id="doc-a",
                   source="databases.md", page_number=1, start_index=0),
        make_chunk("c2", "MySQL is also a relational database", document_id="doc-a",
                   source="databases.md", page_number=1, start_index=40),
        make_chunk("c3", "Redis is an in-memory key value store", document_id="doc-b",
                   source="caching.md", page_number=2, start_index=0),
        make_chunk("c4", "BM25 ranks documents by keyword relevance", document_id="doc-c",
                   file_path="/docs/search.pdf", section="Ranking", start_index=0),
        make_chunk("c5", "Vector search finds semantically similar embeddings", document_id="doc-c",
                   url="https://example.com/vectors", start_index=120),
    ]


@pytest.fixture
def test_settings(monkeypatch):
    """Settings isolated from the environment and any .env file."""
    for key in list(os.environ):
        if key.upper().startswith("RAGKIT_"):
            monkeypatch.delenv(key, raising=False)
    return Settings(_env_file=None)
