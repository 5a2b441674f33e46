"""Tests for DenseRetriever and SparseRetriever."""

from unittest.mock import AsyncMock, Mock

import pytest

from conftest import FakeEmbeddingProvider, make_chunk
from ragkit.errors import IndexNotBuiltError, InvalidInputError
from ragkit.retrieval.bm25_index import BM25Index
from ragkit.retrieval.dense import DenseRetriever, SparseRetriever
from ragkit.storage.vector_store import InMemoryVectorStore, VectorSearchHit


async def populated_store(chunks, provider) -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    embeddings = await provider.embed_batch([c.content for c in chunks])
    await store.add(chunks, [e.vector for e in embeddings])
    return store


class TestDenseRetriever:
    @pytest.mark.asyncio
    async def test_results_carry_dense_scores_and_ranks(self, sample_chunks, embedding_provider):
        store = await populated_store(sample_chunks, embedding_provider)
        retriever = DenseRetriever(embedding_provider, store)

        results = await retriever.retrieve("relational database", top_k=2)

        assert [r.id for r in results] == ["c1", "c2"]
        assert [r.dense_rank for r in results] == [1, 2]
        assert results[0].scores.dense == results[0].score
        assert results[0].embedding is not None
        assert embedding_provider.embed_calls == ["relational database"]

    @pytest.mark.asyncio
    async def test_metadata_filter_passed_to_store(self, sample_chunks, embedding_provider):
        store = await populated_store(sample_chunks, embedding_provider)
        retriever = DenseRetriever(embedding_provider, store)

        results = await retriever.retrieve("database", metadata_filter={"source": "caching.md"})

        assert [r.id for r in results] == ["c3"]

    @pytest.mark.asyncio
    async def test_min_score(self, sample_chunks, embedding_provider):
        store = await populated_store(sample_chunks, embedding_provider)
        retriever = DenseRetriever(embedding_provider, store)

        results = await retriever.retrieve("relational database", min_score=0.5)

        assert all(r.score >= 0.5 for r in results)
        assert {"c1", "c2"} <= {r.id for r in results}

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, embedding_provider):
        retriever = DenseRetriever(embedding_provider, InMemoryVectorStore())

        with pytest.raises(InvalidInputError):
            await retriever.retrieve("  ")

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        store = Mock()
        store.search = AsyncMock(side_effect=ConnectionError("store unreachable"))
        retriever = DenseRetriever(FakeEmbeddingProvider(), store)

        with pytest.raises(ConnectionError):
            await retriever.retrieve("query")

    @pytest.mark.asyncio
    async def test_store_hits_without_vectors(self):
        chunk = make_chunk("x", "text")
        store = Mock()
        store.search = AsyncMock(return_value=[VectorSearchHit(id="x", score=0.7, chunk=chunk)])
        retriever = DenseRetriever(FakeEmbeddingProvider(), store)

        results = await retriever.retrieve("query")

        assert results[0].embedding is None
        assert results[0].score == 0.7


class TestSparseRetriever:
    @pytest.mark.asyncio
    async def test_delegates_to_index(self, sample_chunks):
        index = BM25Index()
        index.build_index(sample_chunks)
        retriever = SparseRetriever(index)

        results = await retriever.retrieve("keyword relevance", top_k=5)

        assert [r.id for r in results] == ["c4"]
        assert results[0].score == 1.0

    @pytest.mark.asyncio
    async def test_min_score_uses_normalized_scores(self, sample_chunks):
        index = BM25Index()
        index.build_index(sample_chunks)
        retriever = SparseRetriever(index)

        results = await retriever.retrieve("PostgreSQL database", min_score=1.0)

        assert [r.id for r in results] == ["c1"]

    @pytest.mark.asyncio
    async def test_unbuilt_index(self):
        retriever = SparseRetriever(BM25Index())

        with pytest.raises(IndexNotBuiltError):
            await retriever.retrieve("query")
