"""Tests for SearchPipeline.

Properties covered:
- Identical requests are served from the cache
- Cancellation is observed at the next stage boundary
- Collaborator failures are wrapped and tagged with the failing stage
"""

from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import make_result
from ragkit.cache.lru_cache import LRUCacheProvider, NoCacheProvider
from ragkit.errors import (
    AbortedError,
    ConfigError,
    IndexNotBuiltError,
    InvalidInputError,
    PipelineStage,
    StageFailureError,
    TokenBudgetExceededError,
)
from ragkit.logging_config import get_search_id
from ragkit.models.query import CancellationToken, EnhancementResult, SearchOptions
from ragkit.retrieval.bm25_index import BM25Index
from ragkit.retrieval.dense import DenseRetriever, SparseRetriever
from ragkit.retrieval.hybrid_search import HybridRetriever
from ragkit.retrieval.reranker import CrossEncoderReranker, MMRReranker
from ragkit.services.search_pipeline import SearchPipeline, generate_cache_key, merge_results
from ragkit.storage.vector_store import InMemoryVectorStore


def mock_retriever(results=None):
    retriever = Mock()
    retriever.retrieve = AsyncMock(
        return_value=results
        if results is not None
        else [
            make_result("a", "PostgreSQL stores relational data", 0.9),
            make_result("b", "Redis keeps values in memory", 0.7),
            make_result("c", "BM25 scores keyword matches", 0.5),
        ]
    )
    return retriever


@pytest_asyncio.fixture
async def hybrid_retriever(sample_chunks, embedding_provider):
    store = InMemoryVectorStore()
    embeddings = await embedding_provider.embed_batch([c.content for c in sample_chunks])
    await store.add(sample_chunks, [e.vector for e in embeddings])
    index = BM25Index()
    index.build_index(sample_chunks)
    return HybridRetriever(DenseRetriever(embedding_provider, store), SparseRetriever(index))


class TestSearchPipelineProperties:
    """Property-based tests for cache keys."""

    @settings(deadline=None)
    @given(
        query=st.text(min_size=1, max_size=30),
        top_k=st.integers(min_value=1, max_value=50),
        ttl=st.floats(min_value=1, max_value=1000),
    )
    def test_cache_key_ignores_serving_options(self, query, top_k, ttl):
        base = SearchOptions(top_k=top_k)
        served = SearchOptions(top_k=top_k, use_cache=False, cache_ttl=ttl, cancel_token=CancellationToken())

        assert generate_cache_key(query, base) == generate_cache_key(query, served)
        assert generate_cache_key(query, base).startswith("rag_")

    @settings(deadline=None)
    @given(top_k=st.integers(min_value=1, max_value=50))
    def test_cache_key_depends_on_result_options(self, top_k):
        assert generate_cache_key("q", SearchOptions(top_k=top_k)) != generate_cache_key(
            "q", SearchOptions(top_k=top_k + 1)
        )
        assert generate_cache_key("q", SearchOptions()) != generate_cache_key("other", SearchOptions())


class TestSearchPipelineUnit:
    """Unit tests for SearchPipeline."""

    @pytest.mark.asyncio
    async def test_hybrid_search_end_to_end(self, hybrid_retriever, test_settings):
        pipeline = SearchPipeline(hybrid_retriever, settings=test_settings)

        response = await pipeline.search("relational database", {"top_k": 3})

        assert [r.id for r in response.results][:2] in (["c1", "c2"], ["c2", "c1"])
        assert response.context.content.startswith("<sources>")
        assert response.context.sources[0].index == 1
        metadata = response.metadata
        assert metadata.effective_query == "relational database"
        assert metadata.retrieved_count == 3
        assert not metadata.from_cache
        assert metadata.timings.retrieval_ms is not None
        assert metadata.timings.fusion_ms is not None
        assert metadata.timings.reranking_ms is None
        assert metadata.timings.total_ms >= metadata.timings.retrieval_ms

    @pytest.mark.asyncio
    async def test_default_options_come_from_settings(self, test_settings):
        retriever = mock_retriever()
        pipeline = SearchPipeline(retriever, settings=test_settings)

        await pipeline.search("query")

        retriever.retrieve.assert_awaited_once_with(
            "query",
            top_k=test_settings.default_top_k,
            min_score=test_settings.default_min_score,
            metadata_filter=None,
        )

    @pytest.mark.asyncio
    async def test_cache_hit_skips_retrieval(self, test_settings):
        retriever = mock_retriever()
        pipeline = SearchPipeline(retriever, settings=test_settings)

        first = await pipeline.search("query")
        second = await pipeline.search("  query  ")

        assert retriever.retrieve.await_count == 1
        assert second.metadata.from_cache
        assert second.metadata.search_id != first.metadata.search_id
        assert second.metadata.timings.retrieval_ms is None
        assert second.metadata.timings.cache_ms is not None
        assert second.context == first.context

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses_cache(self, test_settings):
        retriever = mock_retriever()
        pipeline = SearchPipeline(retriever, settings=test_settings)

        await pipeline.search("query", {"use_cache": False})
        await pipeline.search("query", {"use_cache": False})

        assert retriever.retrieve.await_count == 2
        assert pipeline.cache.size() == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, test_settings):
        retriever = mock_retriever()
        pipeline = SearchPipeline(retriever, settings=test_settings)
        await pipeline.search("query")

        pipeline.clear_cache()
        await pipeline.search("query")

        assert retriever.retrieve.await_count == 2

    def test_cache_selection_from_settings(self, test_settings):
        enabled = SearchPipeline(mock_retriever(), settings=test_settings)
        disabled = SearchPipeline(
            mock_retriever(), settings=test_settings.model_copy(update={"enable_cache": False})
        )

        assert isinstance(enabled.cache, LRUCacheProvider)
        assert enabled.cache.max_size == test_settings.cache_max_size
        assert isinstance(disabled.cache, NoCacheProvider)

    @pytest.mark.asyncio
    async def test_cache_read_failure_is_a_warning(self, test_settings):
        cache = Mock()
        cache.get = Mock(side_effect=ConnectionError("cache offline"))
        pipeline = SearchPipeline(mock_retriever(), cache=cache, settings=test_settings)

        response = await pipeline.search("query")

        assert response.context.chunk_count == 3
        assert len(response.metadata.warnings) == 1
        assert "cache offline" in response.metadata.warnings[0]
        cache.set.assert_called_once()

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_a_warning(self, test_settings):
        cache = Mock()
        cache.get = Mock(return_value=None)
        cache.set = Mock(side_effect=MemoryError("cache full"))
        pipeline = SearchPipeline(mock_retriever(), cache=cache, settings=test_settings)

        response = await pipeline.search("query")

        assert response.context.chunk_count == 3
        assert any("cache full" in w for w in response.metadata.warnings)

    @pytest.mark.asyncio
    async def test_cache_ttl_option_passed_to_cache(self, test_settings):
        cache = Mock()
        cache.get = Mock(return_value=None)
        pipeline = SearchPipeline(mock_retriever(), cache=cache, settings=test_settings)

        await pipeline.search("query", SearchOptions(cache_ttl=42))

        assert cache.set.call_args.args[2] == 42

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, test_settings):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        with pytest.raises(InvalidInputError):
            await pipeline.search("   ")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [{"top_k": 0}, {"max_tokens": -1}, {"unknown": {"nested": 1}, "top_k": "x"}])
    async def test_malformed_options_rejected(self, test_settings, options):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        with pytest.raises(InvalidInputError):
            await pipeline.search("query", options)

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, test_settings):
        token = CancellationToken()
        token.cancel("user left")
        retriever = mock_retriever()
        pipeline = SearchPipeline(retriever, settings=test_settings)

        with pytest.raises(AbortedError) as exc_info:
            await pipeline.search("query", SearchOptions(cancel_token=token))

        assert exc_info.value.stage is PipelineStage.CACHE
        assert exc_info.value.reason == "user left"
        retriever.retrieve.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_during_retrieval(self, test_settings):
        token = CancellationToken()
        retriever = Mock()

        async def retrieve(*args, **kwargs):
            token.cancel()
            return [make_result("a", "text", 0.9)]

        retriever.retrieve = retrieve
        pipeline = SearchPipeline(retriever, settings=test_settings)

        with pytest.raises(AbortedError) as exc_info:
            await pipeline.search("query", SearchOptions(cancel_token=token, use_cache=False))

        assert exc_info.value.stage is PipelineStage.DEDUPLICATION
        assert pipeline.cache.size() == 0

    @pytest.mark.asyncio
    async def test_retriever_failure_wrapped(self, test_settings):
        retriever = Mock()
        retriever.retrieve = AsyncMock(side_effect=ConnectionError("vector store down"))
        pipeline = SearchPipeline(retriever, settings=test_settings)

        with pytest.raises(StageFailureError) as exc_info:
            await pipeline.search("query")

        error = exc_info.value
        assert error.stage is PipelineStage.RETRIEVAL
        assert error.category == "retrieval"
        assert isinstance(error.__cause__, ConnectionError)
        assert "vector store down" in str(error)

    @pytest.mark.asyncio
    async def test_rag_errors_tagged_not_wrapped(self, test_settings):
        retriever = Mock()
        retriever.retrieve = AsyncMock(side_effect=IndexNotBuiltError("build the index first"))
        pipeline = SearchPipeline(retriever, settings=test_settings)

        with pytest.raises(IndexNotBuiltError) as exc_info:
            await pipeline.search("query")

        assert exc_info.value.stage is PipelineStage.RETRIEVAL

    @pytest.mark.asyncio
    async def test_budget_failure_tagged(self, test_settings):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        with pytest.raises(TokenBudgetExceededError) as exc_info:
            await pipeline.search("query", {"max_tokens": 1})

        assert exc_info.value.stage is PipelineStage.BUDGET
        assert exc_info.value.stage.category == "assembly"

    @pytest.mark.asyncio
    async def test_unknown_output_format_tagged(self, test_settings):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        with pytest.raises(ConfigError) as exc_info:
            await pipeline.search("query", {"output_format": "html"})

        assert exc_info.value.stage is PipelineStage.FORMATTING

    @pytest.mark.asyncio
    async def test_rerank_without_reranker(self, test_settings):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        with pytest.raises(ConfigError) as exc_info:
            await pipeline.search("query", {"rerank": True})

        assert exc_info.value.stage is PipelineStage.RERANKING

    @pytest.mark.asyncio
    async def test_rerank_with_mmr(self, test_settings, embedding_provider):
        pipeline = SearchPipeline(
            mock_retriever(),
            reranker=MMRReranker(embedding_provider),
            settings=test_settings,
        )

        response = await pipeline.search("query", {"rerank": True, "mmr_lambda": 0.7})

        assert response.metadata.reranked_count == 3
        assert response.metadata.timings.reranking_ms is not None
        assert len(embedding_provider.batch_calls) == 1
        assert all(r.scores.diversity_penalty is not None for r in response.results)

    @pytest.mark.asyncio
    async def test_rerank_with_cross_encoder(self, test_settings):
        model = Mock()
        model.predict = Mock(
            side_effect=lambda pairs, batch_size=32: [
                2.0 if "BM25" in text else -1.0 for _, text in pairs
            ]
        )
        pipeline = SearchPipeline(
            mock_retriever(),
            reranker=CrossEncoderReranker(model=model),
            settings=test_settings,
        )

        response = await pipeline.search("keyword scoring", {"rerank": True})

        assert [r.id for r in response.results] == ["c", "a", "b"]
        assert [r.new_rank for r in response.results] == [1, 2, 3]
        assert response.results[0].original_rank == 3
        assert response.metadata.reranked_count == 3
        model.predict.assert_called_once()

    @pytest.mark.asyncio
    async def test_enhancement_runs_every_query(self, test_settings):
        retriever = Mock()
        retriever.retrieve = AsyncMock(
            side_effect=[
                [make_result("a", "first result text", 0.4), make_result("b", "second result", 0.3)],
                [make_result("a", "first result text", 0.8), make_result("c", "third one here", 0.6)],
            ]
        )
        enhancer = Mock()
        enhancer.enhance = AsyncMock(
            return_value=EnhancementResult(original="db", enhanced=["database systems"], strategy="multi_query")
        )
        pipeline = SearchPipeline(retriever, enhancer=enhancer, settings=test_settings)

        response = await pipeline.search("db")

        assert retriever.retrieve.await_count == 2
        assert response.metadata.all_queries == ["db", "database systems"]
        assert response.metadata.effective_query == "database systems"
        assert response.metadata.enhancement.strategy == "multi_query"
        assert [r.id for r in response.results] == ["a", "c", "b"]
        assert response.results[0].score == 0.8
        assert response.metadata.timings.enhancement_ms is not None

    @pytest.mark.asyncio
    async def test_enhancement_can_be_disabled_per_call(self, test_settings):
        enhancer = Mock()
        enhancer.enhance = AsyncMock()
        pipeline = SearchPipeline(mock_retriever(), enhancer=enhancer, settings=test_settings)

        response = await pipeline.search("query", {"enhance": False})

        enhancer.enhance.assert_not_called()
        assert response.metadata.all_queries == ["query"]

    @pytest.mark.asyncio
    async def test_enhancer_failure_wrapped(self, test_settings):
        enhancer = Mock()
        enhancer.enhance = AsyncMock(side_effect=TimeoutError("llm timeout"))
        pipeline = SearchPipeline(mock_retriever(), enhancer=enhancer, settings=test_settings)

        with pytest.raises(StageFailureError) as exc_info:
            await pipeline.search("query")

        assert exc_info.value.stage is PipelineStage.ENHANCEMENT

    @pytest.mark.asyncio
    async def test_markdown_sandwich_and_duplicates(self, test_settings):
        retriever = mock_retriever(
            [
                make_result("a", "alpha beta gamma", 0.9),
                make_result("a2", "alpha beta gamma", 0.8),
                make_result("b", "delta epsilon", 0.7),
                make_result("c", "zeta eta", 0.6),
                make_result("d", "theta iota", 0.5),
            ]
        )
        pipeline = SearchPipeline(retriever, settings=test_settings)

        response = await pipeline.search(
            "query", {"output_format": "markdown", "ordering": "sandwich", "preamble": "Context:"}
        )

        assert response.metadata.deduplicated_count == 1
        assert [r.id for r in response.results] == ["a", "b", "d", "c"]
        assert [r.new_rank for r in response.results] == [1, 2, 3, 4]
        assert response.context.content.startswith("Context:\n\n**[1]** alpha beta gamma")

    @pytest.mark.asyncio
    async def test_new_rank_matches_returned_position(self, test_settings):
        retriever = mock_retriever(
            [
                make_result("a", "same words in both chunks", 0.9),
                make_result("b", "same words in both chunks", 0.8),
                make_result("c", "something else entirely", 0.7),
            ]
        )
        pipeline = SearchPipeline(retriever, settings=test_settings)

        response = await pipeline.search("query")

        assert [(r.id, r.new_rank) for r in response.results] == [("a", 1), ("c", 2)]
        assert [r.original_rank for r in response.results] == [1, 3]

    @pytest.mark.asyncio
    async def test_search_id_cleared_after_search(self, test_settings):
        pipeline = SearchPipeline(mock_retriever(), settings=test_settings)

        response = await pipeline.search("query")

        assert len(response.metadata.search_id) == 8
        assert get_search_id() is None

    @pytest.mark.asyncio
    async def test_metadata_filter_forwarded(self, hybrid_retriever, test_settings):
        pipeline = SearchPipeline(hybrid_retriever, settings=test_settings)

        response = await pipeline.search("database", {"filter": {"document_id": "doc-b"}})

        assert {r.id for r in response.results} == {"c3"}


class TestMergeResults:
    def test_best_score_per_id(self):
        merged = merge_results(
            [
                [make_result("a", "x", 0.5), make_result("b", "y", 0.4)],
                [make_result("a", "x", 0.9), make_result("c", "z", 0.3)],
            ],
            top_k=10,
        )

        assert [(r.id, r.score) for r in merged] == [("a", 0.9), ("b", 0.4), ("c", 0.3)]

    def test_top_k(self):
        merged = merge_results([[make_result(str(i), "x", i / 10) for i in range(5)]], top_k=2)

        assert [r.id for r in merged] == ["4", "3"]
