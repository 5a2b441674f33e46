"""Search pipeline: query in, token-bounded citable context out."""

import asyncio
import hashlib
import json
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

from pydantic import ValidationError

from ragkit.assembly.assembler import render_context
from ragkit.assembly.deduplication import deduplicate
from ragkit.assembly.formatters import ContextFormatter, create_formatter
from ragkit.assembly.ordering import order_results
from ragkit.assembly.token_budget import apply_token_budget
from ragkit.cache.lru_cache import CacheProvider, LRUCacheProvider, NoCacheProvider
from ragkit.clients.enhancer import QueryEnhancer, queries_to_search
from ragkit.config import Settings, get_settings
from ragkit.errors import (
    AbortedError,
    ConfigError,
    InvalidInputError,
    PipelineStage,
    RagError,
    StageFailureError,
)
from ragkit.logging_config import clear_search_id, get_logger, set_search_id
from ragkit.models.query import (
    EnhancementResult,
    PipelineTimings,
    SearchMetadata,
    SearchOptions,
    SearchResponse,
)
from ragkit.models.search import RerankerResult, RetrievalResult
from ragkit.retrieval.hybrid_search import HybridRetriever
from ragkit.retrieval.reranker import MMRReranker, Reranker

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "rag_"

# Options that change how a search is served, not what it returns
_CACHE_NEUTRAL_OPTIONS = {"use_cache", "cache_ttl", "cancel_token"}


class Retriever(Protocol):
    async def retrieve(
        self,
        query: str,
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievalResult]: ...


def generate_cache_key(query: str, options: SearchOptions) -> str:
    """Stable key over the query and every option that affects the result."""
    payload = {
        "query": query,
        "options": options.model_dump(mode="json", exclude=_CACHE_NEUTRAL_OPTIONS),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return CACHE_KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def merge_results(result_lists: list[list[RetrievalResult]], top_k: int) -> list[RetrievalResult]:
    """Union of several result lists by id, keeping each id's best score."""
    best: dict[str, RetrievalResult] = {}
    for results in result_lists:
        for result in results:
            existing = best.get(result.id)
            if existing is None or result.score > existing.score:
                best[result.id] = result
    merged = sorted(best.values(), key=lambda r: r.score, reverse=True)
    return merged[:top_k]


class SearchPipeline:
    """Runs enhancement → retrieval → fusion → reranking → assembly.

    This orchestrates the full retrieval-augmented search flow:
    1. Cache lookup (optional) - return a stored response for identical requests
    2. Query Enhancement (optional) - rewrite/expand the query via an enhancer
    3. Retrieval - dense, sparse or hybrid candidates
    4. Fusion - RRF over dense and sparse lists (hybrid only)
    5. Reranking (optional) - MMR diversity or cross-encoder relevance reranking
    6. Deduplication, ordering, token budget, formatting

    Each stage is timed and checks the cancellation token before it starts.
    Validation errors propagate unchanged; collaborator failures surface as
    :class:`StageFailureError` naming the stage. Cache failures never fail
    a search.
    """

    def __init__(
        self,
        retriever: Retriever,
        *,
        reranker: Reranker | None = None,
        enhancer: QueryEnhancer | None = None,
        cache: CacheProvider[SearchResponse] | None = None,
        formatter: ContextFormatter | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the pipeline.

        Args:
            retriever: Dense, sparse or hybrid retriever
            reranker: MMR or cross-encoder reranker used when ``rerank`` is requested
            enhancer: Optional query enhancer
            cache: Response cache (default: LRU cache from settings, or none when disabled)
            formatter: Fixed formatter (default: chosen per call by ``output_format``)
            settings: Settings providing option defaults (default: global settings)
        """
        self.settings = settings or get_settings()
        self.retriever = retriever
        self.reranker = reranker
        self.enhancer = enhancer
        self.formatter = formatter

        if cache is not None:
            self.cache = cache
        elif self.settings.enable_cache:
            self.cache = LRUCacheProvider[SearchResponse](
                max_size=self.settings.cache_max_size,
                default_ttl=self.settings.cache_ttl,
            )
        else:
            self.cache = NoCacheProvider[SearchResponse]()

        logger.info(
            f"SearchPipeline initialized: retriever={type(retriever).__name__}, "
            f"reranker={reranker is not None}, enhancer={enhancer is not None}, "
            f"cache={type(self.cache).__name__}"
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    async def search(
        self,
        query: str,
        options: SearchOptions | dict[str, Any] | None = None,
    ) -> SearchResponse:
        """Search and assemble context for a query.

        Args:
            query: Natural-language query
            options: Per-call options; unset fields use configured defaults

        Returns:
            Assembled context, final results and pipeline metadata

        Raises:
            InvalidInputError: If the query is blank or options are malformed
            ConfigError: If an option is out of range or names an unknown strategy
            TokenBudgetExceededError: If no chunk fits the budget under 'drop'
            StageFailureError: If a collaborator fails during a stage
            AbortedError: If the cancellation token is set at a stage boundary
        """
        if not query or not query.strip():
            raise InvalidInputError("Query cannot be empty")
        query = query.strip()
        resolved = self._resolve_options(options)

        search_id = uuid.uuid4().hex[:8]
        set_search_id(search_id)
        start_time = time.perf_counter()
        try:
            return await self._run(query, resolved, search_id, start_time)
        finally:
            clear_search_id()

    def _resolve_options(self, options: SearchOptions | dict[str, Any] | None) -> SearchOptions:
        if options is None:
            options = SearchOptions()
        elif isinstance(options, dict):
            try:
                options = SearchOptions(**options)
            except ValidationError as e:
                raise InvalidInputError(f"Invalid search options: {e}") from e
        return options.with_defaults(self.settings)

    async def _run(
        self,
        query: str,
        options: SearchOptions,
        search_id: str,
        start_time: float,
    ) -> SearchResponse:
        timings: dict[str, float] = {}
        warnings: list[str] = []

        logger.info("=" * 80)
        logger.info("🔍 SEARCH PIPELINE START")
        logger.info("=" * 80)
        logger.info(f"Query: '{query}'")
        logger.info(
            f"Parameters: top_k={options.top_k}, ordering={options.ordering}, "
            f"max_tokens={options.max_tokens}, rerank={options.rerank}, "
            f"deduplicate={options.deduplicate}, format={options.output_format}"
        )
        logger.info("-" * 80)

        cache_key = generate_cache_key(query, options) if options.use_cache else None
        if cache_key is not None:
            cached = self._cache_get(cache_key, options, timings, warnings)
            if cached is not None:
                return self._from_cache(cached, search_id, timings, warnings, start_time)

        # Step 1: Query Enhancement (optional)
        enhancement: EnhancementResult | None = None
        queries = [query]
        effective_query = query
        if options.enhance and self.enhancer is not None:
            with self._stage(PipelineStage.ENHANCEMENT, options, timings):
                logger.info("→ Query Enhancement START")
                enhancement = await self.enhancer.enhance(query)
                queries = queries_to_search(enhancement)
                if len(queries) > 1:
                    effective_query = queries[1]
                logger.info(
                    f"✓ Query Enhancement COMPLETE ({enhancement.strategy}): "
                    f"{len(queries)} queries"
                )
        else:
            logger.info("→ Query Enhancement DISABLED")

        # Step 2 + 3: Retrieval and fusion
        results = await self._retrieve(queries, options, timings)

        # Step 4: Reranking (optional)
        reranked_count = 0
        if options.rerank:
            with self._stage(PipelineStage.RERANKING, options, timings):
                if self.reranker is None:
                    raise ConfigError("Reranking requested but no reranker is configured")
                if isinstance(self.reranker, MMRReranker):
                    working = await self.reranker.rerank(
                        effective_query,
                        results,
                        lambda_=options.mmr_lambda,
                        top_k=options.top_k,
                    )
                else:
                    working = await self.reranker.rerank(
                        effective_query, results, top_k=options.top_k
                    )
            reranked_count = len(working)
        else:
            working = [RerankerResult.from_retrieval(r, rank) for rank, r in enumerate(results, 1)]

        # Step 5: Deduplication
        deduplicated_count = 0
        if options.deduplicate:
            with self._stage(PipelineStage.DEDUPLICATION, options, timings):
                dedup = deduplicate(
                    working,
                    options.similarity_threshold,
                    self.settings.dedup_keep_highest_score,
                )
            working = dedup.unique
            deduplicated_count = len(dedup.duplicates)

        # Step 6: Ordering
        with self._stage(PipelineStage.ORDERING, options, timings):
            working = order_results(working, options.ordering, options.sandwich_start_count)

        # Step 7: Token budget
        with self._stage(PipelineStage.BUDGET, options, timings):
            budget = apply_token_budget(working, options.max_tokens, options.overflow_strategy)
        # Ranks follow the returned order
        final = [
            result.model_copy(update={"new_rank": rank})
            for rank, result in enumerate(budget.included, 1)
        ]

        # Step 8: Formatting
        with self._stage(PipelineStage.FORMATTING, options, timings):
            formatter = self.formatter or create_formatter(
                options.output_format, include_scores=options.include_scores
            )
            context = render_context(
                formatter,
                final,
                preamble=options.preamble,
                postamble=options.postamble,
                deduplicated_count=deduplicated_count,
                dropped_count=len(budget.dropped),
            )

        metadata = SearchMetadata(
            search_id=search_id,
            effective_query=effective_query,
            all_queries=queries,
            enhancement=enhancement,
            retrieved_count=len(results),
            reranked_count=reranked_count,
            deduplicated_count=deduplicated_count,
            dropped_count=context.dropped_count,
            timings=PipelineTimings(**timings, total_ms=(time.perf_counter() - start_time) * 1000),
            warnings=list(warnings),
        )
        response = SearchResponse(context=context, results=final, metadata=metadata)

        if cache_key is not None:
            failure = self._cache_set(cache_key, response, options)
            if failure is not None:
                warnings.append(failure)
                response = response.model_copy(
                    update={"metadata": metadata.model_copy(update={"warnings": list(warnings)})}
                )

        logger.info("=" * 80)
        logger.info(
            f"✓ SEARCH PIPELINE COMPLETE - {context.chunk_count} chunks, "
            f"~{context.estimated_tokens} tokens in {response.metadata.timings.total_ms:.1f}ms"
        )
        logger.info("=" * 80)
        return response

    async def _retrieve(
        self,
        queries: list[str],
        options: SearchOptions,
        timings: dict[str, float],
    ) -> list[RetrievalResult]:
        top_k = options.top_k

        if isinstance(self.retriever, HybridRetriever) and len(queries) == 1:
            with self._stage(PipelineStage.RETRIEVAL, options, timings):
                logger.info(f"→ Retrieval Mode: HYBRID SEARCH (top_k={top_k}, alpha={options.alpha})")
                rankings = await self.retriever.gather_rankings(
                    queries[0],
                    top_k=top_k,
                    metadata_filter=options.filter,
                    alpha=options.alpha,
                )
            with self._stage(PipelineStage.FUSION, options, timings):
                results = self.retriever.fuse_rankings(
                    rankings, top_k=top_k, min_score=options.min_score
                )
            logger.info(f"✓ Retrieved {len(results)} results")
            return results

        with self._stage(PipelineStage.RETRIEVAL, options, timings):
            logger.info(
                f"→ Retrieval START - {type(self.retriever).__name__}, "
                f"{len(queries)} quer{'y' if len(queries) == 1 else 'ies'} (top_k={top_k})"
            )
            result_lists = await asyncio.gather(
                *(self._retrieve_one(q, options) for q in queries)
            )
            if len(result_lists) == 1:
                results = result_lists[0]
            else:
                results = merge_results(list(result_lists), top_k)
            logger.info(f"✓ Retrieved {len(results)} results")
        return results

    async def _retrieve_one(self, query: str, options: SearchOptions) -> list[RetrievalResult]:
        if isinstance(self.retriever, HybridRetriever):
            return await self.retriever.retrieve(
                query,
                top_k=options.top_k,
                min_score=options.min_score,
                metadata_filter=options.filter,
                alpha=options.alpha,
            )
        return await self.retriever.retrieve(
            query,
            top_k=options.top_k,
            min_score=options.min_score,
            metadata_filter=options.filter,
        )

    @contextmanager
    def _stage(
        self,
        stage: PipelineStage,
        options: SearchOptions,
        timings: dict[str, float],
    ) -> Iterator[None]:
        """Time a stage and attribute its failures to it.

        Checks for cancellation first. RagErrors are tagged with the stage and
        re-raised; anything else is wrapped in StageFailureError.
        """
        self._check_cancelled(stage, options)
        start = time.perf_counter()
        try:
            yield
        except RagError as e:
            if e.stage is None:
                e.stage = stage
            logger.error(f"✗ {stage.value} FAILED: {e.message}")
            raise
        except Exception as e:
            logger.error(f"✗ {stage.value} FAILED: {type(e).__name__}: {e}")
            raise StageFailureError(stage, e) from e
        finally:
            timings[f"{stage.value}_ms"] = (time.perf_counter() - start) * 1000

    @staticmethod
    def _check_cancelled(stage: PipelineStage, options: SearchOptions) -> None:
        token = options.cancel_token
        if token is not None and token.is_cancelled:
            logger.warning(f"⚠ Search aborted before {stage.value}")
            raise AbortedError(stage, token.reason)

    def _cache_get(
        self,
        key: str,
        options: SearchOptions,
        timings: dict[str, float],
        warnings: list[str],
    ) -> SearchResponse | None:
        self._check_cancelled(PipelineStage.CACHE, options)
        start = time.perf_counter()
        try:
            cached = self.cache.get(key)
        except Exception as e:
            failure = StageFailureError(PipelineStage.CACHE, e)
            logger.warning(f"⚠ Cache read failed, continuing without cache: {e}")
            warnings.append(str(failure))
            cached = None
        finally:
            timings["cache_ms"] = (time.perf_counter() - start) * 1000

        if cached is not None:
            logger.info(f"✓ Cache HIT: {key[:16]}...")
        else:
            logger.debug(f"Cache miss: {key[:16]}...")
        return cached

    def _cache_set(
        self,
        key: str,
        response: SearchResponse,
        options: SearchOptions,
    ) -> str | None:
        """Store a response. Returns a warning instead of raising on failure."""
        try:
            self.cache.set(key, response, options.cache_ttl)
        except Exception as e:
            failure = StageFailureError(PipelineStage.CACHE, e)
            logger.warning(f"⚠ Cache write failed, result not cached: {e}")
            return str(failure)
        return None

    def _from_cache(
        self,
        cached: SearchResponse,
        search_id: str,
        timings: dict[str, float],
        warnings: list[str],
        start_time: float,
    ) -> SearchResponse:
        metadata = cached.metadata.model_copy(
            update={
                "search_id": search_id,
                "from_cache": True,
                "timings": PipelineTimings(
                    **timings, total_ms=(time.perf_counter() - start_time) * 1000
                ),
                "warnings": list(warnings),
            }
        )
        return cached.model_copy(update={"metadata": metadata})
