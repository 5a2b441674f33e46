"""Search request and response models for the pipeline entry point."""

import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ragkit.models.context import AssembledContext
from ragkit.models.search import RerankerResult


class CancellationToken:
    """Cooperative cancellation flag checked at pipeline stage boundaries.

    Safe to cancel from another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class EnhancementResult(BaseModel):
    """Output of an external query enhancer."""

    model_config = ConfigDict(frozen=True)

    original: str
    enhanced: list[str] = Field(default_factory=list)
    strategy: str = "none"


class SearchOptions(BaseModel):
    """Per-call search options.

    Fields left as ``None`` fall back to the configured defaults (see
    :meth:`with_defaults`). Range checks on ``alpha``, ``mmr_lambda`` and
    ``similarity_threshold`` are done by the stages that use them so that
    they surface as configuration errors.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    top_k: int | None = Field(default=None, ge=1, description="Number of results to retrieve")
    min_score: float | None = Field(default=None, description="Minimum retrieval score")
    ordering: str | None = Field(default=None, description="Ordering strategy name")
    sandwich_start_count: int | None = Field(default=None, ge=1)
    max_tokens: int | None = Field(default=None, ge=0, description="Token budget for the context")
    overflow_strategy: str | None = Field(default=None, description="drop or truncate")
    use_cache: bool = Field(default=True, description="Read and write the result cache")
    cache_ttl: float | None = Field(default=None, gt=0, description="Result cache TTL in seconds")
    alpha: float | None = Field(default=None, description="Dense/sparse balance for hybrid retrieval")
    filter: dict[str, Any] | None = Field(default=None, description="Metadata filter")
    rerank: bool | None = None
    mmr_lambda: float | None = None
    deduplicate: bool | None = None
    similarity_threshold: float | None = None
    output_format: str | None = None
    enhance: bool = True
    preamble: str | None = None
    postamble: str | None = None
    include_scores: bool = False
    cancel_token: CancellationToken | None = Field(default=None, exclude=True)

    def with_defaults(self, settings: Any) -> "SearchOptions":
        """Fill unset fields from a Settings instance."""
        defaults = {
            "top_k": settings.default_top_k,
            "min_score": settings.default_min_score,
            "ordering": settings.ordering_strategy,
            "sandwich_start_count": settings.sandwich_start_count,
            "max_tokens": settings.resolved_max_tokens,
            "overflow_strategy": settings.overflow_strategy,
            "cache_ttl": settings.cache_ttl,
            "alpha": settings.hybrid_alpha,
            "rerank": settings.enable_reranking,
            "mmr_lambda": settings.mmr_lambda,
            "deduplicate": settings.enable_deduplication,
            "similarity_threshold": settings.dedup_similarity_threshold,
            "output_format": settings.output_format,
        }
        update = {key: value for key, value in defaults.items() if getattr(self, key) is None}
        return self.model_copy(update=update)


class PipelineTimings(BaseModel):
    """Wall-clock duration of each stage in milliseconds.

    Stages that did not run are ``None``.
    """

    model_config = ConfigDict(frozen=True)

    cache_ms: float | None = None
    enhancement_ms: float | None = None
    retrieval_ms: float | None = None
    fusion_ms: float | None = None
    reranking_ms: float | None = None
    deduplication_ms: float | None = None
    ordering_ms: float | None = None
    budget_ms: float | None = None
    formatting_ms: float | None = None
    total_ms: float = 0.0


class SearchMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_id: str
    effective_query: str
    all_queries: list[str] = Field(default_factory=list)
    enhancement: EnhancementResult | None = None
    retrieved_count: int = 0
    reranked_count: int = 0
    deduplicated_count: int = 0
    dropped_count: int = 0
    from_cache: bool = False
    timings: PipelineTimings = Field(default_factory=PipelineTimings)
    warnings: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Assembled context plus pipeline metadata."""

    model_config = ConfigDict(frozen=True)

    context: AssembledContext
    results: list[RerankerResult] = Field(default_factory=list)
    metadata: SearchMetadata
