"""Application configuration using Pydantic Settings."""

import math

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Retrieval and assembly settings loaded from environment variables.

    Every variable is prefixed with ``RAGKIT_`` (e.g. ``RAGKIT_BM25_K1``).
    Invalid values fail fast at construction with a clear error message.
    """

    # Logging Settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # Sparse Retrieval (BM25)
    bm25_k1: float = Field(
        default=1.2,
        ge=0.0,
        description="BM25 k1 parameter (term frequency saturation)",
    )
    bm25_b: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="BM25 b parameter (length normalization)",
    )
    bm25_min_doc_freq: int = Field(
        default=1,
        ge=1,
        description="Drop terms appearing in fewer documents than this",
    )
    bm25_max_doc_freq_ratio: float = Field(
        default=1.0,
        gt=0.0,
        le=1.0,
        description="Drop terms appearing in more than this fraction of documents",
    )

    # Hybrid Search
    rrf_k: float = Field(
        default=60.0,
        ge=0.0,
        description="RRF smoothing constant",
    )
    hybrid_alpha: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Dense/sparse balance: 1.0 dense only, 0.0 sparse only, otherwise fused",
    )
    candidate_multiplier: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Candidates fetched per source as a multiple of top_k before fusion",
    )
    include_confidence: bool = Field(
        default=False,
        description="Attach retriever agreement scores to fused results",
    )

    # Reranking
    enable_reranking: bool = Field(
        default=False,
        description="Rerank retrieved results (MMR or cross-encoder, whichever the pipeline holds)",
    )
    mmr_lambda: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="MMR relevance/diversity trade-off (1.0 pure relevance)",
    )
    reranker_model: str = Field(
        default="BAAI/bge-reranker-base",
        description="Cross-encoder model for relevance reranking",
    )
    reranker_device: str | None = Field(
        default=None,
        description="Device for the cross-encoder (cpu, cuda, mps; unset picks automatically)",
    )
    reranking_batch_size: int = Field(
        default=32,
        ge=1,
        le=128,
        description="Batch size for cross-encoder scoring",
    )
    cache_reranking_scores: bool = Field(
        default=True,
        description="Cache cross-encoder scores for repeated (query, chunk) pairs",
    )

    # Deduplication
    enable_deduplication: bool = Field(
        default=True,
        description="Remove near-duplicate chunks before assembly",
    )
    dedup_similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Jaccard similarity at or above which two chunks are duplicates",
    )
    dedup_keep_highest_score: bool = Field(
        default=True,
        description="Keep the higher-scoring member of a duplicate pair",
    )

    # Token Budget
    context_window_size: int = Field(
        default=8192,
        ge=1,
        description="Context window of the downstream model in tokens",
    )
    budget_percentage: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Share of the context window reserved for retrieved context",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=0,
        description="Explicit token budget, overrides window * percentage",
    )
    overflow_strategy: str = Field(
        default="drop",
        description="What to do with a chunk that does not fit (drop, truncate)",
    )

    # Ordering and Formatting
    ordering_strategy: str = Field(
        default="relevance",
        description="Chunk ordering strategy (relevance, sandwich, chronological)",
    )
    sandwich_start_count: int | None = Field(
        default=None,
        ge=1,
        description="Chunks placed at the start by sandwich ordering (default: half)",
    )
    output_format: str = Field(
        default="xml",
        description="Context format (xml, markdown)",
    )

    # Search Defaults
    default_top_k: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Number of results retrieved when the caller does not say",
    )
    default_min_score: float = Field(
        default=0.0,
        ge=0.0,
        description="Minimum retrieval score when the caller does not say",
    )

    # Caching
    enable_cache: bool = Field(
        default=True,
        description="Cache full search responses",
    )
    cache_max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of cached search responses",
    )
    cache_ttl: float = Field(
        default=300.0,
        gt=0.0,
        description="Search response cache TTL in seconds",
    )
    embedding_cache_size: int = Field(
        default=10000,
        ge=1,
        description="Maximum number of cached embeddings",
    )

    model_config = SettingsConfigDict(
        env_prefix="RAGKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                f"log_level must be one of {valid_levels}, got '{v}'"
            )
        return v_upper

    @field_validator("overflow_strategy")
    @classmethod
    def validate_overflow_strategy(cls, v: str) -> str:
        """Ensure overflow strategy is valid."""
        valid_strategies = {"drop", "truncate"}
        v_lower = v.lower()
        if v_lower not in valid_strategies:
            raise ValueError(
                f"overflow_strategy must be one of {valid_strategies}, got '{v}'"
            )
        return v_lower

    @field_validator("ordering_strategy")
    @classmethod
    def validate_ordering_strategy(cls, v: str) -> str:
        """Ensure ordering strategy is valid."""
        valid_strategies = {"relevance", "sandwich", "chronological"}
        v_lower = v.lower()
        if v_lower not in valid_strategies:
            raise ValueError(
                f"ordering_strategy must be one of {valid_strategies}, got '{v}'"
            )
        return v_lower

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Ensure output format is valid."""
        valid_formats = {"xml", "markdown"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(
                f"output_format must be one of {valid_formats}, got '{v}'"
            )
        return v_lower

    def model_post_init(self, __context) -> None:
        """Additional validation after model initialization."""
        if self.max_tokens is not None and self.max_tokens > self.context_window_size:
            raise ValueError(
                f"max_tokens ({self.max_tokens}) must not exceed "
                f"context_window_size ({self.context_window_size})"
            )

    @property
    def resolved_max_tokens(self) -> int:
        """Explicit max_tokens, or context window times budget percentage."""
        if self.max_tokens is not None:
            return self.max_tokens
        return math.floor(self.context_window_size * self.budget_percentage)


# Global settings instance, created lazily on first use
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance.

    Returns:
        Settings: The application settings

    Raises:
        ValueError: If settings validation fails
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Convenience function to reload settings (useful for testing)
def reload_settings() -> Settings:
    """Reload settings from environment.

    Returns:
        Settings: The reloaded application settings
    """
    global _settings
    _settings = Settings()
    return _settings
