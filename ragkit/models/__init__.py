"""Pydantic models for the retrieval and context assembly pipeline."""

from ragkit.models.chunk import Chunk, ChunkMetadata
from ragkit.models.context import (
    AssembledContext,
    BudgetResult,
    DeduplicationResult,
    DuplicateRecord,
    SimilarityAnalysis,
    SourceAttribution,
)
from ragkit.models.query import (
    CancellationToken,
    EnhancementResult,
    PipelineTimings,
    SearchMetadata,
    SearchOptions,
    SearchResponse,
)
from ragkit.models.search import (
    ConfidenceScore,
    HybridScores,
    RankedItem,
    RankedList,
    RerankerResult,
    RerankerScores,
    RetrievalResult,
    RRFContribution,
    RRFResult,
)

__all__ = [
    # Chunk models
    "Chunk",
    "ChunkMetadata",
    # Search models
    "RankedItem",
    "RankedList",
    "HybridScores",
    "ConfidenceScore",
    "RetrievalResult",
    "RRFContribution",
    "RRFResult",
    "RerankerScores",
    "RerankerResult",
    # Context models
    "SourceAttribution",
    "AssembledContext",
    "BudgetResult",
    "DeduplicationResult",
    "DuplicateRecord",
    "SimilarityAnalysis",
    # Query models
    "CancellationToken",
    "EnhancementResult",
    "SearchOptions",
    "PipelineTimings",
    "SearchMetadata",
    "SearchResponse",
]
