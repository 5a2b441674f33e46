"""ragkit: hybrid retrieval, rank fusion, reranking and context assembly."""

from ragkit.assembly import assemble_context, deduplicate, order_results
from ragkit.assembly.token_budget import apply_token_budget, estimate_tokens
from ragkit.cache import LRUCacheProvider, NoCacheProvider
from ragkit.config import Settings, get_settings
from ragkit.errors import PipelineStage, RagError
from ragkit.models import CancellationToken, Chunk, ChunkMetadata, SearchOptions, SearchResponse
from ragkit.retrieval import (
    BM25Index,
    CrossEncoderReranker,
    DenseRetriever,
    HybridRetriever,
    MMRReranker,
    SparseRetriever,
    reciprocal_rank_fusion,
)
from ragkit.services import SearchPipeline

__version__ = "0.1.0"

__all__ = [
    "BM25Index",
    "CancellationToken",
    "Chunk",
    "ChunkMetadata",
    "CrossEncoderReranker",
    "DenseRetriever",
    "HybridRetriever",
    "LRUCacheProvider",
    "MMRReranker",
    "NoCacheProvider",
    "PipelineStage",
    "RagError",
    "SearchOptions",
    "SearchPipeline",
    "SearchResponse",
    "Settings",
    "SparseRetriever",
    "apply_token_budget",
    "assemble_context",
    "deduplicate",
    "estimate_tokens",
    "get_settings",
    "order_results",
    "reciprocal_rank_fusion",
]
