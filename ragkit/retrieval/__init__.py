"""Retrieval, fusion and reranking components."""

from ragkit.retrieval.bm25_index import BM25Index
from ragkit.retrieval.confidence import calculate_confidence
from ragkit.retrieval.dense import DenseRetriever, SparseRetriever
from ragkit.retrieval.hybrid_search import HybridRetriever
from ragkit.retrieval.reranker import CrossEncoderReranker, MMRReranker, Reranker
from ragkit.retrieval.rrf import (
    max_rrf_score,
    normalize_rrf_scores,
    reciprocal_rank_fusion,
    rrf_score,
)

__all__ = [
    "BM25Index",
    "CrossEncoderReranker",
    "DenseRetriever",
    "HybridRetriever",
    "MMRReranker",
    "Reranker",
    "SparseRetriever",
    "calculate_confidence",
    "max_rrf_score",
    "normalize_rrf_scores",
    "reciprocal_rank_fusion",
    "rrf_score",
]
