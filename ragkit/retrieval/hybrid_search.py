"""Hybrid search combining dense and keyword retrieval with RRF fusion."""

import asyncio
import logging
from typing import Any

from ragkit.errors import ConfigError, InvalidInputError
from ragkit.models.search import (
    HybridScores,
    RankedItem,
    RankedList,
    RetrievalResult,
)
from ragkit.retrieval.confidence import calculate_confidence
from ragkit.retrieval.dense import DenseRetriever, SparseRetriever
from ragkit.retrieval.rrf import DEFAULT_RRF_K, normalize_rrf_scores, reciprocal_rank_fusion

logger = logging.getLogger(__name__)

DENSE = "dense"
SPARSE = "sparse"


def validate_alpha(alpha: float) -> float:
    if not 0.0 <= alpha <= 1.0:
        raise ConfigError(f"alpha must be between 0 and 1, got {alpha}")
    return alpha


class HybridRetriever:
    """Hybrid retrieval over a dense and a sparse retriever.

    ``alpha`` selects the sources: 1.0 queries only the dense retriever,
    0.0 only the sparse one. Any value in between queries both concurrently
    and merges them with unweighted Reciprocal Rank Fusion; RRF has no
    weighting knob, so intermediate values do not tilt the fusion.
    """

    def __init__(
        self,
        dense: DenseRetriever,
        sparse: SparseRetriever,
        alpha: float = 0.5,
        rrf_k: float = DEFAULT_RRF_K,
        candidate_multiplier: int = 3,
        include_confidence: bool = False,
    ):
        """Initialize hybrid retriever.

        Args:
            dense: Vector similarity retriever
            sparse: BM25 keyword retriever
            alpha: Default source balance in [0, 1]
            rrf_k: RRF smoothing constant
            candidate_multiplier: Candidates fetched per source, as a multiple of top_k
            include_confidence: Attach retriever agreement scores to fused results

        Raises:
            ConfigError: If alpha, rrf_k or candidate_multiplier is out of range
        """
        if rrf_k < 0:
            raise ConfigError(f"rrf_k must be non-negative, got {rrf_k}")
        if candidate_multiplier < 1:
            raise ConfigError(f"candidate_multiplier must be at least 1, got {candidate_multiplier}")

        self.dense = dense
        self.sparse = sparse
        self.alpha = validate_alpha(alpha)
        self.rrf_k = rrf_k
        self.candidate_multiplier = candidate_multiplier
        self.include_confidence = include_confidence

        logger.info(
            f"Initialized HybridRetriever: alpha={alpha}, rrf_k={rrf_k}, "
            f"candidate_multiplier={candidate_multiplier}"
        )

    @classmethod
    def from_settings(cls, dense: DenseRetriever, sparse: SparseRetriever, settings: Any) -> "HybridRetriever":
        return cls(
            dense,
            sparse,
            alpha=settings.hybrid_alpha,
            rrf_k=settings.rrf_k,
            candidate_multiplier=settings.candidate_multiplier,
            include_confidence=settings.include_confidence,
        )

    async def retrieve(
        self,
        query: str,
        top_k: int = 10,
        min_score: float | None = None,
        metadata_filter: dict[str, Any] | None = None,
        alpha: float | None = None,
    ) -> list[RetrievalResult]:
        """Perform hybrid search with RRF fusion.

        Args:
            query: Query text
            top_k: Number of results to return
            min_score: Minimum fused (normalized) score
            metadata_filter: Optional metadata filter applied by both sources
            alpha: Source balance override

        Returns:
            Results sorted by fused score descending
        """
        logger.info(f"→ Hybrid Search START - requesting top_{top_k}")
        logger.info(f"  Query: {query}")

        rankings = await self.gather_rankings(
            query, top_k=top_k, metadata_filter=metadata_filter, alpha=alpha
        )
        results = self.fuse_rankings(rankings, top_k=top_k, min_score=min_score)

        logger.info(
            f"✓ Hybrid Search COMPLETE: "
            f"{' + '.join(f'{len(v)} {k}' for k, v in rankings.items())} → {len(results)} results"
        )
        return results

    async def gather_rankings(
        self,
        query: str,
        top_k: int = 10,
        metadata_filter: dict[str, Any] | None = None,
        alpha: float | None = None,
    ) -> dict[str, list[RetrievalResult]]:
        """Query the sources selected by alpha.

        Returns:
            Mapping of source name ("dense", "sparse") to its ranked results.
            At alpha 1.0 or 0.0 only one source is present.

        Raises:
            InvalidInputError: If top_k < 1
            ConfigError: If alpha is out of range
        """
        if top_k < 1:
            raise InvalidInputError(f"top_k must be at least 1, got {top_k}")
        effective_alpha = validate_alpha(self.alpha if alpha is None else alpha)

        if effective_alpha == 1.0:
            return {DENSE: await self.dense.retrieve(query, top_k=top_k, metadata_filter=metadata_filter)}
        if effective_alpha == 0.0:
            return {SPARSE: await self.sparse.retrieve(query, top_k=top_k, metadata_filter=metadata_filter)}

        candidate_k = top_k * self.candidate_multiplier
        # Sources share no state, so they run concurrently
        dense_results, sparse_results = await asyncio.gather(
            self.dense.retrieve(query, top_k=candidate_k, metadata_filter=metadata_filter),
            self.sparse.retrieve(query, top_k=candidate_k, metadata_filter=metadata_filter),
        )
        return {DENSE: dense_results, SPARSE: sparse_results}

    def fuse_rankings(
        self,
        rankings: dict[str, list[RetrievalResult]],
        top_k: int = 10,
        min_score: float | None = None,
    ) -> list[RetrievalResult]:
        """Combine source rankings into one list.

        A single source passes through unfused; its score becomes the fused
        score and the missing signal is 0. Two sources are merged with RRF
        and normalized by the best possible RRF score.
        """
        if len(rankings) == 1:
            (source, results), = rankings.items()
            fused = [self._single_source_result(source, result, rank) for rank, result in enumerate(results, 1)]
        else:
            fused = self._fuse(rankings)

        if min_score is not None:
            fused = [result for result in fused if result.score >= min_score]
        return fused[:top_k]

    def _single_source_result(self, source: str, result: RetrievalResult, rank: int) -> RetrievalResult:
        if source == DENSE:
            scores = HybridScores(dense=result.score, sparse=0.0, fused=result.score)
            return result.model_copy(update={"scores": scores, "dense_rank": rank, "sparse_rank": None})
        scores = HybridScores(dense=0.0, sparse=result.score, fused=result.score)
        return result.model_copy(update={"scores": scores, "sparse_rank": rank, "dense_rank": None})

    def _fuse(self, rankings: dict[str, list[RetrievalResult]]) -> list[RetrievalResult]:
        by_id: dict[str, RetrievalResult] = {}
        ranked_lists = []
        for source, results in rankings.items():
            items = []
            for rank, result in enumerate(results, 1):
                # Prefer the dense copy, it may carry the embedding
                by_id.setdefault(result.id, result)
                items.append(RankedItem(id=result.id, rank=rank, score=result.score, chunk=result.chunk))
            ranked_lists.append(RankedList(name=source, items=items))

        rrf_results = reciprocal_rank_fusion(ranked_lists, k=self.rrf_k)
        normalized = normalize_rrf_scores(rrf_results, num_lists=len(ranked_lists), k=self.rrf_k)

        fused: list[RetrievalResult] = []
        for rrf_result in normalized:
            dense = rrf_result.contribution_for(DENSE)
            sparse = rrf_result.contribution_for(SPARSE)
            source = by_id[rrf_result.id]
            confidence = (
                calculate_confidence(rrf_result, len(ranked_lists), len(normalized))
                if self.include_confidence
                else None
            )
            fused.append(
                RetrievalResult(
                    id=rrf_result.id,
                    chunk=source.chunk,
                    score=rrf_result.score,
                    scores=HybridScores(
                        dense=dense.score if dense and dense.score is not None else 0.0,
                        sparse=sparse.score if sparse and sparse.score is not None else 0.0,
                        fused=rrf_result.score,
                    ),
                    dense_rank=dense.rank if dense else None,
                    sparse_rank=sparse.rank if sparse else None,
                    embedding=source.embedding,
                    confidence=confidence,
                )
            )

        logger.info(f"  RRF Fusion - combined to {len(fused)} unique results:")
        for i, res in enumerate(fused[:5], 1):  # Log top 5
            logger.info(
                f"    {i}. RRF={res.score:.4f} (dense_rank={res.dense_rank}, "
                f"sparse_rank={res.sparse_rank}) | id={res.id}"
            )
        if len(fused) > 5:
            logger.info(f"    ... and {len(fused) - 5} more results")

        return fused
