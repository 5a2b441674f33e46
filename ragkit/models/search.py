"""Search result models used across retrieval, fusion and reranking."""

from pydantic import BaseModel, ConfigDict, Field

from ragkit.models.chunk import Chunk


class RankedItem(BaseModel):
    """One entry of a single retriever's ranked output."""

    model_config = ConfigDict(frozen=True)

    id: str
    rank: int = Field(ge=1, description="1-indexed position within its source list")
    score: float = Field(default=0.0, description="Source-native score, not comparable across sources")
    chunk: Chunk | None = None


class RankedList(BaseModel):
    """A named ranked list, one input to rank fusion."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    items: list[RankedItem] = Field(default_factory=list)


class HybridScores(BaseModel):
    """Per-signal score breakdown of a retrieval result."""

    model_config = ConfigDict(frozen=True)

    dense: float | None = None
    sparse: float | None = None
    fused: float | None = None


class ConfidenceScore(BaseModel):
    """How strongly independent retrievers agree on a fused result."""

    model_config = ConfigDict(frozen=True)

    overall: float = Field(ge=0.0, le=1.0)
    rank_agreement: float = Field(ge=0.0, le=1.0)
    score_consistency: float = Field(ge=0.0, le=1.0)
    signal_count: int = Field(ge=0)
    multi_signal_presence: bool
    signals: dict[str, float] = Field(default_factory=dict)


class RetrievalResult(BaseModel):
    """Output of the retrieval and fusion stages.

    Attributes:
        id: Chunk identifier
        chunk: The retrieved chunk
        score: Ranking score (higher is better)
        scores: Dense/sparse/fused breakdown for hybrid retrieval
        dense_rank: 1-indexed rank in the dense list, if present there
        sparse_rank: 1-indexed rank in the sparse list, if present there
        embedding: Chunk embedding when the source returned one
        confidence: Retriever agreement, when requested
    """

    model_config = ConfigDict(frozen=True)

    id: str
    chunk: Chunk
    score: float
    scores: HybridScores | None = None
    dense_rank: int | None = Field(default=None, ge=1)
    sparse_rank: int | None = Field(default=None, ge=1)
    embedding: list[float] | None = None
    confidence: ConfidenceScore | None = None


class RRFContribution(BaseModel):
    """One list's share of an item's fused score."""

    model_config = ConfigDict(frozen=True)

    list_name: str
    rank: int | None = None
    score: float | None = None
    contribution: float = 0.0


class RRFResult(BaseModel):
    """Fused item with full per-list provenance."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    contributions: list[RRFContribution]
    best_rank: int = Field(ge=1)
    item: RankedItem

    def contribution_for(self, list_name: str) -> RRFContribution | None:
        for contribution in self.contributions:
            if contribution.list_name == list_name:
                return contribution
        return None


class RerankerScores(BaseModel):
    """Score components recorded by a reranker."""

    model_config = ConfigDict(frozen=True)

    original_score: float
    reranker_score: float
    relevance_score: float | None = None
    diversity_penalty: float | None = None


class RerankerResult(BaseModel):
    """A retrieval result after reranking.

    ``original_rank`` and ``new_rank`` are 1-indexed; ``new_rank`` always
    equals the position in the list it was returned in.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    chunk: Chunk
    score: float
    original_rank: int = Field(ge=1)
    new_rank: int = Field(ge=1)
    scores: RerankerScores
    retrieval_scores: HybridScores | None = None
    embedding: list[float] | None = None

    @classmethod
    def from_retrieval(cls, result: RetrievalResult, rank: int) -> "RerankerResult":
        """Wrap a retrieval result without reordering it."""
        return cls(
            id=result.id,
            chunk=result.chunk,
            score=result.score,
            original_rank=rank,
            new_rank=rank,
            scores=RerankerScores(original_score=result.score, reranker_score=result.score),
            retrieval_scores=result.scores,
            embedding=result.embedding,
        )
