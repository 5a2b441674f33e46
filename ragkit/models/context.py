"""Models produced by the context assembly stages."""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ragkit.models.chunk import Chunk

T = TypeVar("T")


class SourceAttribution(BaseModel):
    """Citation for one chunk of the assembled context."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1, description="1-indexed position in the final output")
    chunk_id: str
    document_id: str | None = None
    source: str | None = None
    location: str | None = None
    score: float
    section: str | None = None


class AssembledContext(BaseModel):
    """Final, formatted, token-bounded context."""

    model_config = ConfigDict(frozen=True)

    content: str
    estimated_tokens: int = Field(ge=0)
    chunk_count: int = Field(ge=0)
    deduplicated_count: int = Field(default=0, ge=0)
    dropped_count: int = Field(default=0, ge=0)
    sources: list[SourceAttribution] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)


@dataclass(frozen=True)
class DuplicateRecord(Generic[T]):
    """A removed near-duplicate and the item it duplicated."""

    removed: T
    kept_id: str
    similarity: float


@dataclass(frozen=True)
class DeduplicationResult(Generic[T]):
    unique: list[T]
    duplicates: list[DuplicateRecord[T]] = field(default_factory=list)
    comparisons: int = 0


@dataclass(frozen=True)
class BudgetResult(Generic[T]):
    """Outcome of applying a token budget.

    Every input item ends up in exactly one of ``included`` or ``dropped``.
    A truncated item appears in ``included`` with its shortened content.
    """

    included: list[T]
    dropped: list[T]
    used_tokens: int
    remaining_tokens: int
    was_truncated: bool = False


@dataclass(frozen=True)
class SimilarityAnalysis:
    """Pairwise Jaccard statistics over a result set."""

    comparisons: int
    average_similarity: float
    max_similarity: float
    min_similarity: float
    pairs_above_threshold: int
    threshold: float
