"""Error taxonomy for retrieval, fusion, reranking and context assembly.

Validation errors (bad input, bad configuration) are raised directly by the
component that detects them. Failures of external collaborators (embedding
providers, vector stores, query enhancers, cache backends) are wrapped by the
search pipeline in :class:`StageFailureError`, tagged with the stage that was
running and with the original exception preserved as ``__cause__``.
"""

from enum import Enum


class PipelineStage(str, Enum):
    """Named stages of the search pipeline."""

    CACHE = "cache"
    ENHANCEMENT = "enhancement"
    RETRIEVAL = "retrieval"
    FUSION = "fusion"
    RERANKING = "reranking"
    DEDUPLICATION = "deduplication"
    ORDERING = "ordering"
    BUDGET = "budget"
    FORMATTING = "formatting"

    @property
    def category(self) -> str:
        """Coarse stage group used when reporting failures.

        Deduplication, ordering, budget and formatting all belong to context
        assembly; fusion belongs to retrieval.
        """
        if self in _ASSEMBLY_STAGES:
            return "assembly"
        if self is PipelineStage.FUSION:
            return "retrieval"
        return self.value


_ASSEMBLY_STAGES = frozenset(
    {
        PipelineStage.DEDUPLICATION,
        PipelineStage.ORDERING,
        PipelineStage.BUDGET,
        PipelineStage.FORMATTING,
    }
)


class RagError(Exception):
    """Base class for all errors raised by ragkit.

    Attributes:
        message: Human readable description
        stage: Pipeline stage the error surfaced in, when known
    """

    kind = "rag_error"

    def __init__(self, message: str, *, stage: PipelineStage | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage is not None:
            return f"[{self.stage.value}] {self.message}"
        return self.message


class InvalidInputError(RagError, ValueError):
    """Empty query, malformed options or otherwise unusable input."""

    kind = "invalid_input"


class IndexNotBuiltError(RagError, RuntimeError):
    """A sparse index was queried before ``build_index`` was called."""

    kind = "index_not_built"


class DimensionMismatchError(RagError, ValueError):
    """Two embedding vectors have different lengths."""

    kind = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, *, stage: PipelineStage | None = None):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            stage=stage,
        )
        self.expected = expected
        self.actual = actual


class EmbeddingRequiredError(RagError):
    """MMR reranking needs vectors but none are attached and no provider is set."""

    kind = "embedding_required"


class ConfigError(RagError, ValueError):
    """Out-of-range parameter or unrecognized strategy name."""

    kind = "config_error"


class RegistryErrorCode(str, Enum):
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    NOT_FOUND = "NOT_FOUND"


class RegistryError(ConfigError):
    """Duplicate registration or lookup of an unknown name in a Registry."""

    kind = "registry_error"

    def __init__(self, code: RegistryErrorCode, registry: str, name: str):
        if code is RegistryErrorCode.ALREADY_REGISTERED:
            message = f"{registry} '{name}' is already registered"
        else:
            message = f"{registry} '{name}' is not registered"
        super().__init__(message)
        self.code = code
        self.registry = registry
        self.name = name


class TokenBudgetExceededError(RagError):
    """No chunk fits the token budget under the 'drop' overflow strategy."""

    kind = "token_budget_exceeded"

    def __init__(self, max_tokens: int, smallest_chunk_tokens: int):
        super().__init__(
            f"No chunk fits within the token budget of {max_tokens} "
            f"(smallest chunk needs {smallest_chunk_tokens} tokens)"
        )
        self.max_tokens = max_tokens
        self.smallest_chunk_tokens = smallest_chunk_tokens


class StageFailureError(RagError):
    """A collaborator failed while a pipeline stage was running.

    The underlying exception is available as ``cause`` and ``__cause__``.
    """

    kind = "stage_failure"

    def __init__(self, stage: PipelineStage, cause: BaseException):
        super().__init__(f"{stage.category} failed: {cause}", stage=stage)
        self.cause = cause

    @property
    def category(self) -> str:
        return self.stage.category


class AbortedError(RagError):
    """Cancellation was observed at a stage boundary."""

    kind = "aborted"

    def __init__(self, stage: PipelineStage, reason: str | None = None):
        message = f"Search aborted before {stage.value}"
        if reason:
            message += f": {reason}"
        super().__init__(message, stage=stage)
        self.reason = reason
