"""Tests for the error taxonomy."""

import pytest

from ragkit.errors import (
    AbortedError,
    ConfigError,
    DimensionMismatchError,
    InvalidInputError,
    PipelineStage,
    RagError,
    RegistryError,
    RegistryErrorCode,
    StageFailureError,
    TokenBudgetExceededError,
)


class TestPipelineStage:
    @pytest.mark.parametrize(
        "stage,category",
        [
            (PipelineStage.CACHE, "cache"),
            (PipelineStage.ENHANCEMENT, "enhancement"),
            (PipelineStage.RETRIEVAL, "retrieval"),
            (PipelineStage.FUSION, "retrieval"),
            (PipelineStage.RERANKING, "reranking"),
            (PipelineStage.DEDUPLICATION, "assembly"),
            (PipelineStage.ORDERING, "assembly"),
            (PipelineStage.BUDGET, "assembly"),
            (PipelineStage.FORMATTING, "assembly"),
        ],
    )
    def test_category(self, stage, category):
        assert stage.category == category


class TestErrors:
    def test_validation_errors_are_value_errors(self):
        assert issubclass(InvalidInputError, ValueError)
        assert issubclass(ConfigError, ValueError)
        assert issubclass(RegistryError, ConfigError)

    def test_stage_prefix_in_message(self):
        error = InvalidInputError("bad query", stage=PipelineStage.RETRIEVAL)

        assert str(error) == "[retrieval] bad query"
        assert str(InvalidInputError("bad query")) == "bad query"

    def test_stage_failure_keeps_cause(self):
        cause = ConnectionError("refused")

        error = StageFailureError(PipelineStage.FUSION, cause)

        assert error.cause is cause
        assert error.category == "retrieval"
        assert error.kind == "stage_failure"
        assert str(error) == "[fusion] retrieval failed: refused"
        assert isinstance(error, RagError)

    def test_aborted(self):
        error = AbortedError(PipelineStage.ORDERING, "timeout")

        assert error.stage is PipelineStage.ORDERING
        assert "Search aborted before ordering: timeout" in str(error)
        assert AbortedError(PipelineStage.CACHE).reason is None

    def test_dimension_mismatch(self):
        error = DimensionMismatchError(expected=3, actual=4)

        assert (error.expected, error.actual) == (3, 4)
        assert "expected 3, got 4" in str(error)

    def test_token_budget_exceeded(self):
        error = TokenBudgetExceededError(max_tokens=10, smallest_chunk_tokens=25)

        assert "10" in str(error) and "25" in str(error)

    def test_registry_error_codes(self):
        duplicate = RegistryError(RegistryErrorCode.ALREADY_REGISTERED, "formatter", "xml")
        missing = RegistryError(RegistryErrorCode.NOT_FOUND, "formatter", "html")

        assert "already registered" in str(duplicate)
        assert "not registered" in str(missing)
        assert missing.name == "html"
