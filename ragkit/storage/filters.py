"""Metadata filters shared by the vector store and the sparse index.

A filter maps a field name to either a literal (equality) or a single
operator: ``{"$in": [...]}``, ``{"$ne": x}``, ``{"$gt": n}``, ``{"$gte": n}``,
``{"$lt": n}``, ``{"$lte": n}``. All conditions must hold. ``document_id``
refers to the chunk's document; other names are looked up in its metadata,
typed fields first, then the ``extra`` side-map.
"""

from typing import Any

from ragkit.errors import InvalidInputError
from ragkit.models.chunk import Chunk

FILTER_OPERATORS = frozenset({"$in", "$ne", "$gt", "$gte", "$lt", "$lte"})

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field_value(chunk: Chunk, key: str) -> Any:
    if key == "document_id":
        return chunk.document_id if chunk.document_id is not None else _MISSING
    return chunk.metadata.get(key, _MISSING)


def _evaluate(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$in":
        if not isinstance(operand, (list, tuple, set, frozenset)):
            raise InvalidInputError("$in filter expects a list of values")
        return value is not _MISSING and value in operand
    if operator == "$ne":
        return value is _MISSING or value != operand

    # Numeric comparisons only match numeric values
    if not _is_number(value) or not _is_number(operand):
        return False
    if operator == "$gt":
        return value > operand
    if operator == "$gte":
        return value >= operand
    if operator == "$lt":
        return value < operand
    return value <= operand


def matches_filter(chunk: Chunk, metadata_filter: dict[str, Any] | None) -> bool:
    """Check a chunk against a metadata filter.

    Args:
        chunk: Chunk to test
        metadata_filter: Filter conditions (None or empty matches everything)

    Returns:
        True if every condition holds

    Raises:
        InvalidInputError: On an unknown operator or malformed condition
    """
    if not metadata_filter:
        return True

    for key, condition in metadata_filter.items():
        value = _field_value(chunk, key)
        if isinstance(condition, dict):
            if len(condition) != 1:
                raise InvalidInputError(f"Filter on '{key}' must use exactly one operator")
            operator, operand = next(iter(condition.items()))
            if operator not in FILTER_OPERATORS:
                raise InvalidInputError(f"Unknown filter operator '{operator}' on '{key}'")
            if not _evaluate(value, operator, operand):
                return False
        elif value is _MISSING or value != condition:
            return False

    return True
