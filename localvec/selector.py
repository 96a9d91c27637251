"""
Similarity scoring and metadata filtering.

Pure functions: nothing here holds state, performs I/O, or mutates its
arguments.

Filters use a small Mongo-style predicate language:

    {"category": "food"}                          # exact equality
    {"price": {"$gte": 10, "$lt": 20}}            # numeric comparison
    {"tag": {"$in": ["a", "b"]}}                  # exact membership
    {"$or": [{"category": "food"}, {"category": "drink"}]}

A field that is absent from the metadata, or is None, fails its predicate.
"""

import math
from collections.abc import Sequence
from typing import Any, Optional

from .errors import ValidationError
from .types import Metadata, MetadataFilter


def normalize(vector: Sequence[float]) -> float:
    """Euclidean length of a vector."""
    return math.sqrt(sum(x * x for x in vector))


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    # zip stops at the shorter vector
    return sum(x * y for x, y in zip(a, b))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero length."""
    norm_a = normalize(a)
    norm_b = normalize(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return _dot(a, b) / (norm_a * norm_b)


def normalized_cosine_similarity(
    a: Sequence[float], norm_a: float, b: Sequence[float], norm_b: float
) -> float:
    """Cosine similarity using precomputed norms."""
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return _dot(a, b) / (norm_a * norm_b)


# -----------------------------------------------------------------------------
# Metadata filtering
# -----------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equals(a: Any, b: Any) -> bool:
    # True == 1 in Python; stored booleans only match booleans
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    return a == b


def _compare(op: str, value: Any, operand: Any) -> bool:
    if not _is_number(value) or not _is_number(operand):
        return False
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    return value <= operand


def _membership(op: str, value: Any, operand: Any) -> bool:
    if not isinstance(operand, (list, tuple)):
        raise ValidationError(f"{op} requires a list operand, got {type(operand).__name__}")
    found = any(_equals(value, candidate) for candidate in operand)
    return found if op == "$in" else not found


def _match_field(value: Any, field_filter: dict) -> bool:
    for op, operand in field_filter.items():
        if op == "$eq":
            ok = _equals(value, operand)
        elif op == "$ne":
            ok = not _equals(value, operand)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(op, value, operand)
        elif op in ("$in", "$nin"):
            ok = _membership(op, value, operand)
        else:
            raise ValidationError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


def select(metadata: Metadata, filter: Optional[MetadataFilter]) -> bool:
    """
    Evaluate a metadata filter.

    Args:
        metadata: The item's metadata
        filter: Predicate; None or {} matches everything

    Returns:
        True if the metadata satisfies every clause of the filter

    Raises:
        ValidationError: If the filter uses an unknown operator
    """
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$and":
            if not all(select(metadata, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(select(metadata, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise ValidationError(f"Unsupported filter operator: {key}")
        else:
            value = metadata.get(key)
            if value is None:
                return False
            if isinstance(condition, dict):
                if not _match_field(value, condition):
                    return False
            elif not _equals(value, condition):
                return False
    return True
