"""Metadata filter evaluation shared by the local vector indexes.

Filters use the document-store style understood by hosted vector
databases::

    {"user_id": "u1"}                               # equality
    {"importance": {"$gte": 3}}                     # comparison
    {"category": {"$in": ["preference", "goal"]}}   # membership

All clauses of a filter must hold for a record to match.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda value, operand: value == operand,
    "$ne": lambda value, operand: value != operand,
    "$gt": lambda value, operand: value is not None and value > operand,
    "$gte": lambda value, operand: value is not None and value >= operand,
    "$lt": lambda value, operand: value is not None and value < operand,
    "$lte": lambda value, operand: value is not None and value <= operand,
    "$in": lambda value, operand: value in operand,
    "$nin": lambda value, operand: value not in operand,
}


def validate_filter(filter: Optional[dict[str, Any]]) -> None:
    """Raise ValueError if ``filter`` uses an unknown operator."""
    if not filter:
        return
    for field, condition in filter.items():
        if isinstance(condition, dict):
            unknown = set(condition) - set(_OPERATORS)
            if unknown:
                raise ValueError(
                    f"Unsupported filter operator(s) {sorted(unknown)} on '{field}'"
                )


def matches_filter(metadata: dict[str, Any], filter: Optional[dict[str, Any]]) -> bool:
    """Return True if ``metadata`` satisfies every clause of ``filter``.

    Args:
        metadata: Record metadata.
        filter: Filter mapping, or None to match everything.

    Returns:
        Whether the record matches.
    """
    if not filter:
        return True
    for field, condition in filter.items():
        value = metadata.get(field)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                try:
                    if not _OPERATORS[op](value, operand):
                        return False
                except TypeError:
                    # Incomparable types never match
                    return False
        elif value != condition:
            return False
    return True


__all__ = ["matches_filter", "validate_filter"]
