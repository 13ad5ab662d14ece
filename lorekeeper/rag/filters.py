"""
Metadata predicate language used by the vector store.

A filter maps metadata keys to conditions, AND-combined. A condition is
either a plain value (exact equality) or a mapping of operators::

    {"project_id": "p1", "index": {"$lt": 5}}
    {"role": {"$in": ["protagonist", "antagonist"]}}

Operator names follow the ``$eq``/``$lt`` convention Chroma's ``where``
clauses use, so a future backend can pass filters through unchanged.
"""

from __future__ import annotations

import operator
from collections.abc import Mapping
from typing import Any, Callable

from lorekeeper.rag.errors import InvalidFilterError

_ORDERED: dict[str, Callable[[Any, Any], bool]] = {
    "$lt": operator.lt,
    "$lte": operator.le,
    "$gt": operator.gt,
    "$gte": operator.ge,
}

OPERATORS = frozenset({"$eq", "$ne", "$in", "$nin", *_ORDERED})

_MISSING = object()


def _equal(actual: Any, expected: Any) -> bool:
    # bool is an int subclass; True must not match 1
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _ordered(op: str, actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return False
    try:
        return bool(_ORDERED[op](actual, expected))
    except TypeError:
        return False


def _members(key: str, op: str, value: Any) -> list[Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise InvalidFilterError(key, op, reason="expected a list of values for")
    return list(value)


def validate_filter(filter_: Mapping[str, Any] | None) -> None:
    """Raise InvalidFilterError if the filter uses an unknown operator or malformed operand."""
    if not filter_:
        return
    for key, condition in filter_.items():
        if not isinstance(condition, Mapping):
            continue
        if not condition:
            raise InvalidFilterError(key, "{}", reason="empty condition")
        for op, value in condition.items():
            if op not in OPERATORS:
                raise InvalidFilterError(key, op)
            if op in ("$in", "$nin"):
                _members(key, op, value)


def _match_condition(key: str, actual: Any, condition: Any) -> bool:
    if not isinstance(condition, Mapping):
        return _equal(actual, condition)

    for op, expected in condition.items():
        if op == "$eq":
            ok = _equal(actual, expected)
        elif op == "$ne":
            ok = not _equal(actual, expected)
        elif op == "$in":
            ok = any(_equal(actual, v) for v in _members(key, op, expected))
        elif op == "$nin":
            ok = not any(_equal(actual, v) for v in _members(key, op, expected))
        elif op in _ORDERED:
            ok = _ordered(op, actual, expected)
        else:
            raise InvalidFilterError(key, op)
        if not ok:
            return False
    return True


def matches_filter(metadata: Mapping[str, Any], filter_: Mapping[str, Any] | None) -> bool:
    """
    Check whether a document's metadata satisfies a filter.

    A document that lacks a filtered key never matches, whatever the operator.
    """
    if not filter_:
        return True
    for key, condition in filter_.items():
        actual = metadata.get(key, _MISSING)
        if actual is _MISSING:
            return False
        if not _match_condition(key, actual, condition):
            return False
    return True
