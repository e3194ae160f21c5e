from __future__ import annotations

"""Metadata filter expressions and their backend translations."""

import json
from dataclasses import dataclass
from typing import Any, Mapping, Union

Scalar = Union[str, int, float, bool]


@dataclass(frozen=True)
class Eq:
    """Metadata key equals value."""
    key: str
    value: Scalar


@dataclass(frozen=True)
class Range:
    """Metadata key within inclusive bounds; either bound may be open."""
    key: str
    gte: Scalar | None = None
    lte: Scalar | None = None


@dataclass(frozen=True)
class And:
    """All clauses match."""
    clauses: tuple["Filter", ...]


@dataclass(frozen=True)
class Or:
    """At least one clause matches."""
    clauses: tuple["Filter", ...]


Filter = Union[Eq, Range, And, Or]


def all_of(*clauses: Filter | None) -> Filter | None:
    """Combine clauses with AND, dropping empties and unwrapping singletons."""
    kept = tuple(clause for clause in clauses if clause is not None)
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return And(kept)


def any_of(*clauses: Filter | None) -> Filter | None:
    """Combine clauses with OR, dropping empties and unwrapping singletons."""
    kept = tuple(clause for clause in clauses if clause is not None)
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return Or(kept)


def _literal(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value), ensure_ascii=False)


def _field(key: str) -> str:
    return f"metadata[{json.dumps(key)}]"


def to_milvus_expr(expression: Filter | None) -> str:
    """Translate a filter into a Milvus boolean expression over the JSON metadata field."""
    if expression is None:
        return ""
    if isinstance(expression, Eq):
        return f"{_field(expression.key)} == {_literal(expression.value)}"
    if isinstance(expression, Range):
        parts: list[str] = []
        if expression.gte is not None:
            parts.append(f"{_field(expression.key)} >= {_literal(expression.gte)}")
        if expression.lte is not None:
            parts.append(f"{_field(expression.key)} <= {_literal(expression.lte)}")
        if not parts:
            return f"exists {_field(expression.key)}"
        return " and ".join(parts)
    if isinstance(expression, (And, Or)):
        joiner = " and " if isinstance(expression, And) else " or "
        rendered = [to_milvus_expr(clause) for clause in expression.clauses]
        return joiner.join(f"({part})" for part in rendered if part)
    raise TypeError(f"Unsupported filter: {expression!r}")


def _comparable(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return True
    return isinstance(left, str) and isinstance(right, str)


def _equals(actual: Any, expected: Scalar) -> bool:
    if actual is None:
        return False
    if _comparable(actual, expected):
        return actual == expected
    return str(actual) == str(expected)


def matches(expression: Filter | None, metadata: Mapping[str, Any]) -> bool:
    """Evaluate a filter against a metadata mapping."""
    if expression is None:
        return True
    if isinstance(expression, Eq):
        return _equals(metadata.get(expression.key), expression.value)
    if isinstance(expression, Range):
        actual = metadata.get(expression.key)
        if actual is None:
            return False
        if expression.gte is not None:
            if not _comparable(actual, expression.gte) or actual < expression.gte:
                return False
        if expression.lte is not None:
            if not _comparable(actual, expression.lte) or actual > expression.lte:
                return False
        return True
    if isinstance(expression, And):
        return all(matches(clause, metadata) for clause in expression.clauses)
    if isinstance(expression, Or):
        return any(matches(clause, metadata) for clause in expression.clauses)
    raise TypeError(f"Unsupported filter: {expression!r}")
