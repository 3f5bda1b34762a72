"""Backend-neutral predicate tree handed to Cursor.filter().

Default filters compile to Condition nodes; custom filter functions may
build any combination of nodes (e.g. an AnyOf of Match nodes for a search
across several columns). Each backend translates the tree itself.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Union

from metacrud.core.types import OPERATORS

_COMPARATORS = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}


@dataclass(frozen=True)
class Condition:
    """Compare a stored field against a value with one of OPERATORS."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unknown operator '{self.op}'")


@dataclass(frozen=True)
class Match:
    """Case-insensitive text match on any of the given fields.

    mode is "contains" (substring) or "prefix" (starts-with).
    """

    fields: tuple[str, ...]
    text: str
    mode: str = "contains"


@dataclass(frozen=True)
class AllOf:
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class AnyOf:
    items: tuple[Predicate, ...]


@dataclass(frozen=True)
class Not:
    item: Predicate


Predicate = Union[Condition, Match, AllOf, AnyOf, Not]


def all_of(*predicates: Predicate | None) -> Predicate | None:
    """Conjunction of the given predicates, flattening nested AllOf nodes.

    None entries contribute nothing; returns None when nothing remains.
    """
    items: list[Predicate] = []
    for p in predicates:
        if p is None:
            continue
        if isinstance(p, AllOf):
            items.extend(p.items)
        else:
            items.append(p)
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return AllOf(tuple(items))


def any_of(*predicates: Predicate | None) -> Predicate | None:
    """Disjunction of the given predicates."""
    items = tuple(p for p in predicates if p is not None)
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    return AnyOf(items)


def _compare(stored: Any, op: str, value: Any) -> bool:
    if op in ("eq", "ne"):
        return _COMPARATORS[op](stored, value)
    if stored is None or value is None:
        return False
    try:
        return _COMPARATORS[op](stored, value)
    except TypeError:
        # Incomparable types never match
        return False


def _text_match(stored: Any, text: str, mode: str) -> bool:
    if not isinstance(stored, str):
        return False
    haystack = stored.lower()
    needle = text.lower()
    if mode == "prefix":
        return haystack.startswith(needle)
    return needle in haystack


def matches(predicate: Predicate | None, record: dict[str, Any]) -> bool:
    """Evaluate a predicate against an in-memory record."""
    if predicate is None:
        return True
    if isinstance(predicate, Condition):
        return _compare(record.get(predicate.field), predicate.op, predicate.value)
    if isinstance(predicate, Match):
        return any(
            _text_match(record.get(f), predicate.text, predicate.mode)
            for f in predicate.fields
        )
    if isinstance(predicate, AllOf):
        return all(matches(p, record) for p in predicate.items)
    if isinstance(predicate, AnyOf):
        return any(matches(p, record) for p in predicate.items)
    if isinstance(predicate, Not):
        return not matches(predicate.item, record)
    raise TypeError(f"Unsupported predicate: {predicate!r}")
