"""Typed query predicates understood by the record store.

Fields are addressed by a tuple path into the stored JSON document, e.g.
``("submitted_data", "categorize", "category")``. The store compiles these
objects into its native query form; nothing here builds query strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union

FieldPath = tuple[str, ...]


def field_path(*parts: str) -> FieldPath:
    return tuple(parts)


@dataclass(frozen=True)
class Term:
    """Exact match of the value stored at ``path``."""

    path: FieldPath
    value: Any


@dataclass(frozen=True)
class Missing:
    """The field is absent or null."""

    path: FieldPath


@dataclass(frozen=True)
class Exists:
    """The field is present and not null (an empty object counts as present)."""

    path: FieldPath


@dataclass(frozen=True)
class AnyOf:
    """The value at ``path`` is one of ``values``."""

    path: FieldPath
    values: tuple[Any, ...]


@dataclass(frozen=True)
class NoneOf:
    """The value at ``path`` is not one of ``values``; absent fields match."""

    path: FieldPath
    values: tuple[Any, ...]


@dataclass(frozen=True)
class All:
    """Conjunction of conditions. An empty conjunction matches everything."""

    conditions: tuple["Predicate", ...] = ()

    def __len__(self) -> int:
        return len(self.conditions)


Predicate = Union[Term, Missing, Exists, AnyOf, NoneOf, All]


def all_of(*conditions: Predicate | None) -> All:
    """Build a flat conjunction, skipping ``None`` and inlining nested ``All``."""
    flat: list[Predicate] = []
    for condition in conditions:
        if condition is None:
            continue
        if isinstance(condition, All):
            flat.extend(condition.conditions)
        else:
            flat.append(condition)
    return All(tuple(flat))


def none_of(path: FieldPath, values: Iterable[Any]) -> NoneOf | None:
    """``NoneOf`` for a non-empty collection, otherwise ``None`` (no constraint)."""
    values = tuple(values)
    if not values:
        return None
    return NoneOf(path, values)
