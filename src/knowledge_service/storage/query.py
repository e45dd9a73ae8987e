"""
Backend-neutral query builder.

Engine code describes what it wants with a handful of predicates and never
builds backend-specific filter fragments. Each storage backend translates a
``Query`` into its own dialect; ``matches`` is the reference evaluation used by
the in-memory backend and for predicates a backend cannot push down.

Example::

    query = (
        Query.on("reminder")
        .where(Equals("owner_id", owner.owner_id), Equals("is_completed", False))
        .where(ArrayOverlaps("tags", ["rent", "bills"]))
        .order_by("scheduled_for", descending=True)
        .limit(5)
    )
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable

from ..models.knowledge import KnowledgeItem, OwnerContext
from ..models.validators import ItemKind


@dataclass(frozen=True)
class Equals:
    """``field == value``."""

    field: str
    value: Any


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match of ``pattern`` against any of ``fields``."""

    fields: tuple[str, ...]
    pattern: str

    def __init__(self, fields: str | Iterable[str], pattern: str):
        object.__setattr__(self, "fields", (fields,) if isinstance(fields, str) else tuple(fields))
        object.__setattr__(self, "pattern", pattern)


@dataclass(frozen=True)
class ArrayOverlaps:
    """The array ``field`` shares at least one element with ``values``."""

    field: str
    values: tuple[str, ...]

    def __init__(self, field: str, values: Iterable[str]):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Range:
    """Bounds on an ordered field (timestamps or numbers)."""

    field: str
    lt: Any = None
    lte: Any = None
    gt: Any = None
    gte: Any = None


@dataclass(frozen=True)
class VectorNearest:
    """Order by cosine distance to ``vector``; only items with an embedding qualify."""

    vector: tuple[float, ...]
    field: str = "embedding"

    def __init__(self, vector: Iterable[float], field: str = "embedding"):
        object.__setattr__(self, "vector", tuple(float(x) for x in vector))
        object.__setattr__(self, "field", field)


Predicate = Equals | Contains | ArrayOverlaps | Range


@dataclass(frozen=True)
class Query:
    """Immutable query description; builder methods return new instances."""

    kind: ItemKind
    predicates: tuple[Predicate, ...] = ()
    vector: VectorNearest | None = None
    order_field: str | None = None
    descending: bool = False
    max_results: int | None = None

    @classmethod
    def on(cls, kind: ItemKind) -> Query:
        return cls(kind=kind)

    @classmethod
    def for_owner(cls, kind: ItemKind, owner: OwnerContext) -> Query:
        return cls.on(kind).where(Equals("owner_id", owner.owner_id), Equals("project_id", owner.project_id))

    def where(self, *predicates: Predicate) -> Query:
        return replace(self, predicates=self.predicates + tuple(predicates))

    def nearest(self, vector: Iterable[float]) -> Query:
        return replace(self, vector=VectorNearest(vector))

    def order_by(self, field_name: str, descending: bool = False) -> Query:
        return replace(self, order_field=field_name, descending=descending)

    def limit(self, n: int | None) -> Query:
        return replace(self, max_results=n)

    @property
    def pattern_predicates(self) -> list[Contains]:
        return [p for p in self.predicates if isinstance(p, Contains)]


# ---------------------------------------------------------------------------
# Reference evaluation
# ---------------------------------------------------------------------------


def _compare(value: Any, bound: Any) -> tuple[Any, Any]:
    # Aware and naive datetimes cannot be compared; storage only holds aware values
    if isinstance(value, datetime) and isinstance(bound, datetime) and bound.tzinfo is None:
        bound = bound.replace(tzinfo=value.tzinfo)
    return value, bound


def matches(item: KnowledgeItem, predicate: Predicate) -> bool:
    """Evaluate a single predicate against an item."""
    if isinstance(predicate, Equals):
        return getattr(item, predicate.field, None) == predicate.value

    if isinstance(predicate, Contains):
        needle = predicate.pattern.lower()
        for name in predicate.fields:
            value = getattr(item, name, None)
            if isinstance(value, str) and needle in value.lower():
                return True
        return False

    if isinstance(predicate, ArrayOverlaps):
        value = getattr(item, predicate.field, None) or []
        return bool(set(value) & set(predicate.values))

    if isinstance(predicate, Range):
        value = getattr(item, predicate.field, None)
        if value is None:
            return False
        for bound, ok in (
            (predicate.lt, lambda v, b: v < b),
            (predicate.lte, lambda v, b: v <= b),
            (predicate.gt, lambda v, b: v > b),
            (predicate.gte, lambda v, b: v >= b),
        ):
            if bound is not None and not ok(*_compare(value, bound)):
                return False
        return True

    raise TypeError(f"Unsupported predicate: {predicate!r}")


def matches_all(item: KnowledgeItem, predicates: Iterable[Predicate]) -> bool:
    return all(matches(item, p) for p in predicates)


def sort_items(items: list[KnowledgeItem], query: Query) -> list[KnowledgeItem]:
    """Apply ``order_by`` and ``limit``; items missing the order field sort last."""
    if query.order_field:
        name = query.order_field
        present = [i for i in items if getattr(i, name, None) is not None]
        missing = [i for i in items if getattr(i, name, None) is None]
        present.sort(key=lambda i: getattr(i, name), reverse=query.descending)
        items = present + missing
    if query.max_results is not None:
        items = items[: query.max_results]
    return items
