"""Ordered collection of entities.

Collection is a plain list subclass, so indexing, iteration, len() and
slicing behave as usual. The helpers below resolve a "key" argument against
each item: entities are read through get_attribute(), mappings through
item[key], other objects through getattr(); a callable key is called with
the item.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping, TypeVar

T = TypeVar("T")

KeyType = str | Callable[[Any], Any]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": lambda a, b: a == b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<>": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
}


def data_get(item: Any, key: KeyType | None) -> Any:
    """Read key from an entity, mapping or object."""
    if key is None:
        return item
    if callable(key):
        return key(item)
    if hasattr(item, "get_attribute"):
        return item.get_attribute(key)
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


class Collection(list):
    """A list of entities (or plain values) with grouping and keying helpers."""

    def __getitem__(self, index):
        result = super().__getitem__(index)
        if isinstance(index, slice):
            return type(self)(result)
        return result

    def __repr__(self) -> str:
        return f"Collection({list.__repr__(self)})"

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def all(self) -> list:
        return list(self)

    def first(self, predicate: Callable[[Any], bool] | None = None, default: Any = None) -> Any:
        for item in self:
            if predicate is None or predicate(item):
                return item
        return default

    def last(self, predicate: Callable[[Any], bool] | None = None, default: Any = None) -> Any:
        for item in reversed(self):
            if predicate is None or predicate(item):
                return item
        return default

    def is_empty(self) -> bool:
        return len(self) == 0

    def is_not_empty(self) -> bool:
        return len(self) > 0

    def find(self, key: Any, default: Any = None) -> Any:
        """Return the entity whose primary key equals key."""
        wanted = str(key)
        for item in self:
            if str(item.get_key()) == wanted:
                return item
        return default

    def contains(self, value: Any) -> bool:
        if callable(value):
            return any(value(item) for item in self)
        if hasattr(value, "is_same"):
            return any(value.is_same(item) for item in self)
        return value in self

    # ------------------------------------------------------------------
    # Transformation
    # ------------------------------------------------------------------

    def map(self, fn: Callable[[Any], Any]) -> Collection:
        return Collection(fn(item) for item in self)

    def filter(self, fn: Callable[[Any], bool] | None = None) -> Collection:
        if fn is None:
            return Collection(item for item in self if item)
        return Collection(item for item in self if fn(item))

    def reject(self, fn: Callable[[Any], bool]) -> Collection:
        return Collection(item for item in self if not fn(item))

    def each(self, fn: Callable[[Any], Any]) -> Collection:
        """Call fn for every item; stop early if it returns False."""
        for item in self:
            if fn(item) is False:
                break
        return self

    def pluck(self, value: KeyType, key: KeyType | None = None) -> Collection | dict:
        """Extract one field from every item, optionally keyed by another."""
        if key is None:
            return Collection(data_get(item, value) for item in self)
        return {data_get(item, key): data_get(item, value) for item in self}

    def key_by(self, key: KeyType) -> dict[Any, Any]:
        """Index items by key; later items win on duplicate keys."""
        return {data_get(item, key): item for item in self}

    def group_by(self, key: KeyType) -> dict[Any, Collection]:
        """Group items by key, preserving order within each group."""
        groups: dict[Any, Collection] = {}
        for item in self:
            groups.setdefault(data_get(item, key), Collection()).append(item)
        return groups

    def unique(self, key: KeyType | None = None) -> Collection:
        seen: set = set()
        result = Collection()
        for item in self:
            if key is None and hasattr(item, "get_key"):
                marker = (type(item).__name__, str(item.get_key()))
            else:
                marker = data_get(item, key)
                if isinstance(marker, (list, dict, set)):
                    marker = repr(marker)
            if marker in seen:
                continue
            seen.add(marker)
            result.append(item)
        return result

    def model_keys(self) -> list[Any]:
        return [item.get_key() for item in self]

    def sort_by(self, key: KeyType, reverse: bool = False) -> Collection:
        # None sorts first
        return Collection(
            sorted(self, key=lambda item: _sort_key(data_get(item, key)), reverse=reverse)
        )

    def sort_by_desc(self, key: KeyType) -> Collection:
        return self.sort_by(key, reverse=True)

    def chunk(self, size: int) -> Collection:
        if size < 1:
            raise ValueError("Chunk size must be at least 1")
        return Collection(Collection(self[i:i + size]) for i in range(0, len(self), size))

    def where(self, key: KeyType, operator: Any, value: Any = ...) -> Collection:
        if value is ...:
            operator, value = "=", operator
        compare = _OPERATORS.get(operator)
        if compare is None:
            raise ValueError(f"Unsupported operator {operator!r}")
        return Collection(item for item in self if compare(data_get(item, key), value))

    def where_in(self, key: KeyType, values: Iterable[Any]) -> Collection:
        allowed = {str(v) for v in values}
        return Collection(item for item in self if str(data_get(item, key)) in allowed)

    def where_not_in(self, key: KeyType, values: Iterable[Any]) -> Collection:
        excluded = {str(v) for v in values}
        return Collection(item for item in self if str(data_get(item, key)) not in excluded)

    def first_where(self, key: KeyType, operator: Any, value: Any = ...) -> Any:
        return self.where(key, operator, value).first()

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def _values(self, key: KeyType | None) -> list:
        return [v for v in (data_get(item, key) for item in self) if v is not None]

    def sum(self, key: KeyType | None = None) -> Any:
        return sum(self._values(key))

    def avg(self, key: KeyType | None = None) -> Any:
        values = self._values(key)
        return sum(values) / len(values) if values else None

    def max(self, key: KeyType | None = None) -> Any:
        values = self._values(key)
        return max(values) if values else None

    def min(self, key: KeyType | None = None) -> Any:
        values = self._values(key)
        return min(values) if values else None

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def load(self, *relations: Any) -> Collection:
        """Eager load relations onto every entity in the collection."""
        if self:
            from orm_engine.application.eager_loader import EagerLoader

            EagerLoader().load(self, relations)
        return self

    def load_missing(self, *relations: Any) -> Collection:
        """Eager load the relations that are not loaded yet."""
        if self:
            from orm_engine.application.eager_loader import EagerLoader

            EagerLoader().load_missing(self, relations)
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_list(self) -> list:
        return [item.to_dict() if hasattr(item, "to_dict") else item for item in self]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_list(), default=str, **kwargs)


def _sort_key(value: Any) -> tuple:
    return (value is not None, value)
