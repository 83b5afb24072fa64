"""Immutable query descriptor.

A QueryDescriptor is the accumulated state of one pending query. Every field
is either a scalar or a tuple of frozen clause objects, so a descriptor can
be shared freely: derived descriptors are produced with dataclasses.replace()
and never alias anything a caller could mutate.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from orm_engine.domain.value_objects.clauses import (
    Join,
    OrderClause,
    Raw,
    Where,
)


@dataclass(frozen=True)
class QueryDescriptor:
    """The immutable description of a SELECT (and of the rows an UPDATE/DELETE targets)."""

    table: str
    columns: tuple[str | Raw, ...] = ("*",)
    wheres: tuple[Where, ...] = ()
    joins: tuple[Join, ...] = ()
    groups: tuple[str, ...] = ()
    havings: tuple[Where, ...] = ()
    orders: tuple[OrderClause, ...] = ()
    limit: int | None = None
    offset: int | None = None
    distinct: bool = False
    lock: str | None = None

    def derive(self, **changes: Any) -> QueryDescriptor:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def add_where(self, where: Where) -> QueryDescriptor:
        return replace(self, wheres=self.wheres + (where,))

    def add_having(self, having: Where) -> QueryDescriptor:
        return replace(self, havings=self.havings + (having,))

    def add_join(self, join: Join) -> QueryDescriptor:
        return replace(self, joins=self.joins + (join,))

    def add_order(self, order: OrderClause) -> QueryDescriptor:
        return replace(self, orders=self.orders + (order,))

    def add_columns(self, *columns: str | Raw) -> QueryDescriptor:
        current = () if self.columns == ("*",) else self.columns
        return replace(self, columns=current + tuple(columns))

    def for_aggregate(self) -> QueryDescriptor:
        """Strip the parts an aggregate over this query must not carry."""
        return replace(self, orders=(), limit=None, offset=None, lock=None)

    @property
    def has_wheres(self) -> bool:
        return bool(self.wheres)
