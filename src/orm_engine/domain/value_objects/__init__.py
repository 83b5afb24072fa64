"""Value objects for the ORM engine domain.

Value objects are immutable types that describe queries. Two value objects
with the same fields are equal.

Exports:
    Clauses:
        - Boolean, Direction, JoinKind: clause enums
        - Raw: raw SQL fragment with bindings
        - BasicWhere, InWhere, NullWhere, BetweenWhere, ColumnWhere,
          RawWhere, NestedWhere, ExistsWhere: predicate nodes
        - Join, Order, RawOrder: join and ordering clauses

    Descriptor:
        - QueryDescriptor: immutable state of one pending query
"""

from orm_engine.domain.value_objects.clauses import (
    BasicWhere,
    BetweenWhere,
    Boolean,
    ColumnWhere,
    Direction,
    ExistsWhere,
    InWhere,
    Join,
    JoinKind,
    NestedWhere,
    NullWhere,
    Order,
    OrderClause,
    Raw,
    RawOrder,
    RawWhere,
    Where,
)
from orm_engine.domain.value_objects.descriptor import QueryDescriptor

__all__ = [
    # Clauses
    "BasicWhere",
    "BetweenWhere",
    "Boolean",
    "ColumnWhere",
    "Direction",
    "ExistsWhere",
    "InWhere",
    "Join",
    "JoinKind",
    "NestedWhere",
    "NullWhere",
    "Order",
    "OrderClause",
    "Raw",
    "RawOrder",
    "RawWhere",
    "Where",
    # Descriptor
    "QueryDescriptor",
]
