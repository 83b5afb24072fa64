"""Clause value objects that make up a query descriptor.

Each predicate node is a frozen dataclass tagged with the boolean connector
that joins it to the node before it. The first node of a group compiles
without a connector; every later node is prefixed with its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from orm_engine.domain.exceptions import QueryConstructionError

if TYPE_CHECKING:
    from orm_engine.domain.value_objects.descriptor import QueryDescriptor


class Boolean(str, Enum):
    """Connector joining a predicate to the one before it."""

    AND = "AND"
    OR = "OR"


class Direction(str, Enum):
    """Sort direction."""

    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: str | Direction) -> Direction:
        if isinstance(value, Direction):
            return value
        try:
            return cls(value.upper())
        except ValueError as e:
            raise QueryConstructionError(
                f"Order direction must be 'asc' or 'desc', got {value!r}"
            ) from e


class JoinKind(str, Enum):
    """Join types understood by the grammar."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    CROSS = "CROSS"


@dataclass(frozen=True, slots=True)
class Raw:
    """A raw SQL fragment emitted verbatim, with its own positional bindings."""

    sql: str
    bindings: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


@dataclass(frozen=True, slots=True)
class BasicWhere:
    """column <operator> value"""

    column: str
    operator: str
    value: Any
    boolean: Boolean = Boolean.AND


@dataclass(frozen=True, slots=True)
class InWhere:
    """column [NOT] IN (values)"""

    column: str
    values: tuple[Any, ...]
    boolean: Boolean = Boolean.AND
    negated: bool = False


@dataclass(frozen=True, slots=True)
class NullWhere:
    """column IS [NOT] NULL"""

    column: str
    boolean: Boolean = Boolean.AND
    negated: bool = False


@dataclass(frozen=True, slots=True)
class BetweenWhere:
    """column [NOT] BETWEEN low AND high"""

    column: str
    low: Any
    high: Any
    boolean: Boolean = Boolean.AND
    negated: bool = False


@dataclass(frozen=True, slots=True)
class ColumnWhere:
    """first <operator> second, comparing two columns."""

    first: str
    operator: str
    second: str
    boolean: Boolean = Boolean.AND


@dataclass(frozen=True, slots=True)
class RawWhere:
    """A raw predicate fragment."""

    sql: str
    bindings: tuple[Any, ...] = ()
    boolean: Boolean = Boolean.AND


@dataclass(frozen=True, slots=True)
class NestedWhere:
    """A parenthesized group of predicates."""

    wheres: tuple[Where, ...]
    boolean: Boolean = Boolean.AND
    negated: bool = False


@dataclass(frozen=True, slots=True)
class ExistsWhere:
    """[NOT] EXISTS (sub-query)"""

    query: QueryDescriptor
    boolean: Boolean = Boolean.AND
    negated: bool = False


Where = Union[
    BasicWhere,
    InWhere,
    NullWhere,
    BetweenWhere,
    ColumnWhere,
    RawWhere,
    NestedWhere,
    ExistsWhere,
]


@dataclass(frozen=True, slots=True)
class Join:
    """table JOIN ON first <operator> second"""

    table: str
    first: str
    operator: str
    second: str
    kind: JoinKind = JoinKind.INNER


@dataclass(frozen=True, slots=True)
class Order:
    """ORDER BY column direction"""

    column: str
    direction: Direction = Direction.ASC


@dataclass(frozen=True, slots=True)
class RawOrder:
    """ORDER BY <raw expression>"""

    sql: str
    bindings: tuple[Any, ...] = ()


OrderClause = Union[Order, RawOrder]
