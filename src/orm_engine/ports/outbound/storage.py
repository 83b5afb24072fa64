"""Storage port consumed by the ORM core.

This outbound port is everything the engine needs from a relational store:
statement execution with positional parameters, the last generated key,
transaction boundaries, and raw statements for savepoint management.
Connection pooling and network transport are the implementation's concern.

Statements use backtick-quoted identifiers and "?" placeholders.
Implementations targeting a store with a different dialect translate the
few dialect-specific clauses they cannot run as-is.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Iterator, Mapping, Protocol, Sequence


class Cursor(Protocol):
    """Result of one executed statement.

    Rows are mappings of column name to value.
    """

    @property
    @abstractmethod
    def rowcount(self) -> int:
        """Rows affected by an INSERT/UPDATE/DELETE; -1 when unknown."""
        ...

    @abstractmethod
    def fetchone(self) -> Mapping[str, Any] | None:
        """Return the next row, or None when exhausted."""
        ...

    @abstractmethod
    def fetchall(self) -> list[Mapping[str, Any]]:
        """Return all remaining rows."""
        ...

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        ...


class StorageConnection(Protocol):
    """Protocol for the relational store behind the engine.

    Thread Safety:
        The engine drives one connection from a single thread. Implementations
        need not be thread-safe.
    """

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> Cursor:
        """Execute one statement.

        Args:
            sql: Statement text with "?" placeholders.
            params: Positional parameters, in placeholder order.

        Returns:
            A cursor over the statement's result.

        Raises:
            Exception: Driver-specific errors. The engine wraps them.
        """
        ...

    @abstractmethod
    def last_insert_id(self) -> Any:
        """Return the key generated by the most recent INSERT."""
        ...

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a real transaction."""
        ...

    @abstractmethod
    def commit(self) -> None:
        """Commit the real transaction."""
        ...

    @abstractmethod
    def roll_back(self) -> None:
        """Roll back the real transaction."""
        ...

    @abstractmethod
    def exec(self, statement: str) -> None:
        """Execute a raw statement without parameters (savepoints)."""
        ...

    @abstractmethod
    def is_transient_error(self, error: BaseException) -> bool:
        """Whether error may clear on retry (lock wait, busy store, deadlock)."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the connection. It must not be used afterwards."""
        ...
