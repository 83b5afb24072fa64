"""Database facade over the storage connection.

The Database owns the single storage connection shared by every entity
type. It is the only place statements are executed, which gives one choke
point for:

    - wrapping driver errors in PersistenceError
    - the query log (used by tests to count statements)
    - metrics and tracing
    - the transaction depth counter

Transactions nest with savepoints:

    depth 0 -> 1   BEGIN
    depth n -> n+1 SAVEPOINT trans_n
    commit  at n>1 RELEASE SAVEPOINT trans_(n-1)
    rollback at n>1 ROLLBACK TO SAVEPOINT trans_(n-1)
    commit/rollback at 1 COMMIT / ROLLBACK

The process-wide instance is built lazily from a connection factory
registered in the service container; by default an SQLiteConnection over
``database.path``.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterator, Sequence, TypeVar

from orm_engine.domain.exceptions import (
    ConcurrencyConflictError,
    PersistenceError,
    TransactionError,
)
from orm_engine.domain.services.grammar import CompiledStatement, MySqlGrammar
from orm_engine.domain.services.statements import StatementType, classify_statement
from orm_engine.infrastructure.config import get_config
from orm_engine.infrastructure.container import Container, configure_observability, get_container
from orm_engine.infrastructure.logging import get_logger
from orm_engine.infrastructure.metrics import MetricsRegistry, get_metrics
from orm_engine.infrastructure.tracing import trace_span
from orm_engine.ports.outbound.storage import Cursor, StorageConnection

if TYPE_CHECKING:
    from orm_engine.application.query_builder import Builder

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class QueryLogEntry:
    """One executed statement."""

    sql: str
    params: tuple[Any, ...]
    time_ms: float
    statement_type: StatementType


class Database:
    """Executes statements and manages transactions on one connection."""

    def __init__(
        self,
        connection: StorageConnection,
        grammar: MySqlGrammar | None = None,
        metrics: MetricsRegistry | None = None,
        query_log: bool | None = None,
    ) -> None:
        """
        Initialize the database facade.

        Args:
            connection: The storage collaborator
            grammar: SQL grammar (default MySqlGrammar)
            metrics: Metrics registry (default: the global one)
            query_log: Record executed statements (default from config)
        """
        config = get_config()
        self._connection = connection
        self.grammar = grammar or MySqlGrammar()
        self._metrics = metrics
        self._logging_queries = config.database.query_log if query_log is None else query_log
        self._query_log: list[QueryLogEntry] = []
        self._transactions = 0
        self._savepoint_prefix = config.database.savepoint_prefix
        self._date_format = config.models.date_format

    @property
    def connection(self) -> StorageConnection:
        return self._connection

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics or get_metrics()

    def table(self, name: str) -> Builder:
        """Start a query against a table, without a model."""
        from orm_engine.application.query_builder import Builder

        return Builder.for_table(name, database=self)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def prepare_bindings(self, params: Sequence[Any]) -> tuple[Any, ...]:
        """Convert parameter values to driver-friendly scalars."""
        prepared = []
        for value in params:
            if isinstance(value, datetime):
                value = value.strftime(self._date_format)
            elif isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = format(value, "f")
            elif isinstance(value, bool):
                value = int(value)
            elif isinstance(value, Enum):
                value = value.value
            prepared.append(value)
        return tuple(prepared)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> Cursor:
        """Execute one statement.

        Raises:
            PersistenceError: Wrapping any error raised by the driver
        """
        statement_type = classify_statement(sql)
        bindings = self.prepare_bindings(params)
        metrics = self.metrics
        start = time.perf_counter()

        with trace_span("orm.execute", {"db.statement_type": statement_type.value}):
            try:
                cursor = self._connection.execute(sql, bindings)
            except Exception as e:
                metrics.queries_total.labels(statement_type=statement_type.value, status="error").inc()
                logger.warning(
                    "Statement failed",
                    statement_type=statement_type.value,
                    sql=sql,
                    error=str(e),
                )
                raise self._wrap_error(statement_type.value, sql, e) from e

        elapsed = time.perf_counter() - start
        metrics.queries_total.labels(statement_type=statement_type.value, status="success").inc()
        metrics.query_latency_seconds.labels(statement_type=statement_type.value).observe(elapsed)

        if self._logging_queries:
            self._query_log.append(
                QueryLogEntry(sql, bindings, round(elapsed * 1000, 3), statement_type)
            )
        logger.debug(
            "Statement executed",
            statement_type=statement_type.value,
            sql=sql,
            time_ms=round(elapsed * 1000, 3),
        )
        return cursor

    def _wrap_error(self, statement_type: str, sql: str, error: Exception) -> PersistenceError:
        return PersistenceError(
            statement_type, sql, error, transient=self._connection.is_transient_error(error)
        )

    def run(self, statement: CompiledStatement) -> Cursor:
        return self.execute(statement.sql, statement.params)

    def select(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return [dict(row) for row in self.execute(sql, params).fetchall()]

    def select_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        row = self.execute(sql, params).fetchone()
        return dict(row) if row is not None else None

    def affecting_statement(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute an UPDATE/DELETE and return the affected row count."""
        return self.execute(sql, params).rowcount

    def insert(self, sql: str, params: Sequence[Any] = ()) -> bool:
        self.execute(sql, params)
        return True

    def last_insert_id(self) -> Any:
        return self._connection.last_insert_id()

    def exec(self, statement: str) -> None:
        """Execute a raw statement without parameters."""
        try:
            self._connection.exec(statement)
        except Exception as e:
            self.metrics.queries_total.labels(statement_type="other", status="error").inc()
            raise self._wrap_error(StatementType.OTHER.value, statement, e) from e
        self.metrics.queries_total.labels(statement_type="other", status="success").inc()
        logger.debug("Raw statement executed", sql=statement)

    # ------------------------------------------------------------------
    # Query log
    # ------------------------------------------------------------------

    def enable_query_log(self) -> None:
        self._logging_queries = True

    def disable_query_log(self) -> None:
        self._logging_queries = False

    def get_query_log(self) -> list[QueryLogEntry]:
        return list(self._query_log)

    def flush_query_log(self) -> None:
        self._query_log.clear()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transaction_level(self) -> int:
        return self._transactions

    def _savepoint(self, level: int) -> str:
        return f"{self._savepoint_prefix}{level}"

    def begin_transaction(self) -> None:
        """Start a transaction, or a savepoint when one is already open."""
        if self._transactions == 0:
            try:
                self._connection.begin_transaction()
            except Exception as e:
                raise self._wrap_error(StatementType.OTHER.value, "BEGIN", e) from e
        else:
            self.exec(self.grammar.compile_savepoint(self._savepoint(self._transactions)))
        self._transactions += 1
        self.metrics.transactions_total.labels(status="begin").inc()
        self.metrics.transaction_depth.set(self._transactions)
        logger.debug("Transaction begun", depth=self._transactions)

    def commit(self) -> None:
        """Commit the innermost level.

        Raises:
            TransactionError: If no transaction is open
        """
        if self._transactions == 0:
            raise TransactionError("No active transaction to commit")
        self._transactions -= 1
        if self._transactions == 0:
            try:
                self._connection.commit()
            except Exception as e:
                raise self._wrap_error(StatementType.OTHER.value, "COMMIT", e) from e
        else:
            self.exec(self.grammar.compile_release_savepoint(self._savepoint(self._transactions)))
        self.metrics.transactions_total.labels(status="commit").inc()
        self.metrics.transaction_depth.set(self._transactions)
        logger.debug("Transaction committed", depth=self._transactions)

    def roll_back(self) -> None:
        """Roll back the innermost level.

        Raises:
            TransactionError: If no transaction is open
        """
        if self._transactions == 0:
            raise TransactionError("No active transaction to roll back")
        self._transactions -= 1
        if self._transactions == 0:
            try:
                self._connection.roll_back()
            except Exception as e:
                raise self._wrap_error(StatementType.OTHER.value, "ROLLBACK", e) from e
        else:
            self.exec(
                self.grammar.compile_rollback_to_savepoint(self._savepoint(self._transactions))
            )
        self.metrics.transactions_total.labels(status="rollback").inc()
        self.metrics.transaction_depth.set(self._transactions)
        logger.debug("Transaction rolled back", depth=self._transactions)

    @contextmanager
    def _transaction_scope(self) -> Iterator[Database]:
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.roll_back()
            raise
        else:
            self.commit()

    def transaction(self, callback: Callable[[], T] | None = None, attempts: int = 1):
        """Run callback in a transaction, or return a transaction context manager.

        With a callback, commits on success and rolls back on exception. When
        the failure is a concurrency conflict or a transient storage error
        (lock wait, busy store) and attempts remain, the callback is run again
        in a fresh transaction. Other storage errors, such as integrity
        violations, are raised on the first attempt.

        Usage:
            with db.transaction():
                post.save()

            db.transaction(lambda: post.save(), attempts=3)

        Args:
            callback: Work to run; called without arguments
            attempts: Total number of tries for retryable failures

        Returns:
            The callback's result, or a context manager when callback is None
        """
        if callback is None:
            return self._transaction_scope()
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        for attempt in range(1, attempts + 1):
            try:
                with self._transaction_scope():
                    return callback()
            except (ConcurrencyConflictError, PersistenceError) as e:
                if isinstance(e, PersistenceError) and not e.transient:
                    raise
                # Only the outermost level may retry; inner levels re-raise
                if attempt >= attempts or self._transactions > 0:
                    raise
                logger.info("Retrying transaction", attempt=attempt, error=str(e))

    def close(self) -> None:
        self._connection.close()


# ----------------------------------------------------------------------
# Process-wide instance
# ----------------------------------------------------------------------


def _default_connection(container: Container) -> StorageConnection:
    from orm_engine.adapters.outbound.sqlite_connection import SQLiteConnection

    return SQLiteConnection(get_config().database.path)


def _default_database(container: Container) -> Database:
    configure_observability()
    return Database(container.resolve(StorageConnection))


def _ensure_registered(container: Container) -> None:
    if not container.has(StorageConnection):
        container.register_factory(StorageConnection, _default_connection)
    if not container.has(Database):
        container.register_factory(Database, _default_database)


def get_database() -> Database:
    """Get the process-wide Database, opening the connection on first use."""
    container = get_container()
    _ensure_registered(container)
    return container.resolve(Database)


def set_connection_factory(factory: Callable[[], StorageConnection]) -> None:
    """Replace the connection factory. The next get_database() uses it."""
    reset_database()
    container = get_container()
    container.register_factory(StorageConnection, lambda _: factory())
    container.register_factory(Database, _default_database)


def set_database(database: Database) -> None:
    """Install a ready-made Database as the process-wide instance."""
    container = get_container()
    container.register_instance(StorageConnection, database.connection)
    container.register_instance(Database, database)


def reset_database() -> None:
    """Close and forget the process-wide Database."""
    container = get_container()
    database = container.forget(Database)
    connection = container.forget(StorageConnection)
    if database is not None:
        database.close()
    elif connection is not None:
        connection.close()
