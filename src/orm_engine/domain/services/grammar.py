"""SQL grammar for the reference (MySQL-flavoured) dialect.

The grammar turns a QueryDescriptor into a statement string and a positional
parameter list. Parameters are appended to the list at the moment their
placeholder is emitted, so the list order always equals placeholder order,
including inside nested groups and EXISTS sub-queries.

Dialect:
    - Identifiers quoted with backticks (`table`.`column`)
    - Positional "?" placeholders
    - LIMIT n OFFSET m
    - INSERT INTO t (...) VALUES (...), (...)
    - ON DUPLICATE KEY UPDATE col = VALUES(col)
    - FOR UPDATE / LOCK IN SHARE MODE
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from orm_engine.domain.exceptions import QueryConstructionError
from orm_engine.domain.value_objects import (
    BasicWhere,
    BetweenWhere,
    ColumnWhere,
    ExistsWhere,
    InWhere,
    Join,
    JoinKind,
    NestedWhere,
    NullWhere,
    QueryDescriptor,
    Raw,
    RawOrder,
    RawWhere,
    Where,
)

_ALIAS_RE = re.compile(r"\s+as\s+", re.IGNORECASE)


@dataclass(frozen=True)
class CompiledStatement:
    """A statement ready for the storage collaborator."""

    sql: str
    params: tuple[Any, ...] = ()

    def __iter__(self):
        # Allows `sql, params = grammar.compile_select(q)`
        yield self.sql
        yield self.params


class MySqlGrammar:
    """Compiles query descriptors to MySQL-flavoured SQL."""

    operators: frozenset[str] = frozenset(
        {
            "=", "<", ">", "<=", ">=", "<>", "!=", "<=>",
            "like", "not like", "like binary", "rlike", "regexp", "not regexp",
            "&", "|", "^", "<<", ">>",
        }
    )

    lock_clauses: Mapping[str, str] = {
        "update": "FOR UPDATE",
        "shared": "LOCK IN SHARE MODE",
    }

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def wrap(self, value: str | Raw) -> str:
        """Quote an identifier, honouring `table.column` and `expr AS alias`."""
        if isinstance(value, Raw):
            return value.sql
        if _ALIAS_RE.search(value):
            left, right = _ALIAS_RE.split(value, maxsplit=1)
            return f"{self.wrap(left)} AS {self._wrap_segment(right.strip())}"
        return ".".join(self._wrap_segment(segment) for segment in value.split("."))

    def wrap_table(self, table: str | Raw) -> str:
        return self.wrap(table)

    def _wrap_segment(self, segment: str) -> str:
        if segment == "*":
            return segment
        return "`" + segment.replace("`", "``") + "`"

    def columnize(self, columns: Sequence[str | Raw], params: list[Any]) -> str:
        parts = []
        for column in columns:
            if isinstance(column, Raw):
                params.extend(column.bindings)
            parts.append(self.wrap(column))
        return ", ".join(parts)

    def check_operator(self, operator: str) -> str:
        normalized = operator.strip().lower()
        if normalized not in self.operators:
            raise QueryConstructionError(f"Illegal operator {operator!r}")
        return normalized.upper() if normalized.isalpha() or " " in normalized else normalized

    def parameter(self, value: Any, params: list[Any]) -> str:
        """Emit a placeholder for value, or inline it when it is Raw."""
        if isinstance(value, Raw):
            params.extend(value.bindings)
            return value.sql
        params.append(value)
        return "?"

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def compile_select(self, query: QueryDescriptor) -> CompiledStatement:
        params: list[Any] = []
        sql = self._compile_select(query, params)
        return CompiledStatement(sql, tuple(params))

    def _compile_select(self, query: QueryDescriptor, params: list[Any]) -> str:
        select = "SELECT DISTINCT " if query.distinct else "SELECT "
        sql = select + self.columnize(query.columns, params)
        sql += f" FROM {self.wrap_table(query.table)}"
        sql += self._compile_joins(query.joins)
        sql += self._compile_where_clause(query.wheres, params)
        if query.groups:
            sql += " GROUP BY " + ", ".join(self.wrap(g) for g in query.groups)
        if query.havings:
            sql += " HAVING " + self.compile_predicates(query.havings, params)
        sql += self._compile_orders(query, params)
        sql += self._compile_limits(query)
        if query.lock:
            sql += " " + self.lock_clauses[query.lock]
        return sql

    def _compile_joins(self, joins: Sequence[Join]) -> str:
        sql = ""
        for join in joins:
            if join.kind is JoinKind.CROSS:
                sql += f" CROSS JOIN {self.wrap_table(join.table)}"
                continue
            operator = self.check_operator(join.operator)
            sql += (
                f" {join.kind.value} JOIN {self.wrap_table(join.table)}"
                f" ON {self.wrap(join.first)} {operator} {self.wrap(join.second)}"
            )
        return sql

    def _compile_orders(self, query: QueryDescriptor, params: list[Any]) -> str:
        if not query.orders:
            return ""
        parts = []
        for order in query.orders:
            if isinstance(order, RawOrder):
                params.extend(order.bindings)
                parts.append(order.sql)
            else:
                parts.append(f"{self.wrap(order.column)} {order.direction.value}")
        return " ORDER BY " + ", ".join(parts)

    def _compile_limits(self, query: QueryDescriptor) -> str:
        sql = ""
        if query.limit is not None:
            sql += f" LIMIT {int(query.limit)}"
        if query.offset is not None:
            if query.limit is None:
                # MySQL requires a LIMIT before OFFSET
                sql += " LIMIT 9223372036854775807"
            sql += f" OFFSET {int(query.offset)}"
        return sql

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def _compile_where_clause(self, wheres: Sequence[Where], params: list[Any]) -> str:
        compiled = self.compile_predicates(wheres, params)
        return f" WHERE {compiled}" if compiled else ""

    def compile_predicates(self, wheres: Sequence[Where], params: list[Any]) -> str:
        """Compile a predicate group without the leading WHERE keyword."""
        fragments: list[str] = []
        for where in wheres:
            fragment = self._compile_where(where, params)
            if not fragment:
                continue
            if fragments:
                fragments.append(f"{where.boolean.value} {fragment}")
            else:
                fragments.append(fragment)
        return " ".join(fragments)

    def _compile_where(self, where: Where, params: list[Any]) -> str:
        if isinstance(where, BasicWhere):
            operator = self.check_operator(where.operator)
            return f"{self.wrap(where.column)} {operator} {self.parameter(where.value, params)}"

        if isinstance(where, InWhere):
            if not where.values:
                return "1 = 1" if where.negated else "0 = 1"
            placeholders = ", ".join(self.parameter(v, params) for v in where.values)
            keyword = "NOT IN" if where.negated else "IN"
            return f"{self.wrap(where.column)} {keyword} ({placeholders})"

        if isinstance(where, NullWhere):
            keyword = "IS NOT NULL" if where.negated else "IS NULL"
            return f"{self.wrap(where.column)} {keyword}"

        if isinstance(where, BetweenWhere):
            keyword = "NOT BETWEEN" if where.negated else "BETWEEN"
            low = self.parameter(where.low, params)
            high = self.parameter(where.high, params)
            return f"{self.wrap(where.column)} {keyword} {low} AND {high}"

        if isinstance(where, ColumnWhere):
            operator = self.check_operator(where.operator)
            return f"{self.wrap(where.first)} {operator} {self.wrap(where.second)}"

        if isinstance(where, RawWhere):
            params.extend(where.bindings)
            return where.sql

        if isinstance(where, NestedWhere):
            inner = self.compile_predicates(where.wheres, params)
            if not inner:
                return ""
            return f"NOT ({inner})" if where.negated else f"({inner})"

        if isinstance(where, ExistsWhere):
            inner = self._compile_select(where.query, params)
            keyword = "NOT EXISTS" if where.negated else "EXISTS"
            return f"{keyword} ({inner})"

        raise QueryConstructionError(f"Unsupported predicate {where!r}")

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def compile_aggregate(
        self, query: QueryDescriptor, function: str, column: str | Raw = "*"
    ) -> CompiledStatement:
        """Replace the projection with function(column) AS aggregate.

        Grouped or distinct queries are wrapped in a derived table so the
        aggregate counts result rows rather than group members.
        """
        params: list[Any] = []
        base = query.for_aggregate()
        function = function.upper()
        if function == "COUNT" and (base.groups or base.distinct):
            inner = self._compile_select(base, params)
            sql = f"SELECT COUNT(*) AS `aggregate` FROM ({inner}) AS `aggregate_table`"
            return CompiledStatement(sql, tuple(params))

        target = "*" if column == "*" else self.wrap(column)
        aggregate = base.derive(columns=(Raw(f"{function}({target}) AS `aggregate`"),))
        sql = self._compile_select(aggregate, params)
        return CompiledStatement(sql, tuple(params))

    def compile_exists(self, query: QueryDescriptor) -> CompiledStatement:
        params: list[Any] = []
        inner = self._compile_select(query.derive(orders=(), lock=None), params)
        return CompiledStatement(f"SELECT EXISTS({inner}) AS `exists`", tuple(params))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def compile_insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> CompiledStatement:
        """Compile a (batch) insert. Column order follows the first row."""
        if not rows:
            raise QueryConstructionError("Cannot compile an insert without rows")
        columns = list(rows[0].keys())
        params: list[Any] = []
        groups = []
        for row in rows:
            placeholders = ", ".join(self.parameter(row.get(column), params) for column in columns)
            groups.append(f"({placeholders})")
        column_list = ", ".join(self.wrap(c) for c in columns)
        sql = f"INSERT INTO {self.wrap_table(table)} ({column_list}) VALUES " + ", ".join(groups)
        return CompiledStatement(sql, tuple(params))

    def compile_upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        update_columns: Sequence[str],
    ) -> CompiledStatement:
        insert = self.compile_insert(table, rows)
        assignments = ", ".join(
            f"{self.wrap(c)} = VALUES({self.wrap(c)})" for c in update_columns
        )
        return CompiledStatement(f"{insert.sql} ON DUPLICATE KEY UPDATE {assignments}", insert.params)

    def compile_update(self, query: QueryDescriptor, values: Mapping[str, Any]) -> CompiledStatement:
        if not values:
            raise QueryConstructionError("Cannot compile an update without values")
        params: list[Any] = []
        assignments = ", ".join(
            f"{self.wrap(column)} = {self.parameter(value, params)}"
            for column, value in values.items()
        )
        sql = f"UPDATE {self.wrap_table(query.table)}"
        sql += self._compile_joins(query.joins)
        sql += f" SET {assignments}"
        sql += self._compile_where_clause(query.wheres, params)
        if not query.joins:
            sql += self._compile_orders(query, params)
            if query.limit is not None:
                sql += f" LIMIT {int(query.limit)}"
        return CompiledStatement(sql, tuple(params))

    def compile_delete(self, query: QueryDescriptor) -> CompiledStatement:
        params: list[Any] = []
        table = self.wrap_table(query.table)
        if query.joins:
            sql = f"DELETE {table} FROM {table}" + self._compile_joins(query.joins)
            sql += self._compile_where_clause(query.wheres, params)
            return CompiledStatement(sql, tuple(params))
        sql = f"DELETE FROM {table}"
        sql += self._compile_where_clause(query.wheres, params)
        sql += self._compile_orders(query, params)
        if query.limit is not None:
            sql += f" LIMIT {int(query.limit)}"
        return CompiledStatement(sql, tuple(params))

    # ------------------------------------------------------------------
    # Savepoints
    # ------------------------------------------------------------------

    def compile_savepoint(self, name: str) -> str:
        return f"SAVEPOINT {name}"

    def compile_release_savepoint(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {name}"

    def compile_rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {name}"
