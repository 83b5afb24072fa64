"""Fluent, immutable query builder.

Every construction method returns a new Builder around a new
QueryDescriptor; the receiver is never modified. Branching a query is
therefore safe:

    published = Post.where("status", "published")
    recent = published.where("created_at", ">", cutoff)   # published unchanged

A Builder bound to a model class adds the model's behaviour at compile time:
global scopes, the soft-delete predicate, hydration into entities and eager
loading of requested relations. A Builder without a model (Database.table())
returns plain dict rows.
"""

from __future__ import annotations

from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Mapping, Sequence

from orm_engine.application.eager_loader import EagerLoader, EagerRequest, normalize_eager
from orm_engine.application.pagination import LengthAwarePaginator, Paginator
from orm_engine.application.tenancy import DEFAULT_TENANT_COLUMN, TENANCY_SCOPE
from orm_engine.domain.entities.collection import Collection
from orm_engine.domain.exceptions import (
    ModelNotFoundError,
    MultipleRecordsFoundError,
    QueryConstructionError,
)
from orm_engine.domain.services.casting import fresh_timestamp
from orm_engine.domain.services.grammar import CompiledStatement, MySqlGrammar
from orm_engine.domain.value_objects import (
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
    QueryDescriptor,
    Raw,
    RawOrder,
    RawWhere,
    Where,
)
from orm_engine.infrastructure.config import get_config
from orm_engine.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from orm_engine.application.database import Database
    from orm_engine.application.model import Model

logger = get_logger(__name__)

_MISSING = object()
_GRAMMAR = MySqlGrammar()


class TrashMode(str, Enum):
    """Which rows of a soft-deletable model a query sees."""

    WITHOUT = "without"
    WITH = "with"
    ONLY = "only"


def _boolean(value: Boolean | str) -> Boolean:
    return value if isinstance(value, Boolean) else Boolean(value.upper())


def _require_builder(result: Any, where: str) -> Builder:
    if not isinstance(result, Builder):
        raise QueryConstructionError(
            f"{where} must return a Builder (builders are immutable; return the chained query)"
        )
    return result


def _result_key(column: str) -> str:
    """The key a selected column appears under in a result row."""
    lowered = column.lower()
    if " as " in lowered:
        return column[lowered.rindex(" as ") + 4:].strip()
    return column.rsplit(".", 1)[-1]


def _has_or(wheres: Sequence[Where]) -> bool:
    return any(where.boolean is Boolean.OR for where in wheres[1:])


class Builder:
    """Copy-on-write query builder."""

    __slots__ = ("_descriptor", "_model", "_database", "_eager", "_trashed", "_removed_scopes")

    def __init__(
        self,
        descriptor: QueryDescriptor,
        model: type[Model] | None = None,
        database: Database | None = None,
        eager: tuple[EagerRequest, ...] = (),
        trashed: TrashMode = TrashMode.WITHOUT,
        removed_scopes: frozenset[str] = frozenset(),
    ) -> None:
        self._descriptor = descriptor
        self._model = model
        self._database = database
        self._eager = eager
        self._trashed = trashed
        self._removed_scopes = removed_scopes

    @classmethod
    def for_table(cls, table: str, database: Database | None = None) -> Builder:
        return cls(QueryDescriptor(table=table), database=database)

    @classmethod
    def for_model(cls, model: type[Model], database: Database | None = None) -> Builder:
        return cls(QueryDescriptor(table=model.table), model=model, database=database)

    def __repr__(self) -> str:
        target = self._model.__name__ if self._model else self._descriptor.table
        return f"<Builder {target}: {self.to_sql()}>"

    def __getattr__(self, name: str) -> Any:
        # Local scopes: Post.query().published() -> scope("published")
        if not name.startswith("_") and self._model is not None:
            if name in self._model._meta.local_scopes:
                return partial(self.scope, name)
        raise AttributeError(f"'Builder' object has no attribute {name!r}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def descriptor(self) -> QueryDescriptor:
        return self._descriptor

    @property
    def model(self) -> type[Model] | None:
        return self._model

    @property
    def eager_loads(self) -> tuple[EagerRequest, ...]:
        return self._eager

    @property
    def database(self) -> Database:
        if self._database is not None:
            return self._database
        from orm_engine.application.database import get_database

        return get_database()

    @property
    def grammar(self) -> MySqlGrammar:
        # Compiling never opens a connection
        if self._database is not None:
            return self._database.grammar
        return _GRAMMAR

    def _derive(self, **changes: Any) -> Builder:
        state = {
            "descriptor": self._descriptor,
            "model": self._model,
            "database": self._database,
            "eager": self._eager,
            "trashed": self._trashed,
            "removed_scopes": self._removed_scopes,
        }
        state.update(changes)
        return Builder(**state)

    def _with(self, descriptor: QueryDescriptor) -> Builder:
        return self._derive(descriptor=descriptor)

    def _add_where(self, where: Where) -> Builder:
        return self._with(self._descriptor.add_where(where))

    def _bare(self) -> Builder:
        """A builder on the same table with no predicates and no implicit scopes."""
        return Builder(
            QueryDescriptor(table=self._descriptor.table),
            model=self._model,
            database=self._database,
            trashed=TrashMode.WITH,
            removed_scopes=frozenset(self._scope_names()),
        )

    def _scope_names(self) -> Iterable[str]:
        return self._model._meta.global_scopes.keys() if self._model is not None else ()

    def qualify(self, column: str) -> str:
        """Prefix column with the table name unless already qualified."""
        if isinstance(column, Raw) or "." in column:
            return column
        return f"{self._descriptor.table}.{column}"

    def _key_column(self) -> str:
        key = self._model.primary_key if self._model is not None else "id"
        return self.qualify(key)

    @staticmethod
    def _check_operator(operator: str) -> str:
        normalized = str(operator).strip().lower()
        if normalized not in MySqlGrammar.operators:
            raise QueryConstructionError(f"Illegal operator {operator!r}")
        return normalized

    # ------------------------------------------------------------------
    # Projection and source
    # ------------------------------------------------------------------

    def select(self, *columns: str | Raw) -> Builder:
        flat = _flatten(columns)
        return self._with(self._descriptor.derive(columns=tuple(flat) or ("*",)))

    def add_select(self, *columns: str | Raw) -> Builder:
        return self._with(self._descriptor.add_columns(*_flatten(columns)))

    def select_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Builder:
        return self.add_select(Raw(sql, tuple(bindings)))

    def distinct(self, value: bool = True) -> Builder:
        return self._with(self._descriptor.derive(distinct=value))

    def from_table(self, table: str) -> Builder:
        return self._with(self._descriptor.derive(table=table))

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def where(
        self,
        column: str | Mapping[str, Any] | Callable[[Builder], Builder],
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: Boolean | str = Boolean.AND,
    ) -> Builder:
        """Add a predicate.

        Forms:
            where("votes", 100)                 # votes = 100
            where("votes", ">", 100)
            where({"status": "open", "kind": 2}) # grouped ANDs
            where(lambda q: q.where(...).or_where(...))  # nested group
            where("deleted_at", None)           # IS NULL
        """
        boolean = _boolean(boolean)

        if isinstance(column, Mapping):
            group: list[Where] = []
            for key, val in column.items():
                group.append(NullWhere(key) if val is None else BasicWhere(key, "=", val))
            return self._add_where(NestedWhere(tuple(group), boolean))

        if callable(column):
            return self._add_where(NestedWhere(self._nested_wheres(column), boolean))

        if value is _MISSING:
            if operator is _MISSING:
                raise QueryConstructionError(f"where({column!r}) needs a value")
            operator, value = "=", operator

        operator = self._check_operator(operator)
        if value is None:
            if operator == "=":
                return self._add_where(NullWhere(column, boolean))
            if operator in ("!=", "<>"):
                return self._add_where(NullWhere(column, boolean, negated=True))
            raise QueryConstructionError(f"Operator {operator!r} cannot compare with NULL")
        return self._add_where(BasicWhere(column, operator, value, boolean))

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Builder:
        return self.where(column, operator, value, Boolean.OR)

    def where_not(
        self,
        column: Any,
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: Boolean | str = Boolean.AND,
    ) -> Builder:
        """Add a negated predicate or negated nested group."""
        if callable(column) and not isinstance(column, Mapping):
            wheres = self._nested_wheres(column)
        else:
            wheres = self._bare().where(column, operator, value)._descriptor.wheres
        return self._add_where(NestedWhere(wheres, _boolean(boolean), negated=True))

    def or_where_not(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Builder:
        return self.where_not(column, operator, value, Boolean.OR)

    def _nested_wheres(self, callback: Callable[[Builder], Builder]) -> tuple[Where, ...]:
        result = _require_builder(callback(self._bare()), "A nested where callback")
        return result._descriptor.wheres

    def where_in(
        self,
        column: str,
        values: Iterable[Any],
        boolean: Boolean | str = Boolean.AND,
        negated: bool = False,
    ) -> Builder:
        if isinstance(values, Builder):
            compiled = values.to_compiled()
            keyword = "NOT IN" if negated else "IN"
            sql = f"{self.grammar.wrap(column)} {keyword} ({compiled.sql})"
            return self._add_where(RawWhere(sql, compiled.params, _boolean(boolean)))
        if isinstance(values, (str, bytes)):
            raise QueryConstructionError("where_in() needs an iterable of values, not a string")
        items = tuple(v.get_key() if hasattr(v, "get_key") else v for v in values)
        return self._add_where(InWhere(column, items, _boolean(boolean), negated))

    def where_not_in(self, column: str, values: Iterable[Any]) -> Builder:
        return self.where_in(column, values, Boolean.AND, negated=True)

    def or_where_in(self, column: str, values: Iterable[Any]) -> Builder:
        return self.where_in(column, values, Boolean.OR)

    def or_where_not_in(self, column: str, values: Iterable[Any]) -> Builder:
        return self.where_in(column, values, Boolean.OR, negated=True)

    def where_null(
        self, column: str | Sequence[str], boolean: Boolean | str = Boolean.AND, negated: bool = False
    ) -> Builder:
        builder = self
        columns = [column] if isinstance(column, str) else list(column)
        for name in columns:
            builder = builder._add_where(NullWhere(name, _boolean(boolean), negated))
        return builder

    def where_not_null(self, column: str | Sequence[str]) -> Builder:
        return self.where_null(column, Boolean.AND, negated=True)

    def or_where_null(self, column: str) -> Builder:
        return self.where_null(column, Boolean.OR)

    def or_where_not_null(self, column: str) -> Builder:
        return self.where_null(column, Boolean.OR, negated=True)

    def where_between(
        self,
        column: str,
        values: Sequence[Any],
        boolean: Boolean | str = Boolean.AND,
        negated: bool = False,
    ) -> Builder:
        """Add [NOT] BETWEEN low AND high.

        Raises:
            QueryConstructionError: Unless exactly two bounds are given
        """
        bounds = tuple(values)
        if len(bounds) != 2:
            raise QueryConstructionError(
                f"where_between() needs exactly two bounds, got {len(bounds)}"
            )
        return self._add_where(BetweenWhere(column, bounds[0], bounds[1], _boolean(boolean), negated))

    def where_not_between(self, column: str, values: Sequence[Any]) -> Builder:
        return self.where_between(column, values, Boolean.AND, negated=True)

    def or_where_between(self, column: str, values: Sequence[Any]) -> Builder:
        return self.where_between(column, values, Boolean.OR)

    def or_where_not_between(self, column: str, values: Sequence[Any]) -> Builder:
        return self.where_between(column, values, Boolean.OR, negated=True)

    def where_column(
        self,
        first: str,
        operator: str,
        second: str | object = _MISSING,
        boolean: Boolean | str = Boolean.AND,
    ) -> Builder:
        if second is _MISSING:
            operator, second = "=", operator
        return self._add_where(
            ColumnWhere(first, self._check_operator(operator), second, _boolean(boolean))
        )

    def or_where_column(self, first: str, operator: str, second: str | object = _MISSING) -> Builder:
        return self.where_column(first, operator, second, Boolean.OR)

    def where_raw(
        self, sql: str, bindings: Sequence[Any] = (), boolean: Boolean | str = Boolean.AND
    ) -> Builder:
        return self._add_where(RawWhere(sql, tuple(bindings), _boolean(boolean)))

    def or_where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Builder:
        return self.where_raw(sql, bindings, Boolean.OR)

    def where_exists(
        self,
        query: Builder | Callable[[Builder], Builder],
        boolean: Boolean | str = Boolean.AND,
        negated: bool = False,
    ) -> Builder:
        if not isinstance(query, Builder):
            query = _require_builder(query(self._bare()), "A where_exists callback")
        return self._add_where(ExistsWhere(query.effective_descriptor(), _boolean(boolean), negated))

    def where_not_exists(self, query: Builder | Callable[[Builder], Builder]) -> Builder:
        return self.where_exists(query, negated=True)

    # ------------------------------------------------------------------
    # Relation existence
    # ------------------------------------------------------------------

    def where_has(
        self,
        relation: str,
        callback: Callable[[Builder], Builder] | None = None,
        operator: str = ">=",
        count: int = 1,
        boolean: Boolean | str = Boolean.AND,
        negated: bool = False,
    ) -> Builder:
        """Keep rows with related rows matching callback.

        Dotted paths nest: where_has("comments.author", cb) keeps rows with a
        comment whose author matches cb.
        """
        if "." in relation:
            head, rest = relation.split(".", 1)
            return self.where_has(
                head,
                lambda q: q.where_has(rest, callback, operator, count),
                boolean=boolean,
                negated=negated,
            )

        from orm_engine.application.relations import relation_existence_query

        query = relation_existence_query(self._require_model("where_has"), relation, self._database)
        if callback is not None:
            query = _require_builder(callback(query), "A where_has callback")

        operator = self._check_operator(operator)
        if operator == ">=" and count == 1:
            return self._add_where(ExistsWhere(query.effective_descriptor(), _boolean(boolean), negated))

        compiled = self.grammar.compile_aggregate(query.effective_descriptor(), "count")
        sql = f"({compiled.sql}) {operator.upper()} ?"
        if negated:
            sql = f"NOT ({sql})"
        return self._add_where(RawWhere(sql, compiled.params + (count,), _boolean(boolean)))

    def or_where_has(
        self, relation: str, callback: Callable[[Builder], Builder] | None = None
    ) -> Builder:
        return self.where_has(relation, callback, boolean=Boolean.OR)

    def where_doesnt_have(
        self, relation: str, callback: Callable[[Builder], Builder] | None = None
    ) -> Builder:
        return self.where_has(relation, callback, negated=True)

    def or_where_doesnt_have(
        self, relation: str, callback: Callable[[Builder], Builder] | None = None
    ) -> Builder:
        return self.where_has(relation, callback, boolean=Boolean.OR, negated=True)

    def has(self, relation: str, operator: str = ">=", count: int = 1) -> Builder:
        return self.where_has(relation, None, operator, count)

    def doesnt_have(self, relation: str) -> Builder:
        return self.where_has(relation, negated=True)

    # ------------------------------------------------------------------
    # Joins, grouping, ordering, limits, locks
    # ------------------------------------------------------------------

    def join(
        self,
        table: str,
        first: str,
        operator: str,
        second: str | object = _MISSING,
        kind: JoinKind = JoinKind.INNER,
    ) -> Builder:
        if second is _MISSING:
            operator, second = "=", operator
        join = Join(table, first, self._check_operator(operator), second, kind)
        return self._with(self._descriptor.add_join(join))

    def left_join(self, table: str, first: str, operator: str, second: str | object = _MISSING) -> Builder:
        return self.join(table, first, operator, second, JoinKind.LEFT)

    def right_join(self, table: str, first: str, operator: str, second: str | object = _MISSING) -> Builder:
        return self.join(table, first, operator, second, JoinKind.RIGHT)

    def cross_join(self, table: str) -> Builder:
        return self._with(self._descriptor.add_join(Join(table, "", "=", "", JoinKind.CROSS)))

    def group_by(self, *columns: str) -> Builder:
        return self._with(self._descriptor.derive(groups=self._descriptor.groups + tuple(_flatten(columns))))

    def having(
        self,
        column: str,
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: Boolean | str = Boolean.AND,
    ) -> Builder:
        if value is _MISSING:
            operator, value = "=", operator
        having = BasicWhere(column, self._check_operator(operator), value, _boolean(boolean))
        return self._with(self._descriptor.add_having(having))

    def or_having(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> Builder:
        return self.having(column, operator, value, Boolean.OR)

    def having_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: Boolean | str = Boolean.AND) -> Builder:
        return self._with(self._descriptor.add_having(RawWhere(sql, tuple(bindings), _boolean(boolean))))

    def order_by(self, column: str, direction: str | Direction = "asc") -> Builder:
        return self._with(self._descriptor.add_order(Order(column, Direction.parse(direction))))

    def order_by_desc(self, column: str) -> Builder:
        return self.order_by(column, Direction.DESC)

    def order_by_raw(self, sql: str, bindings: Sequence[Any] = ()) -> Builder:
        return self._with(self._descriptor.add_order(RawOrder(sql, tuple(bindings))))

    def latest(self, column: str | None = None) -> Builder:
        return self.order_by(column or self._created_at_column(), Direction.DESC)

    def oldest(self, column: str | None = None) -> Builder:
        return self.order_by(column or self._created_at_column(), Direction.ASC)

    def _created_at_column(self) -> str:
        return self._model.created_at_column if self._model is not None else "created_at"

    def reorder(self, column: str | None = None, direction: str | Direction = "asc") -> Builder:
        builder = self._with(self._descriptor.derive(orders=()))
        return builder.order_by(column, direction) if column else builder

    def limit(self, value: int | None) -> Builder:
        if value is not None and value < 0:
            raise QueryConstructionError(f"Limit must not be negative, got {value}")
        return self._with(self._descriptor.derive(limit=value))

    take = limit

    def offset(self, value: int | None) -> Builder:
        if value is not None and value < 0:
            raise QueryConstructionError(f"Offset must not be negative, got {value}")
        return self._with(self._descriptor.derive(offset=value or None))

    skip = offset

    def for_page(self, page: int, per_page: int = 15) -> Builder:
        page = max(1, int(page))
        return self.offset((page - 1) * per_page).limit(per_page)

    def lock_for_update(self) -> Builder:
        return self._with(self._descriptor.derive(lock="update"))

    def shared_lock(self) -> Builder:
        return self._with(self._descriptor.derive(lock="shared"))

    # ------------------------------------------------------------------
    # Model behaviour: eager loads, trashed rows, scopes
    # ------------------------------------------------------------------

    def with_(self, *relations: Any) -> Builder:
        """Request relations to be eager loaded with the results.

        Accepts names, dotted paths, lists of those, and mappings of path to
        a constraint callback: with_("author", {"comments": lambda q: q.latest()}).
        A later request for the same path replaces the earlier constraint.
        """
        requests = dict(self._eager)
        for path, constraint in normalize_eager(relations):
            if path not in requests or constraint is not None:
                requests[path] = constraint
        return self._derive(eager=tuple(requests.items()))

    def without(self, *relations: str) -> Builder:
        drop = set(_flatten(relations))
        kept = tuple(
            (path, constraint)
            for path, constraint in self._eager
            if not any(path == name or path.startswith(name + ".") for name in drop)
        )
        return self._derive(eager=kept)

    def with_trashed(self, value: bool = True) -> Builder:
        return self._derive(trashed=TrashMode.WITH if value else TrashMode.WITHOUT)

    def without_trashed(self) -> Builder:
        return self._derive(trashed=TrashMode.WITHOUT)

    def only_trashed(self) -> Builder:
        return self._derive(trashed=TrashMode.ONLY)

    def without_global_scope(self, name: str) -> Builder:
        return self._derive(removed_scopes=self._removed_scopes | {name})

    def without_global_scopes(self, *names: str) -> Builder:
        removed = set(names) if names else set(self._scope_names())
        return self._derive(removed_scopes=self._removed_scopes | removed)

    def for_tenant(self, tenant_id: Any) -> Builder:
        """Restrict to one tenant's rows in place of the active-tenant scope."""
        model = self._require_model("for_tenant")
        column = getattr(model, "tenant_column", None) or DEFAULT_TENANT_COLUMN
        query = self.without_global_scope(TENANCY_SCOPE)
        return query.where(query.qualify(column), tenant_id)

    def scope(self, name: str, *args: Any, **kwargs: Any) -> Builder:
        """Apply a registered local scope."""
        model = self._require_model("scope")
        fn = model._meta.local_scopes.get(name)
        if fn is None:
            raise QueryConstructionError(f"Call to undefined scope [{name}] on model [{model.__name__}]")
        return _require_builder(fn(self, *args, **kwargs), f"Scope [{name}]")

    def when(
        self,
        condition: Any,
        callback: Callable[[Builder], Builder],
        default: Callable[[Builder], Builder] | None = None,
    ) -> Builder:
        if condition:
            return _require_builder(callback(self), "A when() callback")
        if default is not None:
            return _require_builder(default(self), "A when() default callback")
        return self

    def tap(self, callback: Callable[[Builder], Any]) -> Builder:
        callback(self)
        return self

    def _require_model(self, operation: str) -> type[Model]:
        if self._model is None:
            raise QueryConstructionError(f"{operation}() needs a model-bound query")
        return self._model

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def effective_descriptor(self) -> QueryDescriptor:
        """The descriptor with global scopes and the soft-delete predicate applied."""
        descriptor = self._descriptor
        model = self._model
        if model is None:
            return descriptor

        extra = self._bare()
        for name, scope in model._meta.global_scopes.items():
            if name in self._removed_scopes:
                continue
            applied = scope.apply(extra, model) if hasattr(scope, "apply") else scope(extra)
            extra = _require_builder(applied, f"Global scope [{name}]")

        wheres = list(extra._descriptor.wheres)
        if model.soft_deletes and self._trashed is not TrashMode.WITH:
            column = self.qualify(model.deleted_at_column)
            wheres.append(NullWhere(column, negated=self._trashed is TrashMode.ONLY))

        if not wheres and not extra._descriptor.joins and not extra._descriptor.orders:
            return descriptor

        own = descriptor.wheres
        if wheres and _has_or(own):
            own = (NestedWhere(own),)
        return descriptor.derive(
            wheres=own + tuple(wheres),
            joins=descriptor.joins + extra._descriptor.joins,
            orders=descriptor.orders + extra._descriptor.orders,
        )

    def to_compiled(self) -> CompiledStatement:
        return self.grammar.compile_select(self.effective_descriptor())

    def to_sql(self) -> str:
        return self.to_compiled().sql

    def get_bindings(self) -> tuple[Any, ...]:
        return self.to_compiled().params

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _hydrate(self, rows: Iterable[Mapping[str, Any]]) -> Collection:
        if self._model is None:
            return Collection(dict(row) for row in rows)
        return self._model.hydrate(rows)

    def get(self, columns: Sequence[str] | None = None) -> Collection:
        """Execute the query and return a Collection of entities (or rows)."""
        builder = self.select(*columns) if columns else self
        rows = builder.database.run(builder.to_compiled()).fetchall()
        results = builder._hydrate(rows)
        if builder._eager and builder._model is not None and results:
            EagerLoader(builder.database).load(results, builder._eager)
        return results

    def all(self) -> Collection:
        return self.get()

    def first(self, columns: Sequence[str] | None = None) -> Any:
        return self.limit(1).get(columns).first()

    def first_or_fail(self, columns: Sequence[str] | None = None) -> Any:
        result = self.first(columns)
        if result is None:
            raise ModelNotFoundError(self._target_name())
        return result

    def first_where(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> Any:
        return self.where(column, operator, value).first()

    def find(self, key: Any, columns: Sequence[str] | None = None) -> Any:
        if isinstance(key, (list, tuple, set, frozenset)):
            return self.find_many(key, columns)
        return self.where(self._key_column(), key).first(columns)

    def find_many(self, keys: Iterable[Any], columns: Sequence[str] | None = None) -> Collection:
        keys = list(keys)
        if not keys:
            return Collection()
        return self.where_in(self._key_column(), keys).get(columns)

    def find_or_fail(self, key: Any, columns: Sequence[str] | None = None) -> Any:
        if isinstance(key, (list, tuple, set, frozenset)):
            keys = list(key)
            results = self.find_many(keys, columns)
            found = {str(k) for k in results.model_keys()}
            missing = [k for k in keys if str(k) not in found]
            if missing:
                raise ModelNotFoundError(self._target_name(), missing)
            return results
        result = self.find(key, columns)
        if result is None:
            raise ModelNotFoundError(self._target_name(), [key])
        return result

    def sole(self, columns: Sequence[str] | None = None) -> Any:
        """Return the only matching row.

        Raises:
            ModelNotFoundError: If nothing matched
            MultipleRecordsFoundError: If more than one row matched
        """
        results = self.limit(2).get(columns)
        if not results:
            raise ModelNotFoundError(self._target_name())
        if len(results) > 1:
            raise MultipleRecordsFoundError(len(results))
        return results[0]

    def _target_name(self) -> str:
        return self._model.__name__ if self._model is not None else self._descriptor.table

    def value(self, column: str) -> Any:
        result = self._derive(eager=()).first([column])
        if result is None:
            return None
        key = _result_key(column)
        return result.get_attribute(key) if self._model is not None else result.get(key)

    def pluck(self, column: str, key: str | None = None) -> Collection | dict[Any, Any]:
        """Return one column's values, optionally keyed by another column."""
        columns = [column] if key is None else [column, key]
        results = self._derive(eager=()).get(columns)
        return results.pluck(_result_key(column), _result_key(key) if key else None)

    def aggregate(self, function: str, column: str = "*") -> Any:
        compiled = self.grammar.compile_aggregate(self.effective_descriptor(), function, column)
        row = self.database.select_one(compiled.sql, compiled.params)
        return None if row is None else row.get("aggregate")

    def count(self, column: str = "*") -> int:
        return int(self.aggregate("count", column) or 0)

    def max(self, column: str) -> Any:
        return self.aggregate("max", column)

    def min(self, column: str) -> Any:
        return self.aggregate("min", column)

    def sum(self, column: str) -> Any:
        return self.aggregate("sum", column) or 0

    def avg(self, column: str) -> Any:
        return self.aggregate("avg", column)

    average = avg

    def exists(self) -> bool:
        compiled = self.grammar.compile_exists(self.effective_descriptor())
        row = self.database.select_one(compiled.sql, compiled.params)
        return bool(row and row.get("exists"))

    def doesnt_exist(self) -> bool:
        return not self.exists()

    # ------------------------------------------------------------------
    # Pagination and bounded iteration
    # ------------------------------------------------------------------

    @staticmethod
    def _page_size(per_page: int | None) -> int:
        config = get_config().models
        size = config.per_page if per_page is None else int(per_page)
        return max(1, min(size, config.max_per_page))

    def paginate(
        self,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
    ) -> LengthAwarePaginator:
        """Count the matching rows, then fetch one page of them."""
        per_page = self._page_size(per_page)
        page = max(1, int(page))
        total = self.count()
        items = self.for_page(page, per_page).get(columns) if total else Collection()
        return LengthAwarePaginator(items=items, total=total, per_page=per_page, current_page=page)

    def simple_paginate(
        self,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
    ) -> Paginator:
        """Fetch one page without counting; one extra row detects a next page."""
        per_page = self._page_size(per_page)
        page = max(1, int(page))
        results = self.offset((page - 1) * per_page).limit(per_page + 1).get(columns)
        has_more = len(results) > per_page
        return Paginator(
            items=Collection(results[:per_page]),
            per_page=per_page,
            current_page=page,
            has_more=has_more,
        )

    def chunk(self, count: int, callback: Callable[[Collection], Any]) -> bool:
        """Process results count rows at a time using offset paging.

        Returns False if callback stopped the iteration by returning False.
        """
        if count < 1:
            raise QueryConstructionError("Chunk size must be at least 1")
        query = self
        if not self._descriptor.orders:
            if self._model is None:
                raise QueryConstructionError("chunk() on a table query needs an order_by() clause")
            query = self.order_by(self._key_column())

        page = 1
        while True:
            results = query.for_page(page, count).get()
            if not results:
                break
            if callback(results) is False:
                return False
            if len(results) < count:
                break
            page += 1
        return True

    def _keyset_pages(self, count: int, column: str | None, alias: str | None) -> Iterator[Collection]:
        if count < 1:
            raise QueryConstructionError("Chunk size must be at least 1")
        column = column or self._key_column()
        alias = alias or _result_key(column)
        base = self
        if _has_or(self._descriptor.wheres):
            base = self._with(self._descriptor.derive(wheres=(NestedWhere(self._descriptor.wheres),)))
        base = base.reorder().order_by(column).limit(count)

        last = _MISSING
        while True:
            query = base if last is _MISSING else base.where(column, ">", last)
            results = query.get()
            if not results:
                return
            yield results
            tail = results[-1]
            last = tail.get_raw_attribute(alias) if self._model is not None else tail.get(alias)
            if last is None:
                raise QueryConstructionError(f"Keyset column [{alias}] is missing from the results")
            if len(results) < count:
                return

    def chunk_by_id(
        self,
        count: int,
        callback: Callable[[Collection], Any],
        column: str | None = None,
        alias: str | None = None,
    ) -> bool:
        """Process results count rows at a time, anchored on the last seen key.

        Each page is ``WHERE column > last ORDER BY column LIMIT count``, so
        rows inserted or deleted between pages never shift later pages.
        """
        for results in self._keyset_pages(count, column, alias):
            if callback(results) is False:
                return False
        return True

    def lazy(self, chunk_size: int | None = None, column: str | None = None) -> Iterator[Any]:
        """Yield entities one by one, fetching chunk_size rows per statement."""
        size = chunk_size or get_config().models.chunk_size
        for results in self._keyset_pages(size, column, None):
            yield from results

    def cursor(self) -> Iterator[Any]:
        """Run one statement and hydrate rows one at a time while iterating."""
        compiled = self.to_compiled()
        cursor = self.database.run(compiled)
        if self._model is None:
            for row in cursor:
                yield dict(row)
            return
        for row in cursor:
            yield self._model.new_from_row(row)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _timestamp_value(self) -> str:
        return fresh_timestamp().strftime(get_config().models.date_format)

    def insert(self, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> bool:
        """Insert one row or a batch of rows in one statement."""
        rows = [values] if isinstance(values, Mapping) else list(values)
        if not rows:
            return True
        compiled = self.grammar.compile_insert(self._descriptor.table, rows)
        return self.database.insert(compiled.sql, compiled.params)

    def insert_get_id(self, values: Mapping[str, Any]) -> Any:
        compiled = self.grammar.compile_insert(self._descriptor.table, [values])
        self.database.insert(compiled.sql, compiled.params)
        return self.database.last_insert_id()

    def upsert(
        self,
        values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        unique_by: str | Sequence[str],
        update: Sequence[str] | None = None,
    ) -> int:
        """Insert rows, updating the given columns of rows that already exist.

        unique_by names the columns of the unique index the rows collide on;
        they are excluded from the default update column list.
        """
        rows = [dict(values)] if isinstance(values, Mapping) else [dict(v) for v in values]
        if not rows:
            return 0
        unique = [unique_by] if isinstance(unique_by, str) else list(unique_by)
        model = self._model
        if model is not None and model.timestamps:
            now = self._timestamp_value()
            for row in rows:
                row.setdefault(model.created_at_column, now)
                row.setdefault(model.updated_at_column, now)
        if update is None:
            skip = set(unique)
            if model is not None and model.timestamps:
                skip.add(model.created_at_column)
            update = [column for column in rows[0] if column not in skip]
        compiled = self.grammar.compile_upsert(self._descriptor.table, rows, update)
        return self.database.affecting_statement(compiled.sql, compiled.params)

    def update(self, values: Mapping[str, Any]) -> int:
        """Update matching rows and return the affected row count."""
        values = dict(values)
        model = self._model
        if model is not None and model.timestamps and model.updated_at_column not in values:
            values[model.updated_at_column] = self._timestamp_value()
        compiled = self.grammar.compile_update(self._write_descriptor(), values)
        return self.database.affecting_statement(compiled.sql, compiled.params)

    def increment(self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise QueryConstructionError(f"Increment amount must be numeric, got {amount!r}")
        wrapped = self.grammar.wrap(column)
        values = {column: Raw(f"{wrapped} + ?", (amount,))}
        values.update(extra or {})
        return self.update(values)

    def decrement(self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise QueryConstructionError(f"Decrement amount must be numeric, got {amount!r}")
        wrapped = self.grammar.wrap(column)
        values = {column: Raw(f"{wrapped} - ?", (amount,))}
        values.update(extra or {})
        return self.update(values)

    def delete(self, key: Any = None) -> int:
        """Delete matching rows; soft-deletable models only stamp the deletion column."""
        builder = self.where(self._key_column(), key) if key is not None else self
        model = self._model
        if model is not None and model.soft_deletes:
            return builder.update({model.deleted_at_column: self._timestamp_value()})
        return builder._physical_delete()

    def force_delete(self) -> int:
        """Physically delete matching rows, trashed ones included."""
        builder = self if self._trashed is TrashMode.ONLY else self.with_trashed()
        return builder._physical_delete()

    def _write_descriptor(self) -> QueryDescriptor:
        descriptor = self.effective_descriptor()
        if descriptor.limit is None:
            descriptor = descriptor.derive(orders=())
        return descriptor.derive(offset=None, lock=None)

    def _physical_delete(self) -> int:
        compiled = self.grammar.compile_delete(self._write_descriptor())
        return self.database.affecting_statement(compiled.sql, compiled.params)

    def restore(self) -> int:
        """Clear the deletion column of matching trashed rows."""
        model = self._require_model("restore")
        return self.only_trashed().update({model.deleted_at_column: None})


def _flatten(values: Iterable[Any]) -> list[Any]:
    flat: list[Any] = []
    for value in values:
        if isinstance(value, (list, tuple, set, frozenset)):
            flat.extend(value)
        else:
            flat.append(value)
    return flat
