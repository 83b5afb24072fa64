"""Batched relation loading.

Given N parent entities and a set of relation paths, the loader issues one
statement per relation per level, whatever N is:

    Post.with_("comments.author").get()

    SELECT * FROM posts                               -- the parents
    SELECT * FROM comments WHERE post_id IN (...)     -- level 1
    SELECT * FROM users WHERE id IN (...)             -- level 2

Polymorphic owned-by relations cost one statement per distinct stored type.
Parents whose relation has no candidate keys get the empty default and no
statement is issued.

Each (relation, parent type) pair is processed as a LoadStep moving through

    PENDING -> RESOLVED -> BATCHED -> LOADED -> ASSIGNED -> NESTED
                      \\-> SKIPPED (no keys)

with every transition logged at debug level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from orm_engine.application.registry import get_registry
from orm_engine.domain.entities.collection import Collection
from orm_engine.domain.entities.relation import Relation, RelationKind
from orm_engine.domain.exceptions import QueryConstructionError
from orm_engine.infrastructure.logging import get_logger
from orm_engine.infrastructure.metrics import get_metrics
from orm_engine.infrastructure.tracing import trace_span

if TYPE_CHECKING:
    from orm_engine.application.database import Database
    from orm_engine.application.model import Model
    from orm_engine.application.query_builder import Builder

logger = get_logger(__name__)

Constraint = Callable[["Builder"], "Builder"]
EagerRequest = tuple[str, Constraint | None]


def normalize_eager(relations: Any) -> list[EagerRequest]:
    """Flatten the accepted eager-load request forms into (path, constraint) pairs.

    Accepted forms: "author", "comments.author", ["a", "b"],
    {"comments": lambda q: q.latest()} and ("comments", constraint).
    """
    requests: list[EagerRequest] = []
    if relations is None:
        return requests
    if isinstance(relations, str):
        return [(relations, None)] if relations else []
    if isinstance(relations, Mapping):
        for path, constraint in relations.items():
            if constraint is not None and not callable(constraint):
                raise QueryConstructionError(f"Eager-load constraint for [{path}] must be callable")
            requests.append((path, constraint))
        return requests
    if (
        isinstance(relations, tuple)
        and len(relations) == 2
        and isinstance(relations[0], str)
        and (relations[1] is None or callable(relations[1]))
    ):
        return [(relations[0], relations[1])]
    for item in relations:
        requests.extend(normalize_eager(item))
    return requests


@dataclass
class LoadRequest:
    """One relation to load at one level, with the requests nested below it."""

    name: str
    constraint: Constraint | None = None
    children: dict[str, LoadRequest] = field(default_factory=dict)


def build_request_tree(requests: Iterable[EagerRequest]) -> dict[str, LoadRequest]:
    """Turn dotted paths into a tree. A constraint applies to the last segment."""
    tree: dict[str, LoadRequest] = {}
    for path, constraint in requests:
        level = tree
        segments = path.split(".")
        for index, segment in enumerate(segments):
            node = level.get(segment)
            if node is None:
                node = level[segment] = LoadRequest(segment)
            if index == len(segments) - 1 and constraint is not None:
                node.constraint = constraint
            level = node.children
    return tree


class LoadState(str, Enum):
    """Progress of one load step."""

    PENDING = "pending"
    RESOLVED = "resolved"
    BATCHED = "batched"
    LOADED = "loaded"
    ASSIGNED = "assigned"
    NESTED = "nested"
    SKIPPED = "skipped"


@dataclass
class LoadStep:
    """Loading one relation for the parents of one type."""

    request: LoadRequest
    model: type[Model]
    parents: list[Model]
    relation: Relation | None = None
    state: LoadState = LoadState.PENDING

    def advance(self, state: LoadState, **context: Any) -> None:
        logger.debug(
            "Eager load step",
            model=self.model.__name__,
            relation=self.request.name,
            state=state.value,
            previous=self.state.value,
            **context,
        )
        self.state = state


def _key(value: Any) -> str:
    """Dictionary key for matching parents to children across driver types.

    Integral floats and decimals match their integer form: 1, 1.0 and
    Decimal("1.00") share the key "1".
    """
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(int(value))
    return str(value)


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen: dict[str, Any] = {}
    for value in values:
        if value is not None:
            seen.setdefault(_key(value), value)
    return list(seen.values())


class EagerLoader:
    """Loads requested relations onto already-hydrated entities."""

    def __init__(self, database: Database | None = None) -> None:
        self._database = database

    def load(self, models: Iterable[Model], relations: Any) -> None:
        """Load every requested relation path onto models, replacing loaded values."""
        self._run(models, relations, missing_only=False)

    def load_missing(self, models: Iterable[Model], relations: Any) -> None:
        """Load only the relations not already loaded, descending into loaded ones."""
        self._run(models, relations, missing_only=True)

    def _run(self, models: Iterable[Model], relations: Any, missing_only: bool) -> None:
        parents = [model for model in models if model is not None]
        tree = build_request_tree(normalize_eager(relations))
        if not parents or not tree:
            return
        with trace_span("orm.eager_load", {"orm.relations": ",".join(tree)}):
            self._load_level(parents, tree, missing_only)

    def _load_level(
        self, parents: Sequence[Model], requests: Mapping[str, LoadRequest], missing_only: bool
    ) -> None:
        for request in requests.values():
            for model, group in _partition_by_type(parents).items():
                step = LoadStep(request, model, group)
                pending = group
                if missing_only:
                    pending = [p for p in group if not p.relation_loaded(request.name)]
                if pending:
                    step.parents = pending
                    self._load_step(step)
                if request.children:
                    children = _related_of(group, request.name)
                    if children:
                        self._load_level(children, request.children, missing_only)
                        step.advance(LoadState.NESTED, children=len(children))

    # ------------------------------------------------------------------
    # One step
    # ------------------------------------------------------------------

    def _load_step(self, step: LoadStep) -> None:
        relation = step.model._meta.relation(step.request.name)
        step.relation = relation
        step.advance(LoadState.RESOLVED, kind=relation.kind.value)

        loader = {
            RelationKind.TO_ONE: self._load_has,
            RelationKind.TO_MANY: self._load_has,
            RelationKind.OWNED_BY: self._load_owned_by,
            RelationKind.MANY_TO_MANY: self._load_many_to_many,
            RelationKind.POLYMORPHIC_OWNED_BY: self._load_morph_to,
            RelationKind.POLYMORPHIC_TO_MANY: self._load_morph_has,
            RelationKind.POLYMORPHIC_TO_ONE: self._load_morph_has,
        }[relation.kind]
        loaded = loader(step)

        outcome = "loaded" if loaded else "skipped"
        get_metrics().eager_loads_total.labels(relation_kind=relation.kind.value, outcome=outcome).inc()

    def _skip(self, step: LoadStep) -> bool:
        for parent in step.parents:
            parent.set_relation(step.request.name, step.relation.default_value())
        step.advance(LoadState.SKIPPED)
        return False

    def _query(self, target: type[Model], relation: Relation, request: LoadRequest) -> Builder:
        from orm_engine.application.query_builder import Builder, _require_builder

        query = Builder.for_model(target, database=self._database)
        if relation.constraint is not None:
            query = _require_builder(relation.constraint(query), f"Relation [{relation.name}] constraint")
        if request.constraint is not None:
            query = _require_builder(request.constraint(query), f"Eager-load constraint for [{request.name}]")
        return query

    def _assign(self, step: LoadStep, dictionary: Mapping[str, list[Model]], key_of: Callable[[Model], Any]) -> None:
        relation = step.relation
        name = step.request.name
        for parent in step.parents:
            key = key_of(parent)
            matches = dictionary.get(_key(key), []) if key is not None else []
            if relation.kind.is_plural:
                parent.set_relation(name, Collection(matches))
            else:
                parent.set_relation(name, matches[-1] if matches else None)
        step.advance(LoadState.ASSIGNED, parents=len(step.parents))

    # ------------------------------------------------------------------
    # Per-kind loaders
    # ------------------------------------------------------------------

    def _load_has(self, step: LoadStep) -> bool:
        relation = step.relation
        keys = _distinct(p.get_raw_attribute(relation.local_key) for p in step.parents)
        if not keys:
            return self._skip(step)
        step.advance(LoadState.BATCHED, keys=len(keys))

        query = self._query(relation.target, relation, step.request)
        results = query.where_in(query.qualify(relation.foreign_key), keys).get()
        step.advance(LoadState.LOADED, rows=len(results))

        dictionary: dict[str, list[Model]] = {}
        for result in results:
            dictionary.setdefault(_key(result.get_raw_attribute(relation.foreign_key)), []).append(result)
        self._assign(step, dictionary, lambda p: p.get_raw_attribute(relation.local_key))
        return True

    def _load_owned_by(self, step: LoadStep) -> bool:
        relation = step.relation
        keys = _distinct(p.get_raw_attribute(relation.foreign_key) for p in step.parents)
        if not keys:
            return self._skip(step)
        step.advance(LoadState.BATCHED, keys=len(keys))

        query = self._query(relation.target, relation, step.request)
        results = query.where_in(query.qualify(relation.owner_key), keys).get()
        step.advance(LoadState.LOADED, rows=len(results))

        dictionary: dict[str, list[Model]] = {}
        for result in results:
            dictionary.setdefault(_key(result.get_raw_attribute(relation.owner_key)), []).append(result)
        self._assign(step, dictionary, lambda p: p.get_raw_attribute(relation.foreign_key))
        return True

    def _load_many_to_many(self, step: LoadStep) -> bool:
        relation = step.relation
        keys = _distinct(p.get_raw_attribute(relation.parent_key) for p in step.parents)
        if not keys:
            return self._skip(step)
        step.advance(LoadState.BATCHED, keys=len(keys))

        results = pivot_query(relation, self._query(relation.target, relation, step.request)).where_in(
            f"{relation.pivot_table}.{relation.foreign_pivot_key}", keys
        ).get()
        step.advance(LoadState.LOADED, rows=len(results))

        dictionary: dict[str, list[Model]] = {}
        for result in results:
            pivot = attach_pivot(result, relation)
            dictionary.setdefault(_key(pivot.get_raw_attribute(relation.foreign_pivot_key)), []).append(result)
        self._assign(step, dictionary, lambda p: p.get_raw_attribute(relation.parent_key))
        return True

    def _load_morph_to(self, step: LoadStep) -> bool:
        relation = step.relation
        registry = get_registry()
        name = step.request.name

        by_alias: dict[str, list[Model]] = {}
        for parent in step.parents:
            alias = parent.get_raw_attribute(relation.type_column)
            if not alias or parent.get_raw_attribute(relation.id_column) is None:
                parent.set_relation(name, None)
                continue
            by_alias.setdefault(str(alias), []).append(parent)

        if not by_alias:
            step.advance(LoadState.SKIPPED)
            return False
        step.advance(LoadState.BATCHED, types=sorted(by_alias))

        for alias, parents in by_alias.items():
            target = registry.resolve_morph_alias(alias)
            if target is None:
                logger.warning("Unknown polymorphic type", relation=name, type=alias)
                for parent in parents:
                    parent.set_relation(name, None)
                continue

            ids = _distinct(p.get_raw_attribute(relation.id_column) for p in parents)
            query = self._query(target, relation, step.request)
            results = query.where_in(query.qualify(target.primary_key), ids).get()
            by_key = {_key(r.get_raw_attribute(target.primary_key)): r for r in results}
            for parent in parents:
                parent.set_relation(name, by_key.get(_key(parent.get_raw_attribute(relation.id_column))))
        step.advance(LoadState.ASSIGNED, parents=len(step.parents))
        return True

    def _load_morph_has(self, step: LoadStep) -> bool:
        relation = step.relation
        keys = _distinct(p.get_raw_attribute(relation.local_key) for p in step.parents)
        if not keys:
            return self._skip(step)
        step.advance(LoadState.BATCHED, keys=len(keys))

        alias = get_registry().morph_alias_for(step.model)
        query = self._query(relation.target, relation, step.request)
        results = (
            query.where(query.qualify(relation.type_column), alias)
            .where_in(query.qualify(relation.id_column), keys)
            .get()
        )
        step.advance(LoadState.LOADED, rows=len(results))

        dictionary: dict[str, list[Model]] = {}
        for result in results:
            dictionary.setdefault(_key(result.get_raw_attribute(relation.id_column)), []).append(result)
        self._assign(step, dictionary, lambda p: p.get_raw_attribute(relation.local_key))
        return True


# ----------------------------------------------------------------------
# Helpers shared with relation queries
# ----------------------------------------------------------------------


def pivot_query(relation: Relation, query: Builder) -> Builder:
    """Select the target rows joined to the pivot, pivot columns aliased pivot_<column>."""
    pivot = relation.pivot_table
    target_table = relation.target.table
    columns = (relation.foreign_pivot_key, relation.related_pivot_key) + relation.pivot_attribute_columns
    if query.descriptor.columns == ("*",):
        query = query.select(f"{target_table}.*")
    return query.add_select(*[f"{pivot}.{c} as pivot_{c}" for c in columns]).join(
        pivot,
        f"{pivot}.{relation.related_pivot_key}",
        "=",
        f"{target_table}.{relation.related_key}",
    )


def attach_pivot(result: Model, relation: Relation) -> Model:
    """Move the pivot_<column> attributes of result onto a Pivot entity under "pivot"."""
    from orm_engine.application.model import Pivot

    attributes = result.get_attributes()
    pivot_attributes = {}
    for key in list(attributes):
        if key.startswith("pivot_"):
            pivot_attributes[key[len("pivot_"):]] = attributes.pop(key)
    result.set_raw_attributes(attributes, sync=True)
    pivot = Pivot.from_pivot_row(relation.pivot_table, pivot_attributes)
    result.set_relation("pivot", pivot)
    return pivot


def _partition_by_type(models: Iterable[Model]) -> dict[type, list[Model]]:
    groups: dict[type, list[Model]] = {}
    for model in models:
        groups.setdefault(type(model), []).append(model)
    return groups


def _related_of(parents: Iterable[Model], name: str) -> list[Model]:
    related: dict[int, Model] = {}
    for parent in parents:
        if not parent.relation_loaded(name):
            continue
        value = parent.get_relation(name)
        if value is None:
            continue
        items = value if isinstance(value, list) else [value]
        for item in items:
            related.setdefault(id(item), item)
    return list(related.values())
