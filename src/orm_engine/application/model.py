"""Active Record entity base class.

An entity type is a subclass of Model. Defining the class registers it:

    class Post(Model):
        fillable = ("title", "body", "status")
        casts = {"published": "bool", "meta": "json"}
        soft_deletes = True

        author = belongs_to("User")
        comments = has_many("Comment")

        @scope
        def published(query):
            return query.where("published", True)

    post = Post.create({"title": "Hello"})
    posts = Post.where("status", "open").with_("comments.author").get()

Column values are read and written as attributes (post.title) or items
(post["title"]); names declared on the class (methods, relations, settings)
take precedence over columns.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from orm_engine.application.eager_loader import EagerLoader
from orm_engine.application.query_builder import Builder
from orm_engine.application.registry import CANCELLABLE_EVENTS, EVENTS, get_registry
from orm_engine.application.tenancy import current_tenant
from orm_engine.domain.entities.attributes import HasAttributes
from orm_engine.domain.entities.collection import Collection
from orm_engine.domain.entities.relation import Relation
from orm_engine.domain.exceptions import (
    ConcurrencyConflictError,
    ConfigurationError,
    IllegalStateTransitionError,
    ImmutableEntityError,
    LazyLoadingViolationError,
    ModelNotPersistedError,
    RelationshipContractError,
    ValidationFailedError,
)
from orm_engine.domain.services.casting import fresh_timestamp
from orm_engine.infrastructure.logging import get_logger
from orm_engine.infrastructure.metrics import get_metrics
from orm_engine.infrastructure.tracing import trace_span

logger = get_logger(__name__)


class LocalScope:
    """A scope function declared on an entity type.

    Reading it from the type (or an instance) starts a new query with the
    scope applied: ``Post.published()``.
    """

    def __init__(self, func: Callable, name: str) -> None:
        self.func = func
        self.__orm_scope__ = name
        self.__doc__ = func.__doc__

    def __call__(self, query: Builder, *args: Any, **kwargs: Any) -> Any:
        return self.func(query, *args, **kwargs)

    def __get__(self, instance: Any, owner: type | None = None) -> Callable[..., Builder]:
        model = owner if owner is not None else type(instance)
        return partial(model.query().scope, self.__orm_scope__)


def scope(fn: Callable | str | None = None) -> Any:
    """Mark a function as a local query scope.

    The function receives the query and any extra arguments and must return
    the (new) query. It is reachable as ``Post.published()`` and
    ``Post.query().published()``.

    Usage:
        @scope
        def published(query):
            ...

        @scope("popular")
        def _popular(query, minimum=100):
            ...
    """

    def decorator(func: Callable, name: str | None = None) -> LocalScope:
        return LocalScope(func, name or func.__name__)

    if callable(fn):
        return decorator(fn)
    return lambda func: decorator(func, fn)


class ModelMeta(type):
    """Registers entity types and forwards unknown class attributes to a new query."""

    def __init__(cls, name: str, bases: tuple[type, ...], namespace: dict[str, Any], **kwargs: Any) -> None:
        super().__init__(name, bases, namespace, **kwargs)
        if namespace.get("__abstract__", False):
            return
        get_registry().register(cls)

    def __getattr__(cls, name: str) -> Any:
        if name.startswith("_") or cls.__dict__.get("_meta") is None:
            raise AttributeError(f"type object {cls.__name__!r} has no attribute {name!r}")
        return getattr(cls.query(), name)


def _is_data_descriptor(model: type, name: str) -> bool:
    for klass in model.__mro__:
        if name in klass.__dict__:
            return hasattr(klass.__dict__[name], "__set__")
    return False


class Model(HasAttributes, metaclass=ModelMeta):
    """Base class of every entity type."""

    __abstract__ = True

    table: str | None = None
    primary_key: str = "id"
    key_type: str = "int"
    incrementing: bool = True

    timestamps: bool = True
    created_at_column: str = "created_at"
    updated_at_column: str = "updated_at"

    soft_deletes: bool = False
    deleted_at_column: str = "deleted_at"

    version_column: str | None = None
    immutable: bool = False

    casts: Mapping[str, Any] = {}
    dates: tuple[str, ...] = ()
    transitions: Mapping[str, Mapping[Any, Any]] = {}
    schema: type[BaseModel] | None = None
    global_scopes: Mapping[str, Any] = {}
    morph_alias: str | None = None
    tenant_column: str | None = None

    def __init__(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        self._init_model_state()
        values = dict(attributes or {})
        values.update(kwargs)
        if values:
            self.fill(values)
        self._apply_schema_defaults()

    def _init_model_state(self, exists: bool = False) -> None:
        self._init_attribute_state()
        object.__setattr__(self, "_exists", exists)
        object.__setattr__(self, "_was_recently_created", False)
        object.__setattr__(self, "_errors", {})

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if self.has_readable(name):
            return self.get_attribute(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or _is_data_descriptor(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self.set_attribute(name, value)

    def __delattr__(self, name: str) -> None:
        if name.startswith("_"):
            object.__delattr__(self, name)
        else:
            self.unset_attribute(name)

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __contains__(self, key: str) -> bool:
        return self.has_readable(key)

    def __repr__(self) -> str:
        key = self.get_key()
        state = "" if self._exists else " new"
        return f"<{type(self).__name__} {self.primary_key}={key!r}{state}>"

    @property
    def exists(self) -> bool:
        """Whether the entity is backed by a stored row."""
        return self._exists

    @exists.setter
    def exists(self, value: bool) -> None:
        object.__setattr__(self, "_exists", bool(value))

    @property
    def was_recently_created(self) -> bool:
        return self._was_recently_created

    @property
    def errors(self) -> dict[str, list[str]]:
        """Validation messages of the last validate()/save(), keyed by field."""
        return self._errors

    def get_key(self) -> Any:
        return self.get_raw_attribute(self.primary_key)

    def is_same(self, other: Any) -> bool:
        """Whether other is an entity for the same stored row."""
        return (
            isinstance(other, Model)
            and other.table == self.table
            and self.get_key() is not None
            and str(other.get_key()) == str(self.get_key())
        )

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def get_relation_value(self, name: str) -> Any:
        """Return a loaded relation, lazily loading it when absent.

        Raises:
            LazyLoadingViolationError: If lazy loading is prevented
        """
        if name in self._relations:
            return self._relations[name]
        if get_registry().prevent_lazy_loading:
            raise LazyLoadingViolationError(type(self).__name__, name)
        logger.debug("Lazy loading relation", model=type(self).__name__, relation=name)
        EagerLoader().load([self], name)
        return self._relations.get(name)

    @classmethod
    def relation(cls, name: str) -> Relation:
        """The declared relation descriptor named name."""
        return cls._meta.relation(name)

    def related_query(self, name: str) -> Builder:
        """A query for this entity's related rows, open to further constraints."""
        from orm_engine.application.relations import relation_query

        return relation_query(self, name)

    def pivot_for(self, name: str):
        """Pivot-table operations for a many-to-many relation of this entity."""
        from orm_engine.application.relations import PivotOperations

        return PivotOperations(self, name)

    def load(self, *relations: Any) -> Model:
        EagerLoader().load([self], relations)
        return self

    def load_missing(self, *relations: Any) -> Model:
        EagerLoader().load_missing([self], relations)
        return self

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @classmethod
    def on(cls, event: str, listener: Callable[[Model], Any] | None = None) -> Any:
        """Register a lifecycle listener for this entity type.

        Usable directly, ``Post.on("saving", fn)``, or as a decorator,
        ``@Post.on("saving")``. A listener of a cancellable event
        (creating, updating, saving, deleting, restoring) that returns False
        cancels the operation.
        """
        if event not in EVENTS:
            raise ConfigurationError(f"Unknown model event [{event}]")

        def register(fn: Callable[[Model], Any]) -> Callable[[Model], Any]:
            cls._meta.listeners[event].append(fn)
            return fn

        if listener is None:
            return register
        return register(listener)

    @classmethod
    def observe(cls, observer: Any) -> Any:
        """Register an observer whose methods are named after events."""
        instance = observer() if isinstance(observer, type) else observer
        cls._meta.observers.append(instance)
        return instance

    @classmethod
    def flush_event_listeners(cls) -> None:
        cls._meta.listeners.clear()
        cls._meta.observers.clear()

    def _fire(self, event: str) -> bool:
        """Run the handlers of event; False if a cancellable event was cancelled."""
        for handler in self._meta.handlers_for(event):
            if handler(self) is False and event in CANCELLABLE_EVENTS:
                logger.debug(
                    "Operation cancelled by listener", model=type(self).__name__, lifecycle_event=event
                )
                return False
        return True

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    @classmethod
    def query(cls) -> Builder:
        """A new query for this entity type."""
        return Builder.for_model(cls)

    @classmethod
    def all(cls) -> Collection:
        return cls.query().get()

    @classmethod
    def add_global_scope(cls, name: str, scope_: Any) -> None:
        """Add a scope applied to every query of this type unless removed by name."""
        cls._meta.global_scopes[name] = scope_

    @classmethod
    def prevent_lazy_loading(cls, value: bool = True) -> None:
        """Make lazy relation loads raise LazyLoadingViolationError, process-wide."""
        get_registry().prevent_lazy_loading = value

    @classmethod
    def new_from_row(cls, row: Mapping[str, Any]) -> Model:
        """Hydrate a stored row; the snapshot equals the row."""
        instance = cls.__new__(cls)
        instance._init_model_state(exists=True)
        instance.set_raw_attributes(dict(row), sync=True)
        instance._fire("retrieved")
        return instance

    @classmethod
    def hydrate(cls, rows: Iterable[Mapping[str, Any]]) -> Collection:
        models = Collection(cls.new_from_row(row) for row in rows)
        if models:
            get_metrics().models_hydrated_total.labels(model=cls.__name__).inc(len(models))
        return models

    def _key_query(self) -> Builder:
        """A query for this entity's own row, ignoring scopes and trashed state."""
        query = type(self).query().with_trashed().without_global_scopes()
        key = self.get_original(self.primary_key, self.get_key())
        if key is None:
            raise ModelNotPersistedError(f"[{type(self).__name__}] has no primary key value")
        return query.where(query.qualify(self.primary_key), key)

    # ------------------------------------------------------------------
    # Creation helpers
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, attributes: Mapping[str, Any] | None = None, **kwargs: Any) -> Model:
        instance = cls(attributes, **kwargs)
        instance.save()
        return instance

    @classmethod
    def force_create(cls, attributes: Mapping[str, Any]) -> Model:
        instance = cls()
        instance.force_fill(attributes)
        instance.save()
        return instance

    @classmethod
    def first_or_new(cls, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        instance = cls.query().where(dict(attributes)).first()
        if instance is not None:
            return instance
        return cls({**attributes, **(values or {})})

    @classmethod
    def first_or_create(cls, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        instance = cls.query().where(dict(attributes)).first()
        if instance is not None:
            return instance
        return cls.create({**attributes, **(values or {})})

    @classmethod
    def update_or_create(cls, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None) -> Model:
        instance = cls.first_or_new(attributes)
        instance.fill(values or {})
        instance.save()
        return instance

    @classmethod
    def destroy(cls, *ids: Any) -> int:
        """Delete the entities with the given keys one by one, firing events.

        Returns:
            The number of entities deleted
        """
        keys = [k for item in ids for k in (item if isinstance(item, (list, tuple, set)) else [item])]
        if not keys:
            return 0
        query = cls.query()
        count = 0
        for instance in query.where_in(query.qualify(cls.primary_key), keys).get():
            if instance.delete():
                count += 1
        return count

    @classmethod
    def insert(cls, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> bool:
        """Insert raw rows without events, casts or timestamps."""
        return cls.query().insert(rows)

    @classmethod
    def upsert(
        cls,
        rows: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        unique_by: str | Iterable[str],
        update: Iterable[str] | None = None,
    ) -> int:
        rows = rows if isinstance(rows, Mapping) else list(rows)
        unique = unique_by if isinstance(unique_by, str) else list(unique_by)
        return cls.query().upsert(rows, unique, list(update) if update is not None else None)

    # ------------------------------------------------------------------
    # Validation and domain rules
    # ------------------------------------------------------------------

    def _apply_schema_defaults(self) -> None:
        """Fill absent attributes from the defaults declared on ``schema``.

        None defaults are skipped so storage column defaults still apply.
        """
        if self.schema is None:
            return
        for name, info in self.schema.model_fields.items():
            key = info.alias or name
            if info.is_required() or key in self._attributes:
                continue
            value = info.get_default(call_default_factory=True)
            if value is not None:
                self.set_attribute(key, value)

    def validation_payload(self) -> dict[str, Any]:
        return {key: self.get_attribute(key) for key in self._attributes}

    def validate(self) -> bool:
        """Validate the attributes against ``schema``; messages land in ``errors``."""
        errors: dict[str, list[str]] = {}
        if self.schema is not None:
            try:
                self.schema.model_validate(self.validation_payload())
            except ValidationError as e:
                for error in e.errors():
                    field = ".".join(str(part) for part in error["loc"]) or "__root__"
                    errors.setdefault(field, []).append(error["msg"])
        object.__setattr__(self, "_errors", errors)
        if errors:
            logger.debug("Validation failed", model=type(self).__name__, fields=sorted(errors))
        return not errors

    def validate_or_fail(self) -> None:
        """Raises ValidationFailedError when validate() fails."""
        if not self.validate():
            raise ValidationFailedError(self.errors)

    def _check_relationship_contracts(self) -> None:
        """Raise RelationshipContractError for the first relation breaking its contract.

        Relations not yet loaded are loaded for the check.
        """
        for name, relation in self._meta.relations.items():
            if not relation.has_contract:
                continue
            if name not in self._relations:
                EagerLoader().load([self], name)
            violation = relation.contract_violation(self._relations.get(name))
            if violation is not None:
                raise RelationshipContractError(type(self).__name__, name, violation)

    def can_be_updated(self, dirty: Mapping[str, Any]) -> bool:
        return not self.immutable

    def can_be_deleted(self) -> bool:
        return not self.immutable

    def _check_transitions(self, dirty: Mapping[str, Any]) -> None:
        """Raise IllegalStateTransitionError for a guarded value moving to a disallowed state.

        Rules map the current stored value to the values it may move to; a
        current value without a rule may move anywhere.
        """
        for key, rules in (self.transitions or {}).items():
            if key not in dirty:
                continue
            old = self.get_original(key)
            allowed = _rule_for(rules, old)
            if allowed is None:
                continue
            if isinstance(allowed, (str, int)):
                allowed = [allowed]
            new = dirty[key]
            if str(new) not in {str(value) for value in allowed}:
                raise IllegalStateTransitionError(key, old, new)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> bool:
        """Insert or update the row.

        Returns:
            False when validation failed or a listener cancelled the save

        Raises:
            ImmutableEntityError: When a stored immutable entity has changes
            IllegalStateTransitionError: When a transition rule is violated
            ConcurrencyConflictError: When a versioned update matched no row
            RelationshipContractError: When a relation breaks its declared contract
        """
        dirty = self.get_dirty()
        if self._exists and dirty and not self.can_be_updated(dirty):
            raise ImmutableEntityError(f"[{type(self).__name__}] {self.get_key()} cannot be updated")
        if not self.validate():
            return False
        self._check_relationship_contracts()

        with trace_span("orm.save", {"orm.model": type(self).__name__, "orm.exists": self._exists}):
            if not self._fire("saving"):
                return False
            saved = self._perform_update() if self._exists else self._perform_insert()
            if saved:
                self._fire("saved")
                self.sync_original()
        return saved

    def save_or_fail(self) -> bool:
        """Save inside a transaction, rolling back if anything raises."""
        from orm_engine.application.database import get_database

        return get_database().transaction(self.save)

    def _update_timestamps(self) -> None:
        now = fresh_timestamp()
        if not self.is_dirty(self.updated_at_column):
            self.set_attribute(self.updated_at_column, now)
        if not self._exists and not self.is_dirty(self.created_at_column):
            self.set_attribute(self.created_at_column, now)

    def _perform_insert(self) -> bool:
        self._fill_tenant()
        if not self._fire("creating"):
            return False
        if self.timestamps:
            self._update_timestamps()
        if self.version_column and self.get_raw_attribute(self.version_column) is None:
            self.set_raw_attribute(self.version_column, 1)

        query = type(self).query()
        attributes = self.get_attributes()
        if self.incrementing and self.get_key() is None:
            self.set_raw_attribute(self.primary_key, query.insert_get_id(attributes))
        else:
            query.insert(attributes)

        self.exists = True
        object.__setattr__(self, "_was_recently_created", True)
        self._fire("created")
        return True

    def _fill_tenant(self) -> None:
        column = self.tenant_column
        if not column or self.get_raw_attribute(column) is not None:
            return
        tenant = current_tenant()
        if tenant is not None:
            self.set_attribute(column, tenant)

    def _perform_update(self) -> bool:
        dirty = self.get_dirty()
        if not dirty:
            return True
        self._check_transitions(dirty)
        if not self._fire("updating"):
            return False
        if self.timestamps:
            self._update_timestamps()

        query = self._key_query()
        column = self.version_column
        expected = None
        if column:
            expected = self.get_original(column, self.get_raw_attribute(column))
            query = query.where(query.qualify(column), expected)
            self.set_raw_attribute(column, int(expected or 0) + 1)

        affected = query.update(self.get_dirty())
        if column and affected == 0:
            self.set_raw_attribute(column, expected)
            get_metrics().concurrency_conflicts_total.labels(model=type(self).__name__).inc()
            logger.warning(
                "Concurrency conflict",
                model=type(self).__name__,
                key=self.get_key(),
                expected_version=expected,
            )
            raise ConcurrencyConflictError(type(self).__name__, self.get_key(), expected)

        self.sync_changes()
        self._fire("updated")
        return True

    def update(self, attributes: Mapping[str, Any] | None = None, **kwargs: Any) -> bool:
        """Fill and save a stored entity."""
        if not self._exists:
            return False
        self.fill({**(attributes or {}), **kwargs})
        return self.save()

    def delete(self) -> bool:
        """Delete the row, or stamp the deletion column for soft-deletable types.

        Returns:
            False when the entity is not stored or a listener cancelled the delete
        """
        if not self._exists:
            return False
        if not self.can_be_deleted():
            raise ImmutableEntityError(f"[{type(self).__name__}] {self.get_key()} cannot be deleted")

        with trace_span("orm.delete", {"orm.model": type(self).__name__, "orm.soft": self.soft_deletes}):
            if not self._fire("deleting"):
                return False
            if self.soft_deletes:
                self._run_soft_delete()
            else:
                self._key_query().force_delete()
                self.exists = False
            self._fire("deleted")
        return True

    def _run_soft_delete(self) -> None:
        now = fresh_timestamp()
        columns = [self.deleted_at_column]
        self.set_attribute(self.deleted_at_column, now)
        if self.timestamps:
            self.set_attribute(self.updated_at_column, now)
            columns.append(self.updated_at_column)
        self._key_query().update({column: self.get_raw_attribute(column) for column in columns})
        self.sync_original_attributes(*columns)

    def force_delete(self) -> bool:
        """Physically delete the row, even for soft-deletable types."""
        if not self.soft_deletes:
            return self.delete()
        if not self._exists:
            return False
        if not self.can_be_deleted():
            raise ImmutableEntityError(f"[{type(self).__name__}] {self.get_key()} cannot be deleted")
        if not self._fire("deleting"):
            return False
        self._key_query().force_delete()
        self.exists = False
        self._fire("deleted")
        return True

    def restore(self) -> bool:
        """Clear the deletion column of a soft-deleted entity."""
        if not self.soft_deletes:
            raise ConfigurationError(f"[{type(self).__name__}] does not use soft deletes")
        if not self._fire("restoring"):
            return False
        previous = self.get_raw_attribute(self.deleted_at_column)
        was_stored = self._exists
        self.set_attribute(self.deleted_at_column, None)
        self.exists = True
        if not self.save():
            self.set_raw_attribute(self.deleted_at_column, previous)
            self.exists = was_stored
            return False
        self._fire("restored")
        return True

    def trashed(self) -> bool:
        return self.soft_deletes and self.get_raw_attribute(self.deleted_at_column) is not None

    # ------------------------------------------------------------------
    # Instance helpers
    # ------------------------------------------------------------------

    def fresh(self, *relations: Any) -> Model | None:
        """A newly fetched copy of this entity, or None if the row is gone."""
        if not self._exists:
            return None
        query = self._key_query()
        if relations:
            query = query.with_(*relations)
        return query.first()

    def refresh(self) -> Model:
        """Reload attributes and already-loaded relations from storage."""
        if not self._exists:
            return self
        stored = self._key_query().first_or_fail()
        self.set_raw_attributes(stored.get_attributes(), sync=True)
        loaded = [name for name in self._relations if name in self._meta.relations]
        self._relations.clear()
        if loaded:
            self.load(*loaded)
        return self

    def touch(self) -> bool:
        """Save with a fresh updated_at."""
        if not self.timestamps:
            return False
        self.set_attribute(self.updated_at_column, fresh_timestamp())
        return self.save()

    def increment(self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        """Atomically add amount to column in storage and mirror it on the entity."""
        if not self._exists:
            raise ModelNotPersistedError(f"Cannot increment [{column}] of an unsaved [{type(self).__name__}]")
        if not self._fire("updating"):
            return 0
        extra = dict(extra or {})
        for key, value in extra.items():
            self.set_attribute(key, value)
        stored_extra = {key: self.get_raw_attribute(key) for key in extra}
        if self.timestamps:
            self.set_attribute(self.updated_at_column, fresh_timestamp())
            stored_extra[self.updated_at_column] = self.get_raw_attribute(self.updated_at_column)

        affected = self._key_query().increment(column, amount, stored_extra)
        self.set_raw_attribute(column, (self.get_raw_attribute(column) or 0) + amount)
        self.sync_original_attributes(column, *stored_extra)
        self._fire("updated")
        return affected

    def decrement(self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None) -> int:
        return self.increment(column, -amount, extra)

    def replicate(self, except_: Iterable[str] = ()) -> Model:
        """An unsaved copy without the key, managed timestamps and version."""
        excluded = {self.primary_key, *except_}
        if self.timestamps:
            excluded.update((self.created_at_column, self.updated_at_column))
        if self.version_column:
            excluded.add(self.version_column)
        copy = type(self)()
        copy.set_raw_attributes(
            {key: value for key, value in self.get_attributes().items() if key not in excluded}
        )
        for name, value in self._relations.items():
            copy.set_relation(name, value)
        return copy


def _rule_for(rules: Mapping[Any, Any], state: Any) -> Any:
    if state in rules:
        return rules[state]
    for key, allowed in rules.items():
        if key is not None and state is not None and str(key) == str(state):
            return allowed
    return None


class Pivot(Model):
    """A row of a pivot table, attached to related entities as their "pivot" relation.

    Pivot entities are read-only snapshots; change pivot rows through
    ``parent.pivot_for(name)``.
    """

    table = "pivot"
    timestamps = False
    incrementing = False
    immutable = True
    guarded = ()

    @classmethod
    def from_pivot_row(cls, table: str, attributes: Mapping[str, Any]) -> Pivot:
        pivot = cls.__new__(cls)
        pivot._init_model_state(exists=True)
        pivot.set_raw_attributes(dict(attributes), sync=True)
        object.__setattr__(pivot, "_pivot_table", table)
        return pivot

    @property
    def pivot_table(self) -> str:
        return self._pivot_table
