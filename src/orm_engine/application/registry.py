"""Per-type model metadata and the polymorphic alias table.

Every entity class is registered exactly once, when its class statement
runs. Registration parses cast declarations, collects accessor, mutator and
scope tables, and binds relation descriptors to the class. The result is a
ModelMetadata stored on the class as ``_meta`` and indexed here by type.

Listeners and observers are also per type: registering a listener on Post
does not affect Comment, nor a subclass of Post.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from orm_engine.application.tenancy import TENANCY_SCOPE, TenantScope
from orm_engine.domain.entities.relation import Relation
from orm_engine.domain.exceptions import ConfigurationError, UnknownRelationError
from orm_engine.domain.services.casting import DATETIME_CAST, CastSpec, parse_cast
from orm_engine.domain.services.inflection import table_name_for
from orm_engine.infrastructure.config import get_config
from orm_engine.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from orm_engine.application.model import Model

logger = get_logger(__name__)

EVENTS = (
    "retrieved",
    "creating",
    "created",
    "updating",
    "updated",
    "saving",
    "saved",
    "deleting",
    "deleted",
    "restoring",
    "restored",
)

# A listener returning False for one of these events cancels the operation
CANCELLABLE_EVENTS = frozenset({"creating", "updating", "saving", "deleting", "restoring"})


@dataclass
class ModelMetadata:
    """Everything the engine knows about one entity type."""

    model: type
    table: str
    relations: dict[str, Relation] = field(default_factory=dict)
    casts: dict[str, CastSpec] = field(default_factory=dict)
    accessors: dict[str, Callable] = field(default_factory=dict)
    mutators: dict[str, Callable] = field(default_factory=dict)
    local_scopes: dict[str, Callable] = field(default_factory=dict)
    global_scopes: dict[str, Callable] = field(default_factory=dict)
    listeners: dict[str, list[Callable]] = field(default_factory=lambda: defaultdict(list))
    observers: list[Any] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.model.__name__

    def relation(self, name: str) -> Relation:
        """Return the named relation descriptor.

        Raises:
            UnknownRelationError: If the type declares no such relation
        """
        try:
            return self.relations[name].resolve_target_keys()
        except KeyError:
            raise UnknownRelationError(self.name, name) from None

    def handlers_for(self, event: str) -> list[Callable]:
        handlers = list(self.listeners.get(event, ()))
        for observer in self.observers:
            method = getattr(observer, event, None)
            if callable(method):
                handlers.append(method)
        return handlers


class ModelRegistry:
    """Process-wide index of registered entity types."""

    def __init__(self) -> None:
        self._models: dict[str, type] = {}
        self._metadata: dict[type, ModelMetadata] = {}
        self._morph_map: dict[str, type] = {}
        self._prevent_lazy_loading: bool | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, model: type[Model]) -> ModelMetadata:
        """Build and attach the metadata of an entity type.

        Raises:
            InvalidCastError: If a cast declaration is not understood
            ConfigurationError: If a relation declaration is incomplete
        """
        if model.__dict__.get("table") is None:
            model.table = table_name_for(model.__name__)

        meta = ModelMetadata(model=model, table=model.table)
        meta.casts = self._collect_casts(model)
        meta.global_scopes = dict(getattr(model, "global_scopes", {}) or {})
        tenant_column = getattr(model, "tenant_column", None)
        if tenant_column:
            meta.global_scopes.setdefault(TENANCY_SCOPE, TenantScope(tenant_column))

        for klass in reversed(model.__mro__):
            for attr, value in vars(klass).items():
                func = value.__func__ if isinstance(value, (staticmethod, classmethod)) else value
                if getattr(func, "__orm_accessor__", None):
                    meta.accessors[func.__orm_accessor__] = func
                if getattr(func, "__orm_mutator__", None):
                    meta.mutators[func.__orm_mutator__] = func
                if getattr(func, "__orm_scope__", None):
                    meta.local_scopes[func.__orm_scope__] = func
                if isinstance(value, Relation):
                    relation = value if klass is model else copy.copy(value)
                    if relation.name != attr:
                        relation.__set_name__(model, attr)
                    meta.relations[attr] = relation.bind(model)

        previous = self._models.get(model.__name__)
        if previous is not None and previous is not model:
            logger.debug(
                "Model name re-registered",
                model=model.__name__,
                previous=f"{previous.__module__}.{previous.__qualname__}",
            )
        self._models[model.__name__] = model
        self._metadata[model] = meta
        model._meta = meta
        return meta

    def _collect_casts(self, model: type[Model]) -> dict[str, CastSpec]:
        casts: dict[str, CastSpec] = {}
        date_columns: list[str] = list(getattr(model, "dates", ()) or ())
        if model.timestamps:
            date_columns += [model.created_at_column, model.updated_at_column]
        if model.soft_deletes:
            date_columns.append(model.deleted_at_column)
        for column in date_columns:
            casts[column] = DATETIME_CAST
        for column, declaration in (getattr(model, "casts", {}) or {}).items():
            casts[column] = parse_cast(declaration)
        return casts

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def metadata_for(self, model: type) -> ModelMetadata:
        try:
            return self._metadata[model]
        except KeyError:
            raise ConfigurationError(f"Model [{model.__name__}] is not registered") from None

    def resolve_model(self, target: type[Model] | str) -> type[Model]:
        """Resolve a class or a registered class name to the class."""
        if isinstance(target, type):
            return target
        model = self._models.get(target) or self._morph_map.get(target)
        if model is None:
            raise ConfigurationError(f"No model registered under the name [{target}]")
        return model

    def models(self) -> list[type]:
        return list(self._metadata)

    # ------------------------------------------------------------------
    # Morph map
    # ------------------------------------------------------------------

    def register_morph_map(self, mapping: Mapping[str, type[Model]], merge: bool = True) -> None:
        """Register alias -> type entries used in polymorphic type columns."""
        for alias, model in mapping.items():
            if not isinstance(model, type) or model not in self._metadata:
                raise ConfigurationError(f"Morph alias [{alias}] must map to a registered model")
        if not merge:
            self._morph_map.clear()
        self._morph_map.update(mapping)

    def morph_map(self) -> dict[str, type]:
        return dict(self._morph_map)

    def clear_morph_map(self) -> None:
        self._morph_map.clear()

    def morph_alias_for(self, model: type[Model]) -> str:
        """The value stored in type columns for rows of this type."""
        for alias, mapped in self._morph_map.items():
            if mapped is model:
                return alias
        return getattr(model, "morph_alias", None) or model.__name__

    def resolve_morph_alias(self, alias: str | None) -> type[Model] | None:
        """Resolve a stored type value. Unknown values resolve to None."""
        if not alias:
            return None
        model = self._morph_map.get(alias)
        if model is not None:
            return model
        model = self._models.get(alias)
        if model is not None:
            return model
        for candidate in self._metadata:
            if getattr(candidate, "morph_alias", None) == alias:
                return candidate
        return None

    # ------------------------------------------------------------------
    # Lazy loading policy
    # ------------------------------------------------------------------

    @property
    def prevent_lazy_loading(self) -> bool:
        if self._prevent_lazy_loading is None:
            return get_config().models.prevent_lazy_loading
        return self._prevent_lazy_loading

    @prevent_lazy_loading.setter
    def prevent_lazy_loading(self, value: bool | None) -> None:
        self._prevent_lazy_loading = value


_registry = ModelRegistry()


def get_registry() -> ModelRegistry:
    """Get the process-wide model registry."""
    return _registry


def register_morph_map(mapping: Mapping[str, type[Model]], merge: bool = True) -> None:
    """Register polymorphic type aliases on the process-wide registry."""
    _registry.register_morph_map(mapping, merge)
