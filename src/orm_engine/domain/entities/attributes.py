"""Attribute store for entities.

HasAttributes keeps three maps per entity:

    _attributes  current values, in storage form
    _original    snapshot taken at hydration and after each successful persist
    _relations   loaded relation values keyed by relation name

_original is only ever replaced wholesale, so get_dirty() is a pure diff of
the two maps. Encrypted values are the one exception: they are compared
decrypted, since each assignment produces a new ciphertext.

Reads (get_attribute) go: accessor, loaded relation, declared relation,
cast, raw value. Writes (set_attribute) go: mutator, cast, raw store.
Accessors and mutators are plain methods marked with @accessor / @mutator
and collected into per-type tables when the type is registered.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from orm_engine.domain.exceptions import ConfigurationError
from orm_engine.domain.services.casting import (
    for_serialization,
    from_storage,
    storage_equivalent,
    to_storage,
)
from orm_engine.infrastructure.config import get_config
from orm_engine.infrastructure.logging import get_logger

logger = get_logger(__name__)


def accessor(name: str) -> Callable[[Callable], Callable]:
    """Mark a method as the read hook for attribute name.

    The method is called as ``fn(self, raw_value)`` and its result is what
    get_attribute() returns. Accessors may name attributes that are not
    stored at all (computed fields listed in ``appends``).
    """

    def decorator(fn: Callable) -> Callable:
        fn.__orm_accessor__ = name
        return fn

    return decorator


def mutator(name: str) -> Callable[[Callable], Callable]:
    """Mark a method as the write hook for attribute name.

    The method is called as ``fn(self, value)`` and returns the value to
    store; casting is applied to the returned value.
    """

    def decorator(fn: Callable) -> Callable:
        fn.__orm_mutator__ = name
        return fn

    return decorator


def _jsonable(value: Any, date_format: str) -> Any:
    if isinstance(value, datetime):
        return value.strftime(date_format)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if hasattr(value, "to_list"):
        return value.to_list()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class HasAttributes:
    """Attribute, dirty-tracking and serialization behaviour of an entity."""

    fillable: tuple[str, ...] = ()
    guarded: tuple[str, ...] = ("*",)
    hidden: tuple[str, ...] = ()
    visible: tuple[str, ...] = ()
    appends: tuple[str, ...] = ()
    serialization_profiles: Mapping[str, Mapping[str, Iterable[str]]] = {}

    _meta: Any = None

    def _init_attribute_state(self) -> None:
        set_ = object.__setattr__
        set_(self, "_attributes", {})
        set_(self, "_original", {})
        set_(self, "_changes", {})
        set_(self, "_relations", {})
        set_(self, "_hidden_override", None)
        set_(self, "_visible_override", None)
        set_(self, "_appends_override", None)

    @staticmethod
    def _date_format() -> str:
        return get_config().models.date_format

    # ------------------------------------------------------------------
    # Mass assignment
    # ------------------------------------------------------------------

    def is_fillable(self, key: str) -> bool:
        if self.fillable:
            return key in self.fillable
        if "*" in self.guarded:
            return False
        return key not in self.guarded

    def fill(self, attributes: Mapping[str, Any]):
        """Assign the keys the mass-assignment policy allows; drop the rest."""
        dropped = []
        for key, value in attributes.items():
            if self.is_fillable(key):
                self.set_attribute(key, value)
            else:
                dropped.append(key)
        if dropped:
            logger.debug(
                "Mass assignment dropped keys",
                model=type(self).__name__,
                keys=dropped,
            )
        return self

    def force_fill(self, attributes: Mapping[str, Any]):
        for key, value in attributes.items():
            self.set_attribute(key, value)
        return self

    # ------------------------------------------------------------------
    # Reading and writing
    # ------------------------------------------------------------------

    def get_attribute(self, key: str) -> Any:
        meta = self._meta
        hook = meta.accessors.get(key)
        if hook is not None:
            return hook(self, self._attributes.get(key))
        if key in self._relations:
            return self._relations[key]
        if key in meta.relations:
            return self.get_relation_value(key)
        cast = meta.casts.get(key)
        if cast is not None:
            return from_storage(cast, self._attributes.get(key), self._date_format(), self, key)
        return self._attributes.get(key)

    def set_attribute(self, key: str, value: Any):
        meta = self._meta
        hook = meta.mutators.get(key)
        if hook is not None:
            value = hook(self, value)
        cast = meta.casts.get(key)
        if cast is not None:
            value = to_storage(cast, value, self._date_format(), self, key)
        self._attributes[key] = value
        return self

    def has_readable(self, key: str) -> bool:
        """Whether get_attribute(key) names something this entity knows about."""
        meta = self._meta
        return (
            key in self._attributes
            or key in meta.accessors
            or key in self._relations
            or key in meta.relations
            or key in meta.casts
        )

    def get_raw_attribute(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def set_raw_attribute(self, key: str, value: Any):
        self._attributes[key] = value
        return self

    def get_attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def set_raw_attributes(self, attributes: Mapping[str, Any], sync: bool = False):
        object.__setattr__(self, "_attributes", dict(attributes))
        if sync:
            self.sync_original()
        return self

    def unset_attribute(self, key: str):
        self._attributes.pop(key, None)
        return self

    def only(self, *keys: str) -> dict[str, Any]:
        return {key: self.get_attribute(key) for key in keys}

    # ------------------------------------------------------------------
    # Relations slot
    # ------------------------------------------------------------------

    def get_relation(self, name: str) -> Any:
        return self._relations[name]

    def set_relation(self, name: str, value: Any):
        self._relations[name] = value
        return self

    def unset_relation(self, name: str):
        self._relations.pop(name, None)
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def get_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def get_relation_value(self, name: str) -> Any:
        return self._relations.get(name)

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._original)
        return self._original.get(key, default)

    def get_dirty(self) -> dict[str, Any]:
        original = self._original
        casts = self._meta.casts
        dirty = {}
        for key, value in self._attributes.items():
            if key not in original:
                dirty[key] = value
            elif original[key] != value:
                cast = casts.get(key)
                if cast is None or not storage_equivalent(cast, value, original[key]):
                    dirty[key] = value
        return dirty

    def is_dirty(self, *keys: str) -> bool:
        dirty = self.get_dirty()
        if not keys:
            return bool(dirty)
        return any(key in dirty for key in keys)

    def is_clean(self, *keys: str) -> bool:
        return not self.is_dirty(*keys)

    def was_changed(self, *keys: str) -> bool:
        if not keys:
            return bool(self._changes)
        return any(key in self._changes for key in keys)

    def get_changes(self) -> dict[str, Any]:
        return dict(self._changes)

    def sync_original(self):
        object.__setattr__(self, "_original", dict(self._attributes))
        return self

    def sync_original_attributes(self, *keys: str):
        original = dict(self._original)
        for key in keys:
            if key in self._attributes:
                original[key] = self._attributes[key]
        object.__setattr__(self, "_original", original)
        return self

    def sync_changes(self):
        object.__setattr__(self, "_changes", self.get_dirty())
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def make_hidden(self, *keys: str):
        hidden = set(self._current_hidden()) | set(keys)
        visible = tuple(k for k in self._current_visible() if k not in keys)
        object.__setattr__(self, "_hidden_override", tuple(sorted(hidden)))
        object.__setattr__(self, "_visible_override", visible)
        return self

    def make_visible(self, *keys: str):
        hidden = tuple(k for k in self._current_hidden() if k not in keys)
        visible = self._current_visible()
        if visible:
            visible = tuple(visible) + tuple(k for k in keys if k not in visible)
        object.__setattr__(self, "_hidden_override", hidden)
        object.__setattr__(self, "_visible_override", visible)
        return self

    def append(self, *keys: str):
        appends = tuple(self._current_appends()) + tuple(k for k in keys if k not in self._current_appends())
        object.__setattr__(self, "_appends_override", appends)
        return self

    def serialize_as(self, profile: str):
        """Apply a declared serialization profile to this instance."""
        rules = self.serialization_profiles.get(profile)
        if rules is None:
            raise ConfigurationError(
                f"Unknown serialization profile [{profile}] on model [{type(self).__name__}]"
            )
        object.__setattr__(self, "_visible_override", tuple(rules.get("visible", ())))
        object.__setattr__(self, "_hidden_override", tuple(rules.get("hidden", self.hidden)))
        object.__setattr__(self, "_appends_override", tuple(rules.get("appends", self.appends)))
        return self

    def _current_hidden(self) -> tuple[str, ...]:
        return self._hidden_override if self._hidden_override is not None else tuple(self.hidden)

    def _current_visible(self) -> tuple[str, ...]:
        return self._visible_override if self._visible_override is not None else tuple(self.visible)

    def _current_appends(self) -> tuple[str, ...]:
        return self._appends_override if self._appends_override is not None else tuple(self.appends)

    def _is_serializable(self, key: str) -> bool:
        visible = self._current_visible()
        if visible and key not in visible:
            return False
        return key not in self._current_hidden()

    def _serialize_attribute(self, key: str) -> Any:
        meta = self._meta
        fmt = self._date_format()
        if key in meta.accessors:
            return _jsonable(meta.accessors[key](self, self._attributes.get(key)), fmt)
        cast = meta.casts.get(key)
        if cast is not None:
            value = from_storage(cast, self._attributes.get(key), fmt, self, key)
            return _jsonable(for_serialization(cast, value, fmt), fmt)
        return _jsonable(self._attributes.get(key), fmt)

    def to_dict(self) -> dict[str, Any]:
        """Serialize attributes, appended fields and loaded relations."""
        data: dict[str, Any] = {}
        for key in self._attributes:
            if self._is_serializable(key):
                data[key] = self._serialize_attribute(key)
        for key in self._current_appends():
            if self._is_serializable(key):
                data[key] = self._serialize_attribute(key)
        for name, value in self._relations.items():
            if not self._is_serializable(name):
                continue
            if value is None:
                data[name] = None
            elif hasattr(value, "to_list"):
                data[name] = value.to_list()
            elif isinstance(value, (list, tuple)):
                data[name] = [item.to_dict() if hasattr(item, "to_dict") else item for item in value]
            else:
                data[name] = value.to_dict()
        return data

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)
