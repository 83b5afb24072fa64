"""Relation descriptors.

Relations are declared as class attributes of an entity type:

    class Post(Model):
        author = belongs_to("User")
        comments = has_many("Comment")
        tags = belongs_to_many("Tag", pivot_columns=("weight",))

Each Relation learns its name and declaring type through __set_name__.
Keys that depend only on the declaring type are derived when the type is
registered; keys that need the target type (which may be declared later and
named by string) are derived on first use and cached on the descriptor.

Reading the attribute on an instance returns the loaded value, lazily
loading it when absent.

A relation may carry a contract (required, min_count, max_count) that
Model.save() checks before writing:

    members = has_many("Member", required=True, max_count=5)
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Sequence

from orm_engine.domain.exceptions import ConfigurationError
from orm_engine.domain.services.inflection import singular, snake_case

if TYPE_CHECKING:
    from orm_engine.application.model import Model


class RelationKind(str, Enum):
    """How the declaring type relates to the target type."""

    TO_ONE = "to_one"
    TO_MANY = "to_many"
    OWNED_BY = "owned_by"
    MANY_TO_MANY = "many_to_many"
    POLYMORPHIC_OWNED_BY = "polymorphic_owned_by"
    POLYMORPHIC_TO_MANY = "polymorphic_to_many"
    POLYMORPHIC_TO_ONE = "polymorphic_to_one"

    @property
    def is_plural(self) -> bool:
        return self in (RelationKind.TO_MANY, RelationKind.MANY_TO_MANY, RelationKind.POLYMORPHIC_TO_MANY)


class Relation:
    """Declared metadata for one named relation."""

    def __init__(
        self,
        kind: RelationKind,
        target: type[Model] | str | None = None,
        *,
        foreign_key: str | None = None,
        local_key: str | None = None,
        owner_key: str | None = None,
        pivot_table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
        pivot_columns: Sequence[str] = (),
        pivot_timestamps: bool = False,
        morph_name: str | None = None,
        type_column: str | None = None,
        id_column: str | None = None,
        constraint: Callable[[Any], Any] | None = None,
        required: bool = False,
        min_count: int | None = None,
        max_count: int | None = None,
    ) -> None:
        if min_count is not None and max_count is not None and min_count > max_count:
            raise ConfigurationError(f"Relation bounds are inverted: min {min_count} > max {max_count}")
        self.kind = kind
        self._target = target
        self._target_resolved: type[Model] | None = target if isinstance(target, type) else None
        self.name: str = ""
        self.owner: type[Model] | None = None

        self.foreign_key = foreign_key
        self.local_key = local_key
        self.owner_key = owner_key
        self.pivot_table = pivot_table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key
        self.pivot_columns = tuple(pivot_columns)
        self.pivot_timestamps = pivot_timestamps
        self.morph_name = morph_name
        self.type_column = type_column
        self.id_column = id_column
        self.constraint = constraint
        self.required = required
        self.min_count = min_count
        self.max_count = max_count
        self._target_keys_resolved = False

    def __repr__(self) -> str:
        owner = self.owner.__name__ if self.owner else "?"
        return f"Relation({self.kind.value}, {owner}.{self.name})"

    # ------------------------------------------------------------------
    # Descriptor protocol
    # ------------------------------------------------------------------

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner = owner

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get_relation_value(self.name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.set_relation(self.name, value)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @property
    def target(self) -> type[Model]:
        """The target entity type, resolved from its registered name once."""
        if self._target_resolved is None:
            if self._target is None:
                raise ConfigurationError(
                    f"Relation [{self.name}] of kind {self.kind.value} has no fixed target type"
                )
            from orm_engine.application.registry import get_registry

            self._target_resolved = get_registry().resolve_model(self._target)
        return self._target_resolved

    def bind(self, owner: type[Model]) -> Relation:
        """Derive the keys that depend only on the declaring type."""
        self.owner = owner
        owner_snake = snake_case(owner.__name__)

        if self.kind in (RelationKind.TO_ONE, RelationKind.TO_MANY):
            self.foreign_key = self.foreign_key or f"{owner_snake}_id"
            self.local_key = self.local_key or owner.primary_key
        elif self.kind is RelationKind.OWNED_BY:
            self.foreign_key = self.foreign_key or f"{self.name}_id"
        elif self.kind is RelationKind.MANY_TO_MANY:
            self.foreign_pivot_key = self.foreign_pivot_key or f"{owner_snake}_id"
            self.parent_key = self.parent_key or owner.primary_key
        elif self.kind is RelationKind.POLYMORPHIC_OWNED_BY:
            self.morph_name = self.morph_name or self.name
            self.type_column = self.type_column or f"{self.morph_name}_type"
            self.id_column = self.id_column or f"{self.morph_name}_id"
        else:
            if not self.morph_name:
                raise ConfigurationError(
                    f"Polymorphic relation [{owner.__name__}.{self.name}] needs a morph name"
                )
            self.type_column = self.type_column or f"{self.morph_name}_type"
            self.id_column = self.id_column or f"{self.morph_name}_id"
            self.local_key = self.local_key or owner.primary_key
        return self

    def resolve_target_keys(self) -> Relation:
        """Derive the keys that need the target type. Runs once."""
        if self._target_keys_resolved:
            return self
        if self.kind is RelationKind.OWNED_BY:
            self.owner_key = self.owner_key or self.target.primary_key
        elif self.kind is RelationKind.MANY_TO_MANY:
            owner_snake = singular(snake_case(self.owner.__name__))
            target_snake = singular(snake_case(self.target.__name__))
            self.related_pivot_key = self.related_pivot_key or f"{snake_case(self.target.__name__)}_id"
            self.related_key = self.related_key or self.target.primary_key
            self.pivot_table = self.pivot_table or "_".join(sorted((owner_snake, target_snake)))
        self._target_keys_resolved = True
        return self

    @property
    def pivot_attribute_columns(self) -> tuple[str, ...]:
        """Extra pivot columns carried onto related instances."""
        columns = list(self.pivot_columns)
        if self.pivot_timestamps:
            columns.extend(c for c in ("created_at", "updated_at") if c not in columns)
        return tuple(columns)

    def default_value(self) -> Any:
        """Value assigned to parents with no related rows."""
        if self.kind.is_plural:
            from orm_engine.domain.entities.collection import Collection

            return Collection()
        return None

    @property
    def has_contract(self) -> bool:
        return self.required or self.min_count is not None or self.max_count is not None

    def contract_violation(self, value: Any) -> str | None:
        """Check a loaded value against required/min_count/max_count.

        A plural value counts its items; a to-one value counts 1 or 0.

        Returns:
            The violation message, or None when the value satisfies the contract
        """
        if self.kind.is_plural:
            count = len(value) if value is not None else 0
        else:
            count = 0 if value is None else 1
        if self.required and count == 0:
            return "is required"
        if self.min_count is not None and count < self.min_count:
            return f"must have at least {self.min_count} records (found {count})"
        if self.max_count is not None and count > self.max_count:
            return f"must have at most {self.max_count} records (found {count})"
        return None


# ----------------------------------------------------------------------
# Declaration helpers
#
# Every helper accepts the contract options checked when the declaring
# entity is saved: required, min_count and max_count.
# ----------------------------------------------------------------------


def has_one(
    target: type[Model] | str,
    foreign_key: str | None = None,
    local_key: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """The target holds a foreign key referencing this type; at most one row."""
    return Relation(
        RelationKind.TO_ONE,
        target,
        foreign_key=foreign_key,
        local_key=local_key,
        constraint=constraint,
        **contract,
    )


def has_many(
    target: type[Model] | str,
    foreign_key: str | None = None,
    local_key: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """The target holds a foreign key referencing this type.

    Usage:
        members = has_many("Member", required=True, max_count=5)
    """
    return Relation(
        RelationKind.TO_MANY,
        target,
        foreign_key=foreign_key,
        local_key=local_key,
        constraint=constraint,
        **contract,
    )


def belongs_to(
    target: type[Model] | str,
    foreign_key: str | None = None,
    owner_key: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """This type holds a foreign key referencing the target."""
    return Relation(
        RelationKind.OWNED_BY,
        target,
        foreign_key=foreign_key,
        owner_key=owner_key,
        constraint=constraint,
        **contract,
    )


def belongs_to_many(
    target: type[Model] | str,
    table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    parent_key: str | None = None,
    related_key: str | None = None,
    pivot_columns: Sequence[str] = (),
    pivot_timestamps: bool = False,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """Many-to-many through a pivot table."""
    return Relation(
        RelationKind.MANY_TO_MANY,
        target,
        pivot_table=table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        parent_key=parent_key,
        related_key=related_key,
        pivot_columns=pivot_columns,
        pivot_timestamps=pivot_timestamps,
        constraint=constraint,
        **contract,
    )


def morph_to(
    name: str | None = None,
    type_column: str | None = None,
    id_column: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """This type references a row of a type named by its type column."""
    return Relation(
        RelationKind.POLYMORPHIC_OWNED_BY,
        None,
        morph_name=name,
        type_column=type_column,
        id_column=id_column,
        constraint=constraint,
        **contract,
    )


def morph_many(
    target: type[Model] | str,
    name: str,
    type_column: str | None = None,
    id_column: str | None = None,
    local_key: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """The target references this type through its polymorphic columns."""
    return Relation(
        RelationKind.POLYMORPHIC_TO_MANY,
        target,
        morph_name=name,
        type_column=type_column,
        id_column=id_column,
        local_key=local_key,
        constraint=constraint,
        **contract,
    )


def morph_one(
    target: type[Model] | str,
    name: str,
    type_column: str | None = None,
    id_column: str | None = None,
    local_key: str | None = None,
    constraint: Callable[[Any], Any] | None = None,
    **contract: Any,
) -> Relation:
    """Like morph_many, keeping a single related row."""
    return Relation(
        RelationKind.POLYMORPHIC_TO_ONE,
        target,
        morph_name=name,
        type_column=type_column,
        id_column=id_column,
        local_key=local_key,
        constraint=constraint,
        **contract,
    )
