"""Relation queries and pivot-table operations.

relation_existence_query() builds the correlated sub-query behind
where_has()/has(); relation_query() builds the query for one parent's
related rows; PivotOperations edits the pivot rows of a many-to-many
relation for one parent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from orm_engine.application.eager_loader import pivot_query
from orm_engine.application.query_builder import Builder, _require_builder
from orm_engine.application.registry import get_registry
from orm_engine.domain.entities.relation import Relation, RelationKind
from orm_engine.domain.exceptions import (
    ConfigurationError,
    ModelNotPersistedError,
    QueryConstructionError,
)
from orm_engine.domain.services.casting import fresh_timestamp
from orm_engine.infrastructure.config import get_config
from orm_engine.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from orm_engine.application.database import Database
    from orm_engine.application.model import Model

logger = get_logger(__name__)


def _constrained(relation: Relation, query: Builder) -> Builder:
    if relation.constraint is None:
        return query
    return _require_builder(relation.constraint(query), f"Relation [{relation.name}] constraint")


def relation_existence_query(
    model: type[Model], name: str, database: Database | None = None
) -> Builder:
    """The sub-query selecting rows related to the current row of model's table.

    Raises:
        UnknownRelationError: If model declares no such relation
        QueryConstructionError: For polymorphic owned-by and self-referencing relations
    """
    relation = model._meta.relation(name)
    if relation.kind is RelationKind.POLYMORPHIC_OWNED_BY:
        raise QueryConstructionError(
            f"Relation [{model.__name__}.{name}] is polymorphic; existence queries need a fixed target"
        )
    target = relation.target
    if target.table == model.table:
        raise QueryConstructionError(
            f"Existence queries on self-referencing relation [{model.__name__}.{name}] are not supported"
        )

    parent = model.table
    related = target.table
    query = _constrained(relation, Builder.for_model(target, database=database))

    if relation.kind in (RelationKind.TO_ONE, RelationKind.TO_MANY):
        return query.where_column(f"{related}.{relation.foreign_key}", f"{parent}.{relation.local_key}")
    if relation.kind is RelationKind.OWNED_BY:
        return query.where_column(f"{related}.{relation.owner_key}", f"{parent}.{relation.foreign_key}")
    if relation.kind is RelationKind.MANY_TO_MANY:
        pivot = relation.pivot_table
        return query.join(
            pivot, f"{pivot}.{relation.related_pivot_key}", "=", f"{related}.{relation.related_key}"
        ).where_column(f"{pivot}.{relation.foreign_pivot_key}", f"{parent}.{relation.parent_key}")

    alias = get_registry().morph_alias_for(model)
    return query.where(f"{related}.{relation.type_column}", alias).where_column(
        f"{related}.{relation.id_column}", f"{parent}.{relation.local_key}"
    )


def relation_query(parent: Model, name: str) -> Builder:
    """The query for the rows related to one parent entity."""
    model = type(parent)
    relation = model._meta.relation(name)

    if relation.kind is RelationKind.POLYMORPHIC_OWNED_BY:
        target = get_registry().resolve_morph_alias(parent.get_raw_attribute(relation.type_column))
        if target is None:
            raise QueryConstructionError(
                f"Cannot resolve the type of [{model.__name__}.{name}] for this entity"
            )
        query = _constrained(relation, target.query())
        return query.where(query.qualify(target.primary_key), parent.get_raw_attribute(relation.id_column))

    query = _constrained(relation, relation.target.query())
    if relation.kind in (RelationKind.TO_ONE, RelationKind.TO_MANY):
        return query.where(query.qualify(relation.foreign_key), parent.get_raw_attribute(relation.local_key))
    if relation.kind is RelationKind.OWNED_BY:
        return query.where(query.qualify(relation.owner_key), parent.get_raw_attribute(relation.foreign_key))
    if relation.kind is RelationKind.MANY_TO_MANY:
        return pivot_query(relation, query).where(
            f"{relation.pivot_table}.{relation.foreign_pivot_key}",
            parent.get_raw_attribute(relation.parent_key),
        )

    alias = get_registry().morph_alias_for(model)
    return query.where(query.qualify(relation.type_column), alias).where(
        query.qualify(relation.id_column), parent.get_raw_attribute(relation.local_key)
    )


def _normalize_ids(ids: Any) -> dict[str, tuple[Any, dict[str, Any]]]:
    """Map str(id) -> (id, pivot attributes) for every accepted id form."""
    if ids is None:
        return {}
    if isinstance(ids, Mapping):
        return {str(key): (key, dict(attrs or {})) for key, attrs in ids.items()}
    if hasattr(ids, "get_key") or isinstance(ids, (str, bytes, int)):
        ids = [ids]
    normalized: dict[str, tuple[Any, dict[str, Any]]] = {}
    for item in ids:
        key = item.get_key() if hasattr(item, "get_key") else item
        normalized.setdefault(str(key), (key, {}))
    return normalized


class PivotOperations:
    """Edits the pivot rows that link one parent to its related rows.

    Usage:
        post.pivot_for("tags").attach([1, 2])
        post.pivot_for("tags").sync({1: {"weight": 5}, 3: {}})
        post.pivot_for("tags").detach(2)
    """

    def __init__(self, parent: Model, name: str) -> None:
        relation = type(parent)._meta.relation(name)
        if relation.kind is not RelationKind.MANY_TO_MANY:
            raise ConfigurationError(
                f"Relation [{type(parent).__name__}.{name}] is not a many-to-many relation"
            )
        key = parent.get_raw_attribute(relation.parent_key)
        if key is None:
            raise ModelNotPersistedError(
                f"Cannot edit [{name}] of an unsaved [{type(parent).__name__}]"
            )
        self._parent = parent
        self._relation = relation
        self._key = key

    @property
    def relation(self) -> Relation:
        return self._relation

    def _database(self) -> Database:
        from orm_engine.application.database import get_database

        return get_database()

    def _table(self) -> Builder:
        relation = self._relation
        return Builder.for_table(relation.pivot_table).where(relation.foreign_pivot_key, self._key)

    def _timestamps(self, *columns: str) -> dict[str, str]:
        if not self._relation.pivot_timestamps:
            return {}
        now = fresh_timestamp().strftime(get_config().models.date_format)
        return {column: now for column in columns}

    def _forget_loaded(self) -> None:
        self._parent.unset_relation(self._relation.name)

    def current_ids(self) -> list[Any]:
        """The related keys currently linked to the parent."""
        return list(self._table().pluck(self._relation.related_pivot_key))

    def attach(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> list[Any]:
        """Link related rows, skipping ones already linked.

        Args:
            ids: A key, an entity, a list of those, or a mapping of key to pivot attributes
            attributes: Pivot attributes applied to every inserted row

        Returns:
            The keys that were newly linked
        """
        wanted = _normalize_ids(ids)
        if not wanted:
            return []
        existing = {str(key) for key in self.current_ids()}
        rows = []
        attached = []
        relation = self._relation
        for key, (raw, extra) in wanted.items():
            if key in existing:
                continue
            row = {relation.foreign_pivot_key: self._key, relation.related_pivot_key: raw}
            row.update(attributes or {})
            row.update(extra)
            row.update(self._timestamps("created_at", "updated_at"))
            rows.append(row)
            attached.append(raw)
        if rows:
            self._table().insert(rows)
            logger.debug("Pivot rows attached", relation=relation.name, count=len(rows))
        self._forget_loaded()
        return attached

    def detach(self, ids: Any = None) -> int:
        """Unlink related rows; all of them when ids is None. Returns the row count."""
        query = self._table()
        if ids is not None:
            wanted = _normalize_ids(ids)
            if not wanted:
                return 0
            query = query.where_in(self._relation.related_pivot_key, [raw for raw, _ in wanted.values()])
        count = query.delete()
        self._forget_loaded()
        return count

    def update_existing_pivot(self, id: Any, attributes: Mapping[str, Any]) -> int:
        """Update the pivot attributes of one existing link."""
        values = dict(attributes)
        values.update(self._timestamps("updated_at"))
        if not values:
            return 0
        count = self._table().where(self._relation.related_pivot_key, id).update(values)
        self._forget_loaded()
        return count

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        """Make the linked set equal to ids (or a superset of it when not detaching).

        Returns:
            {"attached": [...], "detached": [...], "updated": [...]}
        """
        wanted = _normalize_ids(ids)

        def apply() -> dict[str, list[Any]]:
            current = {str(key): key for key in self.current_ids()}
            changes: dict[str, list[Any]] = {"attached": [], "detached": [], "updated": []}

            if detaching:
                stale = [raw for key, raw in current.items() if key not in wanted]
                if stale:
                    self.detach(stale)
                    changes["detached"] = stale

            for key, (raw, extra) in wanted.items():
                if key not in current:
                    changes["attached"].extend(self.attach({raw: extra}))
                elif extra and self.update_existing_pivot(raw, extra):
                    changes["updated"].append(raw)
            return changes

        changes = self._database().transaction(apply)
        self._forget_loaded()
        return changes

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]:
        return self.sync(ids, detaching=False)

    def toggle(self, ids: Any) -> dict[str, list[Any]]:
        """Detach linked ids and attach unlinked ones."""
        wanted = _normalize_ids(ids)

        def apply() -> dict[str, list[Any]]:
            current = {str(key) for key in self.current_ids()}
            detach = [raw for key, (raw, _) in wanted.items() if key in current]
            attach = {raw: extra for key, (raw, extra) in wanted.items() if key not in current}
            if detach:
                self.detach(detach)
            attached = self.attach(attach) if attach else []
            return {"attached": attached, "detached": detach}

        changes = self._database().transaction(apply)
        self._forget_loaded()
        return changes
