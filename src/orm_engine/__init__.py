"""
ORM Engine - Active Record data mapping

Entities backed by relational rows, an immutable query builder, batched
eager loading of declared relations, transactions with savepoints,
optimistic concurrency and soft deletes.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from orm_engine.application import (  # noqa: E402
    Builder,
    Database,
    Model,
    Pivot,
    get_database,
    register_morph_map,
    reset_database,
    scope,
    set_connection_factory,
    set_current_tenant,
    set_database,
    tenant_context,
)
from orm_engine.domain.entities import (  # noqa: E402
    Collection,
    accessor,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    morph_many,
    morph_one,
    morph_to,
    mutator,
)

__all__ = [
    "Builder",
    "Collection",
    "Database",
    "Model",
    "Pivot",
    "accessor",
    "belongs_to",
    "belongs_to_many",
    "get_database",
    "has_many",
    "has_one",
    "morph_many",
    "morph_one",
    "morph_to",
    "mutator",
    "register_morph_map",
    "reset_database",
    "scope",
    "set_connection_factory",
    "set_current_tenant",
    "set_database",
    "tenant_context",
]
