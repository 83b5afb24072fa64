"""Application layer for the ORM engine.

The application layer ties the domain pieces to storage: it executes
statements, builds and runs queries, loads relations and persists entities.

Exports:
    Database:
        - Database: statement execution, query log and transactions
        - get_database, set_database, set_connection_factory, reset_database
    Querying:
        - Builder: immutable, fluent query builder
        - EagerLoader: batched relation loading
        - LengthAwarePaginator, Paginator: page containers
    Entities:
        - Model: Active Record base class
        - Pivot: pivot-table row attached to many-to-many results
        - PivotOperations: attach/detach/sync for many-to-many relations
        - scope: local scope decorator
    Registry:
        - ModelRegistry, get_registry, register_morph_map
    Tenancy:
        - tenant_context, set_current_tenant, current_tenant: the active tenant
          seen by entity types declaring a tenant_column
"""

from orm_engine.application.database import (
    Database,
    QueryLogEntry,
    get_database,
    reset_database,
    set_connection_factory,
    set_database,
)
from orm_engine.application.eager_loader import EagerLoader
from orm_engine.application.model import Model, Pivot, scope
from orm_engine.application.pagination import LengthAwarePaginator, Paginator
from orm_engine.application.query_builder import Builder, TrashMode
from orm_engine.application.registry import ModelRegistry, get_registry, register_morph_map
from orm_engine.application.relations import PivotOperations
from orm_engine.application.tenancy import (
    TENANCY_SCOPE,
    clear_current_tenant,
    current_tenant,
    reset_current_tenant,
    set_current_tenant,
    tenant_context,
)

__all__ = [
    "Builder",
    "Database",
    "EagerLoader",
    "LengthAwarePaginator",
    "Model",
    "ModelRegistry",
    "Paginator",
    "Pivot",
    "PivotOperations",
    "QueryLogEntry",
    "TENANCY_SCOPE",
    "TrashMode",
    "clear_current_tenant",
    "current_tenant",
    "get_database",
    "get_registry",
    "register_morph_map",
    "reset_current_tenant",
    "reset_database",
    "scope",
    "set_connection_factory",
    "set_current_tenant",
    "set_database",
    "tenant_context",
]
