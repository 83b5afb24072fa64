"""Tenant-aware entity types.

An entity type that names a ``tenant_column`` is scoped to the current
tenant:

    class Note(Model):
        tenant_column = "tenant_id"

    with tenant_context(7):
        Note.all()                  # ... WHERE notes.tenant_id = 7
        Note.create(body="hello")   # tenant_id filled with 7

Outside a tenant context the scope adds nothing. ``Note.for_tenant(3)``
queries one tenant explicitly and replaces the implicit scope;
``without_global_scope(TENANCY_SCOPE)`` removes it.

The current tenant lives in a ContextVar, so threads and asyncio tasks each
see their own value.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, Iterator

import structlog

if TYPE_CHECKING:
    from orm_engine.application.query_builder import Builder

TENANCY_SCOPE = "tenancy"
DEFAULT_TENANT_COLUMN = "tenant_id"

_current_tenant: ContextVar[Any] = ContextVar("orm_engine_current_tenant", default=None)


def current_tenant() -> Any:
    """The active tenant key, or None."""
    return _current_tenant.get()


def set_current_tenant(tenant_id: Any) -> Token:
    """Make tenant_id the active tenant; returns a token for reset_current_tenant()."""
    return _current_tenant.set(tenant_id)


def reset_current_tenant(token: Token) -> None:
    _current_tenant.reset(token)


def clear_current_tenant() -> None:
    _current_tenant.set(None)


@contextmanager
def tenant_context(tenant_id: Any) -> Iterator[Any]:
    """Run a block as tenant_id. Log events inside the block carry ``tenant_id``."""
    token = _current_tenant.set(tenant_id)
    try:
        with structlog.contextvars.bound_contextvars(tenant_id=tenant_id):
            yield tenant_id
    finally:
        _current_tenant.reset(token)


class TenantScope:
    """Global scope restricting queries to the active tenant."""

    def __init__(self, column: str) -> None:
        self.column = column

    def __repr__(self) -> str:
        return f"TenantScope({self.column!r})"

    def apply(self, query: Builder, model: type) -> Builder:
        tenant = current_tenant()
        if tenant is None:
            return query
        return query.where(query.qualify(self.column), tenant)
