"""Outbound adapters - storage implementations."""

from orm_engine.adapters.outbound.sqlite_connection import SQLiteConnection, SQLiteCursor

__all__ = ["SQLiteConnection", "SQLiteCursor"]
