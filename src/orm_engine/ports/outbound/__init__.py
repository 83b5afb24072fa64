"""Outbound ports - what the ORM core requires of its storage collaborator."""

from orm_engine.ports.outbound.storage import Cursor, StorageConnection

__all__ = ["Cursor", "StorageConnection"]
