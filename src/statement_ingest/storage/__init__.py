"""Persistent storage for statements, transactions and classification state."""

from statement_ingest.storage.sqlite_store import (
    NotFoundError,
    SQLiteStore,
    StorageConflict,
    StorageError,
)

__all__ = ["NotFoundError", "SQLiteStore", "StorageConflict", "StorageError"]
