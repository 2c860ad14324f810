"""
Storage Services Package

Provides the abstract record store interface and its SQLite implementation.
"""

from cycle_ledger.services.storage.interface import (
    ConnectionError,
    ConstraintViolationError,
    NotFoundError,
    RecordStoreInterface,
    StorageError,
)
from cycle_ledger.services.storage.sqlite_store import SQLiteRecordStore

__all__ = [
    # Interface
    "RecordStoreInterface",
    # Exceptions
    "ConnectionError",
    "ConstraintViolationError",
    "NotFoundError",
    "StorageError",
    # SQLite implementation
    "SQLiteRecordStore",
]
