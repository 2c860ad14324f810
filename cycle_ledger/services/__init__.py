"""Services package."""

from cycle_ledger.services.notifier import (
    ChangeNotifier,
    Subscription,
)
from cycle_ledger.services.storage import (
    ConnectionError,
    ConstraintViolationError,
    NotFoundError,
    RecordStoreInterface,
    SQLiteRecordStore,
    StorageError,
)

__all__ = [
    # Notification
    "ChangeNotifier",
    "Subscription",
    # Storage services
    "ConnectionError",
    "ConstraintViolationError",
    "NotFoundError",
    "RecordStoreInterface",
    "SQLiteRecordStore",
    "StorageError",
]
