"""Services package."""

from pesabook.services.storage import (
    AuditSink,
    InMemoryLedger,
    LedgerReadModel,
    NotFoundError,
    StorageError,
)

__all__ = [
    "AuditSink",
    "InMemoryLedger",
    "LedgerReadModel",
    "NotFoundError",
    "StorageError",
]
