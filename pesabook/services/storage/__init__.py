"""
Storage Services Package

Abstract collaborator interfaces for the external ledger store, plus an
in-memory implementation. No storage technology is assumed.
"""

from pesabook.services.storage.interface import (
    AuditSink,
    LedgerReadModel,
    NotFoundError,
    StorageError,
)
from pesabook.services.storage.memory import InMemoryLedger

__all__ = [
    # Interfaces
    "AuditSink",
    "LedgerReadModel",
    # Exceptions
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryLedger",
]
