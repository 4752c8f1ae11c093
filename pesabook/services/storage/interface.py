"""
Abstract Collaborator Interfaces

DESIGN DECISION: The core never owns persistence.
Existing transactions, recurring definitions and aliases live in an
external store. The core only needs to READ them (as the history passed
to the reconcilers) and to hand audit events to somewhere durable. These
interfaces name exactly that, so that:
1. Any store (a document database, a spreadsheet, SQL) can back the core
2. Tests use the in-memory implementation
3. Writes stay the caller's business, driven by the CommitPlan
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pesabook.models.audit import AuditEvent
from pesabook.models.transaction import (
    ExistingRecord,
    RecipientAlias,
    RecurringDefinition,
)


class LedgerReadModel(ABC):
    """
    Read-only view of the user's ledger.

    Implementations return snapshots; the core never modifies them.
    """

    @abstractmethod
    def list_records(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[ExistingRecord]:
        """
        List existing transaction records.

        Args:
            since: Only records at or after this time
            limit: Maximum number of records, newest first

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    @abstractmethod
    def list_recurring_definitions(self, include_inactive: bool = False) -> list[RecurringDefinition]:
        """List recurring payment definitions in user-defined order."""
        pass

    @abstractmethod
    def list_aliases(self) -> list[RecipientAlias]:
        """List recipient display-name aliases."""
        pass


class AuditSink(ABC):
    """
    Destination for audit events.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully

        Raises:
            StorageError: If the sink is unavailable
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass
