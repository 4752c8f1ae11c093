"""
In-Memory Ledger

A LedgerReadModel and AuditSink held in plain lists. Used by the tests
and handy for scripts that load a ledger export once and reconcile
against it.
"""

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from pesabook.models.audit import AuditEvent
from pesabook.models.reconciliation import CommitPlan
from pesabook.models.transaction import (
    ExistingRecord,
    RecipientAlias,
    RecurringDefinition,
)
from pesabook.services.storage.interface import (
    AuditSink,
    LedgerReadModel,
    NotFoundError,
)


class InMemoryLedger(LedgerReadModel, AuditSink):
    """In-memory store implementing both collaborator interfaces."""

    def __init__(
        self,
        records: Optional[Iterable[ExistingRecord]] = None,
        definitions: Optional[Iterable[RecurringDefinition]] = None,
        aliases: Optional[Iterable[RecipientAlias]] = None,
    ):
        self._records = list(records or [])
        self._definitions = list(definitions or [])
        self._aliases = list(aliases or [])
        self.events: list[AuditEvent] = []

    def list_records(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[ExistingRecord]:
        records = [r for r in self._records if since is None or r.timestamp >= since]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        if limit is not None:
            records = records[:limit]
        return [r.model_copy() for r in records]

    def list_recurring_definitions(self, include_inactive: bool = False) -> list[RecurringDefinition]:
        return [d for d in self._definitions if include_inactive or d.is_active]

    def list_aliases(self) -> list[RecipientAlias]:
        return list(self._aliases)

    def get_record(self, record_id: str) -> ExistingRecord:
        """
        Raises:
            NotFoundError: No record with this id
        """
        for record in self._records:
            if record.id == record_id:
                return record
        raise NotFoundError(f"Record {record_id} not found")

    def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    def events_for(self, correlation_id: UUID) -> list[AuditEvent]:
        """Events of one import, in the order they were logged."""
        return [e for e in self.events if e.correlation_id == correlation_id]

    def apply(self, plan: CommitPlan) -> list[ExistingRecord]:
        """
        Execute a commit plan against the in-memory records.

        New records get sequential ids. Returns the records added.

        Raises:
            NotFoundError: A merge targets an unknown record
        """
        for instruction in plan.to_merge:
            record = self.get_record(instruction.record_id)
            for field, value in instruction.updates.items():
                setattr(record, field, value)

        added = []
        for txn in plan.to_add:
            record = ExistingRecord(
                id=f"rec-{len(self._records) + 1}",
                amount=txn.amount,
                counterparty=txn.counterparty,
                timestamp=txn.timestamp,
                kind=txn.kind,
                reference=txn.reference,
                fee=txn.fee,
                balance_after=txn.balance_after,
                raw_message=txn.raw_message,
            )
            self._records.append(record)
            added.append(record)
        return added
