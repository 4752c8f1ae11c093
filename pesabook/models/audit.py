"""
Audit Models for pesabook

Every ingestion step emits an audit event. This provides:
1. Traceability from raw pasted text to committed records
2. Debugging information when a message format drifts
3. Failure counts the UI can show without re-parsing

DESIGN DECISION: Audit events are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the import pipeline has its own event type.
    """
    # Parsing
    MESSAGES_PARSED = "messages_parsed"
    MESSAGE_REJECTED = "message_rejected"
    STATEMENT_PARSED = "statement_parsed"

    # Reconciliation
    DUPLICATES_FLAGGED = "duplicates_flagged"
    CATEGORY_INFERRED = "category_inferred"
    RECURRING_LINKED = "recurring_linked"
    RECURRING_CONFLICT = "recurring_conflict"

    # Human decisions
    RESOLUTION_APPLIED = "resolution_applied"
    COMMIT_PLAN_BUILT = "commit_plan_built"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - which batch or transaction is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'batch', 'transaction', 'statement')"
    )
    entity_ref: Optional[str] = Field(
        default=None,
        description="Reference code or identifier of the entity"
    )

    # Correlation - all events of one import share this
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user decision?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_ref": self.entity_ref,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> list[str]:
        """
        Flatten into a row for tabular audit stores.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_ref,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_ref or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.messages_parsed(12, 1, 0, correlation_id)
        event = AuditEventBuilder.resolution_applied("QGH7X9KLM0", "merge", correlation_id)
    """

    @staticmethod
    def messages_parsed(
        parsed: int,
        failed: int,
        repeated: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGES_PARSED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Parsed {parsed} messages ({failed} failed, {repeated} repeated)",
            details={
                "parsed": parsed,
                "failed": failed,
                "repeated_references": repeated,
            },
        )

    @staticmethod
    def message_rejected(
        index: int,
        error_kind: str,
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MESSAGE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="message",
            correlation_id=correlation_id,
            description=f"Message {index} rejected: {error_kind}",
            error_message=reason,
            details={
                "index": index,
                "error_kind": error_kind,
            },
        )

    @staticmethod
    def statement_parsed(
        parsed: int,
        skipped: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_PARSED,
            entity_type="statement",
            correlation_id=correlation_id,
            description=f"Statement tokenized: {parsed} rows kept, {skipped} skipped",
            details={
                "parsed": parsed,
                "skipped": skipped,
            },
        )

    @staticmethod
    def duplicates_flagged(
        flagged: int,
        reference_matches: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_FLAGGED,
            severity=AuditSeverity.WARNING if flagged else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"{flagged} transactions flagged as possible duplicates",
            details={
                "flagged": flagged,
                "reference_matches": reference_matches,
            },
        )

    @staticmethod
    def category_inferred(
        counterparty: str,
        category: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_INFERRED,
            severity=AuditSeverity.DEBUG,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Category '{category}' inferred for {counterparty}",
            details={
                "counterparty": counterparty,
                "category": category,
            },
        )

    @staticmethod
    def recurring_linked(
        reference: Optional[str],
        definition_name: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_LINKED,
            entity_type="transaction",
            entity_ref=reference,
            correlation_id=correlation_id,
            description=f"Linked to recurring payment '{definition_name}'",
            details={
                "definition": definition_name,
            },
        )

    @staticmethod
    def recurring_conflict(
        reference: Optional[str],
        definition_names: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_ref=reference,
            correlation_id=correlation_id,
            description=f"{len(definition_names)} recurring definitions share the same identifiers",
            details={
                "definitions": definition_names,
            },
        )

    @staticmethod
    def resolution_applied(
        reference: Optional[str],
        resolution: str,
        correlation_id: Optional[UUID] = None,
        target_id: Optional[str] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESOLUTION_APPLIED,
            entity_type="transaction",
            entity_ref=reference,
            correlation_id=correlation_id,
            description=f"User chose '{resolution}' for flagged transaction",
            details={
                "resolution": resolution,
                "target_id": target_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def commit_plan_built(
        added: int,
        merged: int,
        ignored: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMIT_PLAN_BUILT,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Commit plan: {added} add, {merged} merge, {ignored} ignore",
            details={
                "added": added,
                "merged": merged,
                "ignored": ignored,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
