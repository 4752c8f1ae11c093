"""
Audit Logger

DESIGN DECISION: Every import leaves a trail.
Parsed counts, rejected messages, duplicate flags and the user's
decisions are all logged. This provides:
1. Traceability from a ledger row back to the pasted text
2. Debugging capability for formats we fail to parse
3. A history the user can inspect

The audit logger:
- Is synchronous, like the rest of the core
- Gracefully handles sink failures (never breaks an import)
- Supports correlation IDs to tie the events of one import together
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from pesabook.config import get_settings
from pesabook.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from pesabook.services.storage import AuditSink, StorageError


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Configure structlog for JSON output through the stdlib logger.

    Only the "pesabook" logger's level is set (default
    AppSettings.log_level); handlers and the root logger belong to the
    host application.
    """
    level = log_level or get_settings().app.log_level
    logging.getLogger("pesabook").setLevel(getattr(logging, level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit sink, when one is configured
    """

    def __init__(self, sink: Optional[AuditSink] = None):
        """
        Initialize audit logger.

        Args:
            sink: Destination for persisted events.
                  If None, only logs locally.
        """
        self._sink = sink
        self._logger = structlog.get_logger(__name__)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Forwards to the sink if available.

        Returns True if the sink accepted the event (or no sink is configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._sink is None:
            return True

        try:
            return self._sink.append_event(event)
        except StorageError as e:
            self._logger.error(
                "audit_sink_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an import and pass it through every step
    until the commit plan is built.
    """
    return uuid4()
