"""
Audit Logger

DESIGN DECISION: Every significant ledger action is logged.
This provides:
1. Traceability across the two household members
2. Debugging capability for sync and extraction failures
3. A recent-activity list the UI can show

The audit logger:
- Writes structured (JSON) log lines through structlog
- Keeps a bounded in-memory history, newest last
- Never writes to the cloud document (the sync coordinator is the only remote writer)
"""

from collections import deque
from typing import Optional

import structlog

from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


# Configure structlog for local logging
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
    2. A bounded in-memory history (for the activity panel)
    """

    def __init__(self, history_size: int = 200):
        """
        Initialize audit logger.

        Args:
            history_size: How many recent events to keep in memory.
        """
        self._history: deque[AuditEvent] = deque(maxlen=history_size)
        self._logger = structlog.get_logger(__name__)

    def log(self, event: AuditEvent) -> None:
        """Log an audit event locally and remember it."""
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        self._history.append(event)

    def recent_events(self, limit: int = 50) -> list[AuditEvent]:
        """Most recent events, newest first."""
        return list(reversed(self._history))[:limit]

    def events_of_type(self, event_type: AuditEventType) -> list[AuditEvent]:
        """All remembered events of one type, oldest first."""
        return [e for e in self._history if e.event_type == event_type]

    # -- convenience wrappers ------------------------------------------------

    def log_signed_in(self, email: str, user_id: str) -> None:
        self.log(AuditEventBuilder.signed_in(email=email, user_id=user_id))

    def log_signed_out(self, email: Optional[str]) -> None:
        self.log(AuditEventBuilder.signed_out(email=email))

    def log_auth_failed(self, email: str, reason: str) -> None:
        self.log(AuditEventBuilder.auth_failed(email=email, reason=reason))

    def log_transaction_added(
        self,
        transaction_id: str,
        transaction_type: str,
        amount: str,
        actor: str,
        source: str = "manual",
    ) -> None:
        self.log(AuditEventBuilder.transaction_added(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            actor=actor,
            source=source,
        ))

    def log_transaction_changed(
        self,
        event_type: AuditEventType,
        transaction_id: str,
        actor: str,
    ) -> None:
        self.log(AuditEventBuilder.transaction_changed(
            event_type=event_type,
            transaction_id=transaction_id,
            actor=actor,
        ))

    def log_category_changed(
        self,
        event_type: AuditEventType,
        category_id: str,
        name: str,
        category_type: str,
    ) -> None:
        self.log(AuditEventBuilder.category_changed(
            event_type=event_type,
            category_id=category_id,
            name=name,
            category_type=category_type,
        ))

    def log_extraction_completed(self, kind: str, filename: str, record_count: int) -> None:
        self.log(AuditEventBuilder.extraction_completed(
            kind=kind,
            filename=filename,
            record_count=record_count,
        ))

    def log_extraction_failed(
        self,
        kind: str,
        filename: str,
        error_kind: str,
        error_message: str,
    ) -> None:
        self.log(AuditEventBuilder.extraction_failed(
            kind=kind,
            filename=filename,
            error_kind=error_kind,
            error_message=error_message,
        ))

    def log_sync_failed(
        self,
        operation: str,
        error_message: str,
        attempts: int,
        user_id: Optional[str] = None,
    ) -> None:
        self.log(AuditEventBuilder.sync_failed(
            operation=operation,
            error_message=error_message,
            attempts=attempts,
            user_id=user_id,
        ))
