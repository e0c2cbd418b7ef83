"""
Audit Models for Household Ledger

Every significant action in the system is recorded as an audit event.
This provides:
1. Traceability of who changed what in the shared ledger
2. Debugging information when a sync or an extraction goes wrong
3. A short history the UI can show back to the household

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the reconciliation workflow has its own event type.
    """
    # Session
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    AUTH_FAILED = "auth_failed"

    # Ledger mutations
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_REMOVED = "transaction_removed"
    CATEGORY_ADDED = "category_added"
    CATEGORY_RENAMED = "category_renamed"
    CATEGORY_DELETED = "category_deleted"
    USER_NAMES_UPDATED = "user_names_updated"
    MANUAL_ENTRY_REJECTED = "manual_entry_rejected"

    # Extraction
    RECEIPT_EXTRACTED = "receipt_extracted"
    STATEMENT_EXTRACTED = "statement_extracted"
    EXTRACTION_FAILED = "extraction_failed"

    # Import staging
    IMPORT_STAGED = "import_staged"
    IMPORT_COMMITTED = "import_committed"
    IMPORT_CANCELLED = "import_cancelled"

    # Cloud sync
    LEDGER_LOADED = "ledger_loaded"
    LEDGER_SEEDED = "ledger_seeded"
    LEDGER_SAVED = "ledger_saved"
    SYNC_FAILED = "sync_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


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
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'category', 'import')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who acted
    actor: Optional[str] = Field(
        default=None,
        description="Household member (or account email) behind the action"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
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
            "entity_id": self.entity_id,
            "actor": self.actor,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(tx_id, "expense", "12.50", "user_a")
        event = AuditEventBuilder.sync_failed("write", "timeout", attempts=3)
    """

    @staticmethod
    def signed_in(email: str, user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_IN,
            entity_type="session",
            entity_id=user_id,
            actor=email,
            description=f"Signed in: {email}",
            is_user_action=True,
        )

    @staticmethod
    def signed_out(email: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_OUT,
            entity_type="session",
            actor=email,
            description="Signed out",
            is_user_action=True,
        )

    @staticmethod
    def auth_failed(email: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            actor=email,
            description="Sign-in failed",
            error_message=reason,
        )

    @staticmethod
    def transaction_added(
        transaction_id: str,
        transaction_type: str,
        amount: str,
        actor: str,
        source: str = "manual",
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor=actor,
            description=f"{transaction_type.capitalize()} of {amount} recorded",
            details={
                "type": transaction_type,
                "amount": amount,
                "source": source,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        transaction_id: str,
        actor: str,
    ) -> AuditEvent:
        verb = "updated" if event_type == AuditEventType.TRANSACTION_UPDATED else "removed"
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            actor=actor,
            description=f"Transaction {verb}",
            is_user_action=True,
        )

    @staticmethod
    def category_changed(
        event_type: AuditEventType,
        category_id: str,
        name: str,
        category_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="category",
            entity_id=category_id,
            description=f"{category_type.capitalize()} category '{name}': {event_type.value.split('_')[-1]}",
            details={
                "name": name,
                "type": category_type,
            },
            is_user_action=True,
        )

    @staticmethod
    def user_names_updated(user_a: str, user_b: str, actor: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_NAMES_UPDATED,
            entity_type="household",
            actor=actor,
            description="Household member names updated",
            details={"user_a": user_a, "user_b": user_b},
            is_user_action=True,
        )

    @staticmethod
    def manual_entry_rejected(issues: list[dict], actor: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_ENTRY_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            actor=actor,
            description=f"Manual entry blocked with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def extraction_completed(
        kind: str,
        filename: str,
        record_count: int,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.RECEIPT_EXTRACTED
            if kind == "receipt"
            else AuditEventType.STATEMENT_EXTRACTED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type="extraction",
            description=f"{kind.capitalize()} '{filename}' produced {record_count} records",
            details={
                "filename": filename,
                "record_count": record_count,
            },
        )

    @staticmethod
    def extraction_failed(kind: str, filename: str, error_kind: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            description=f"{kind.capitalize()} extraction failed ({error_kind})",
            details={
                "filename": filename,
                "error_kind": error_kind,
            },
            error_message=error_message,
        )

    @staticmethod
    def import_event(
        event_type: AuditEventType,
        item_count: int,
        total: str,
        actor: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="import",
            actor=actor,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {item_count} items, total {total}",
            details={
                "item_count": item_count,
                "total": total,
            },
            is_user_action=event_type != AuditEventType.IMPORT_STAGED,
        )

    @staticmethod
    def ledger_synced(
        event_type: AuditEventType,
        user_id: str,
        transaction_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="ledger",
            entity_id=user_id,
            description=f"Ledger {event_type.value.split('_')[-1]} with {transaction_count} transactions",
            details={"transaction_count": transaction_count},
        )

    @staticmethod
    def sync_failed(
        operation: str,
        error_message: str,
        attempts: int,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="ledger",
            entity_id=user_id,
            description=f"Cloud {operation} failed after {attempts} attempts",
            details={
                "operation": operation,
                "attempts": attempts,
            },
            error_message=error_message,
        )
