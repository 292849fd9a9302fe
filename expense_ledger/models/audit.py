"""
Audit Models for Expense Ledger

Every cross-store mutation is recorded as an audit event, and so is every
partial failure that leaves an orphaned resource behind. The trail is what
an operator reads to reclaim orphans or repair a dangling reference.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Receipts
    RECEIPT_UPLOADED = "receipt_uploaded"
    RECEIPT_LINKED = "receipt_linked"
    RECEIPT_UNLINKED = "receipt_unlinked"
    RECEIPT_DELETED = "receipt_deleted"
    RECEIPT_LINKS_RESTORED = "receipt_links_restored"

    # Consistency
    ORPHAN_BLOB_LEFT = "orphan_blob_left"
    ORPHAN_BLOB_RECLAIMED = "orphan_blob_reclaimed"
    DANGLING_REFERENCE_REPAIRED = "dangling_reference_repaired"
    PARTIAL_CONSISTENCY_FAILURE = "partial_consistency_failure"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


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
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'receipt', 'blob')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity; receipt and blob ids are opaque strings"
    )
    user_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate events of one logical operation"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

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
            "user_id": str(self.user_id) if self.user_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_linked(user_id, receipt_id, expense_id, None, cid)
    """

    @staticmethod
    def expense_saved(
        user_id: UUID,
        expense_id: UUID,
        amount: str,
        currency: str,
        created: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.EXPENSE_CREATED if created else AuditEventType.EXPENSE_UPDATED
            ),
            entity_type="expense",
            entity_id=str(expense_id),
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Expense {'created' if created else 'updated'}: {amount} {currency}",
            details={"amount": amount, "currency": currency},
        )

    @staticmethod
    def expense_deleted(
        user_id: UUID,
        expense_id: UUID,
        cleared_receipts: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=str(expense_id),
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Expense deleted; {len(cleared_receipts)} receipt(s) unassigned",
            details={"cleared_receipts": cleared_receipts},
        )

    @staticmethod
    def receipt_uploaded(
        user_id: UUID,
        receipt_id: str,
        filename: str,
        size_bytes: int,
        expense_id: Optional[UUID],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UPLOADED,
            entity_type="receipt",
            entity_id=receipt_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Receipt uploaded: {filename}",
            details={
                "filename": filename,
                "size_bytes": size_bytes,
                "expense_id": str(expense_id) if expense_id else None,
            },
        )

    @staticmethod
    def receipt_linked(
        user_id: UUID,
        receipt_id: str,
        expense_id: UUID,
        previous_expense_id: Optional[UUID],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_LINKED,
            entity_type="receipt",
            entity_id=receipt_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Receipt linked to expense {expense_id}",
            details={
                "expense_id": str(expense_id),
                "previous_expense_id": str(previous_expense_id) if previous_expense_id else None,
            },
        )

    @staticmethod
    def receipt_unlinked(
        user_id: UUID,
        receipt_id: str,
        previous_expense_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_UNLINKED,
            entity_type="receipt",
            entity_id=receipt_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Receipt unlinked from expense",
            details={"previous_expense_id": str(previous_expense_id)},
        )

    @staticmethod
    def receipt_deleted(
        user_id: UUID,
        receipt_id: str,
        content_handle: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_DELETED,
            entity_type="receipt",
            entity_id=receipt_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Receipt deleted",
            details={"content_handle": content_handle},
        )

    @staticmethod
    def links_restored(
        expense_id: UUID,
        receipt_ids: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECEIPT_LINKS_RESTORED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Expense delete failed; receipt links restored",
            details={"receipt_ids": receipt_ids},
        )

    @staticmethod
    def orphan_blob_left(
        content_handle: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHAN_BLOB_LEFT,
            severity=AuditSeverity.WARNING,
            entity_type="blob",
            entity_id=content_handle,
            correlation_id=correlation_id,
            description="Blob left without metadata; awaiting sweep",
            details={"reason": reason},
        )

    @staticmethod
    def orphan_blob_reclaimed(
        content_handle: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHAN_BLOB_RECLAIMED,
            entity_type="blob",
            entity_id=content_handle,
            correlation_id=correlation_id,
            description="Orphaned blob reclaimed",
        )

    @staticmethod
    def dangling_reference_repaired(
        user_id: UUID,
        receipt_id: str,
        missing_expense_id: UUID,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DANGLING_REFERENCE_REPAIRED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            entity_id=receipt_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Receipt referenced a missing expense; link cleared",
            details={"missing_expense_id": str(missing_expense_id)},
        )

    @staticmethod
    def partial_consistency_failure(
        operation: str,
        error_message: str,
        orphans: dict[str, list[str]],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTIAL_CONSISTENCY_FAILURE,
            severity=AuditSeverity.ERROR,
            description=f"Partial consistency failure during {operation}",
            error_message=error_message,
            details={"operation": operation, "orphans": orphans},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        store: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error: {store}",
            error_message=error_message,
            details={"store": store},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
