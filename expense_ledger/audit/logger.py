"""
Audit Logger

DESIGN DECISION: Every cross-store mutation is logged, and so is every
partial failure that leaves an orphan behind.
This provides:
1. Traceability of links and cascades
2. A work list for the orphan sweep
3. Evidence when a dangling reference needs repair

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_ledger.services.storage.interface import AuditStorageInterface


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
    1. Structured local log (always)
    2. An AuditStorageInterface backend (when one is configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_saved(
        self,
        user_id: UUID,
        expense_id: UUID,
        amount: str,
        currency: str,
        created: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_saved(
            user_id=user_id,
            expense_id=expense_id,
            amount=amount,
            currency=currency,
            created=created,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        user_id: UUID,
        expense_id: UUID,
        cleared_receipts: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log an expense delete together with the receipts it unassigned."""
        await self.log(AuditEventBuilder.expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            cleared_receipts=cleared_receipts,
            correlation_id=correlation_id,
        ))

    async def log_receipt_uploaded(
        self,
        user_id: UUID,
        receipt_id: str,
        filename: str,
        size_bytes: int,
        expense_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_uploaded(
            user_id=user_id,
            receipt_id=receipt_id,
            filename=filename,
            size_bytes=size_bytes,
            expense_id=expense_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_linked(
        self,
        user_id: UUID,
        receipt_id: str,
        expense_id: UUID,
        previous_expense_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_linked(
            user_id=user_id,
            receipt_id=receipt_id,
            expense_id=expense_id,
            previous_expense_id=previous_expense_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_unlinked(
        self,
        user_id: UUID,
        receipt_id: str,
        previous_expense_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_unlinked(
            user_id=user_id,
            receipt_id=receipt_id,
            previous_expense_id=previous_expense_id,
            correlation_id=correlation_id,
        ))

    async def log_receipt_deleted(
        self,
        user_id: UUID,
        receipt_id: str,
        content_handle: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_deleted(
            user_id=user_id,
            receipt_id=receipt_id,
            content_handle=content_handle,
            correlation_id=correlation_id,
        ))

    async def log_links_restored(
        self,
        expense_id: UUID,
        receipt_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.links_restored(
            expense_id=expense_id,
            receipt_ids=receipt_ids,
            correlation_id=correlation_id,
        ))

    async def log_orphan_blob(
        self,
        content_handle: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Record a blob deliberately left behind for the sweep."""
        await self.log(AuditEventBuilder.orphan_blob_left(
            content_handle=content_handle,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_orphan_reclaimed(
        self,
        content_handle: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.orphan_blob_reclaimed(
            content_handle=content_handle,
            correlation_id=correlation_id,
        ))

    async def log_dangling_repaired(
        self,
        user_id: UUID,
        receipt_id: str,
        missing_expense_id: UUID,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.dangling_reference_repaired(
            user_id=user_id,
            receipt_id=receipt_id,
            missing_expense_id=missing_expense_id,
            correlation_id=correlation_id,
        ))

    async def log_partial_failure(
        self,
        operation: str,
        error_message: str,
        orphans: dict[str, list[str]],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.partial_consistency_failure(
            operation=operation,
            error_message=error_message,
            orphans=orphans,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        store: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            store=store,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., receipt upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
