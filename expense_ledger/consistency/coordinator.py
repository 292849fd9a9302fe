"""
Consistency Coordinator

Ties the ledger store to the receipt index and the blob store.

There is no distributed transaction across the three stores. Instead,
every cross-store mutation follows a fixed, idempotent protocol:

1. Upload   -> blob first, then metadata. A failed metadata write leaves
               an audited orphan blob, never a record without bytes.
2. Link     -> verify receipt owner, expense existence and expense owner,
               then set the reference. Same target is a no-op.
3. Unlink   -> clear the reference. Always idempotent.
4. Delete receipt -> metadata first, then the blob. A failed blob delete
               leaves an audited orphan blob, never a dangling record.
5. Delete expense -> clear receipt references (retried), then delete the
               expense inside the ledger transaction. A failed delete
               restores the cleared references. A second clear after the
               delete catches links made in between.

DESIGN DECISION: The coordinator never reports success while an invariant
is violated. When it cannot restore one, it raises
PartialConsistencyFailure naming what was left behind.

Every receipt operation checks `receipt.user_id` against the caller first.
A mismatch is OwnershipViolationError, never a silently empty result.
"""

from typing import Awaitable, BinaryIO, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.config import get_settings
from expense_ledger.errors import (
    NotFoundError,
    OwnershipViolationError,
    PartialConsistencyFailure,
    StorageTransientError,
)
from expense_ledger.models.ledger import Expense, ExpenseDraft, ExpenseUpdate, User, utcnow
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.search import Page, PagedResult
from expense_ledger.services.blob.content import clean_filename, detect_mime_type
from expense_ledger.services.storage.guard import guarded
from expense_ledger.services.storage.interface import (
    BlobStoreInterface,
    LedgerStoreInterface,
    ReceiptIndexInterface,
)
from expense_ledger.validation.validator import InputValidator, input_errors


T = TypeVar("T")

logger = structlog.get_logger(__name__)

LEDGER = "ledger"
RECEIPT_INDEX = "receipt_index"
BLOB = "blob"

PENDING_HANDLE = "pending"


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "store_call_retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


class ConsistencyCoordinator:
    """
    Cross-store protocol for expenses and their receipts.

    Holds no mutable state of its own; all state lives in the stores.
    """

    def __init__(
        self,
        ledger: LedgerStoreInterface,
        receipts: ReceiptIndexInterface,
        blobs: BlobStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_max_wait: Optional[float] = None,
    ):
        storage_settings = get_settings().storage

        self._ledger = ledger
        self._receipts = receipts
        self._blobs = blobs
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or InputValidator()
        self._timeout = timeout if timeout is not None else storage_settings.timeout_seconds
        self._retry_attempts = retry_attempts or storage_settings.retry_attempts
        self._retry_max_wait = (
            retry_max_wait if retry_max_wait is not None
            else storage_settings.retry_max_wait_seconds
        )

    # =========================================================================
    # Store access
    # =========================================================================

    async def _call(self, coro: Awaitable[T], store: str) -> T:
        return await guarded(coro, store, self._timeout)

    async def _retried(self, make_call: Callable[[], Awaitable[T]], store: str) -> T:
        """Run a store call, retrying StorageTransientError with backoff."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=self._retry_max_wait),
            retry=retry_if_exception_type(StorageTransientError),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                result = await self._call(make_call(), store)
        return result

    async def _require_user(self, user_id: UUID) -> User:
        user = await self._call(self._ledger.find_user(user_id), LEDGER)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _owned_expense(self, user_id: UUID, expense_id: UUID) -> Expense:
        expense = await self._call(self._ledger.find_expense(expense_id), LEDGER)
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        if expense.user_id != user_id:
            raise OwnershipViolationError("Expense", expense_id)
        return expense

    async def _owned_receipt(self, user_id: UUID, receipt_id: str) -> ReceiptMetadata:
        receipt = await self._call(self._receipts.find_by_receipt_id(receipt_id), RECEIPT_INDEX)
        if receipt is None:
            raise NotFoundError("Receipt", receipt_id)
        if receipt.user_id != user_id:
            raise OwnershipViolationError("Receipt", receipt_id)
        return receipt

    async def _check_category(self, user_id: UUID, category_id: UUID) -> None:
        category = await self._call(self._ledger.find_category(category_id), LEDGER)
        if category is None:
            raise NotFoundError("Category", category_id)
        if category.user_id != user_id:
            raise OwnershipViolationError("Category", category_id)

    async def _sync_legacy_link(
        self,
        expense_id: UUID,
        receipt_id: str,
        linked: bool,
    ) -> None:
        """
        Keep Expense.receipt_id pointing at the most recently linked receipt.

        Best effort: the receipt index is authoritative, so a failure here
        is logged and otherwise ignored.
        """
        try:
            expense = await self._call(self._ledger.find_expense(expense_id), LEDGER)
            if expense is None:
                return
            if linked:
                if expense.receipt_id == receipt_id:
                    return
                expense.receipt_id = receipt_id
            else:
                if expense.receipt_id != receipt_id:
                    return
                expense.receipt_id = None
            await self._call(self._ledger.save_expense(expense), LEDGER)
        except Exception as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=f"legacy receipt link not updated: {e}",
                details={"expense_id": str(expense_id), "receipt_id": receipt_id},
            )

    # =========================================================================
    # Expenses
    # =========================================================================

    async def create_expense(
        self,
        user_id: UUID,
        draft: ExpenseDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Create an expense in one of the user's categories.

        Raises:
            NotFoundError: Unknown user or category
            OwnershipViolationError: Category belongs to another user
        """
        correlation_id = correlation_id or create_correlation_id()

        await self._require_user(user_id)
        await self._check_category(user_id, draft.category_id)

        with input_errors():
            expense = Expense.from_draft(user_id, draft)
        saved = await self._call(self._ledger.save_expense(expense), LEDGER)

        await self._audit.log_expense_saved(
            user_id=user_id,
            expense_id=saved.id,
            amount=str(saved.amount),
            currency=saved.currency,
            created=True,
            correlation_id=correlation_id,
        )
        return saved

    async def update_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        update: ExpenseUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Apply the fields set on `update`; the result is re-validated."""
        correlation_id = correlation_id or create_correlation_id()

        expense = await self._owned_expense(user_id, expense_id)
        changes = update.changes()
        if not changes:
            return expense

        if changes.get("category_id") and changes["category_id"] != expense.category_id:
            await self._check_category(user_id, changes["category_id"])

        with input_errors():
            updated = expense.with_changes(changes)
        saved = await self._call(self._ledger.save_expense(updated), LEDGER)

        await self._audit.log_expense_saved(
            user_id=user_id,
            expense_id=saved.id,
            amount=str(saved.amount),
            currency=saved.currency,
            created=False,
            correlation_id=correlation_id,
        )
        return saved

    async def delete_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Delete an expense and unassign every receipt linked to it.

        Receipts are never deleted with the expense; they become unassigned.

        Returns:
            IDs of the receipts that were unassigned

        Raises:
            NotFoundError / OwnershipViolationError: Before anything changes
            StorageTransientError: Nothing was changed, or changes were undone
            PartialConsistencyFailure: Cleared links could not be restored
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._owned_expense(user_id, expense_id)

        linked_before = await self._call(
            self._receipts.find_by_expense_id(expense_id), RECEIPT_INDEX
        )

        # Step 1: clear references (idempotent, retried)
        try:
            cleared = await self._retried(
                lambda: self._receipts.clear_expense_ref(expense_id), RECEIPT_INDEX
            )
        except Exception as e:
            await self._restore_links(
                expense_id, [r.id for r in linked_before], correlation_id, e
            )
            raise

        # Step 2: delete the expense inside the ledger transaction
        try:
            async with self._ledger.transaction():
                await self._call(self._ledger.delete_expense(expense_id), LEDGER)
        except Exception as e:
            if await self._expense_survived(expense_id, cleared, correlation_id, e):
                await self._restore_links(expense_id, cleared, correlation_id, e)
                raise
            logger.info("expense_delete_committed_despite_error", expense_id=str(expense_id))

        # Step 3: catch links made between step 1 and step 2
        try:
            late = await self._retried(
                lambda: self._receipts.clear_expense_ref(expense_id), RECEIPT_INDEX
            )
        except Exception as e:
            await self._audit.log_partial_failure(
                operation="delete_expense",
                error_message=str(e),
                orphans={"expenses": [str(expense_id)]},
                correlation_id=correlation_id,
            )
            raise PartialConsistencyFailure(
                f"Expense {expense_id} deleted but the final receipt link sweep failed",
                orphans={"expenses": [str(expense_id)]},
                cause=e,
            ) from e

        unassigned = list(dict.fromkeys(cleared + late))
        await self._audit.log_expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            cleared_receipts=unassigned,
            correlation_id=correlation_id,
        )
        return unassigned

    async def _expense_survived(
        self,
        expense_id: UUID,
        cleared: list[str],
        correlation_id: UUID,
        cause: Exception,
    ) -> bool:
        """
        After a failed delete, find out whether the expense is still there.

        A timed-out delete may still have committed.
        """
        try:
            return await self._call(self._ledger.find_expense(expense_id), LEDGER) is not None
        except Exception as e:
            orphans = {"unlinked_receipts": cleared}
            await self._audit.log_partial_failure(
                operation="delete_expense",
                error_message=f"{cause}; then: {e}",
                orphans=orphans,
                correlation_id=correlation_id,
            )
            raise PartialConsistencyFailure(
                f"Delete of expense {expense_id} failed and its state is unknown",
                orphans=orphans,
                cause=cause,
            ) from e

    async def _restore_links(
        self,
        expense_id: UUID,
        receipt_ids: list[str],
        correlation_id: UUID,
        cause: Exception,
    ) -> None:
        """Compensation: point cleared receipts back at the surviving expense."""
        unrestored = []
        for receipt_id in receipt_ids:
            try:
                receipt = await self._call(
                    self._receipts.find_by_receipt_id(receipt_id), RECEIPT_INDEX
                )
                if receipt is None or receipt.expense_id is not None:
                    continue
                receipt.expense_id = expense_id
                receipt.updated_at = utcnow()
                await self._call(self._receipts.save(receipt), RECEIPT_INDEX)
            except Exception as e:
                logger.error("receipt_link_restore_failed", receipt_id=receipt_id, error=str(e))
                unrestored.append(receipt_id)

        if unrestored:
            orphans = {"unlinked_receipts": unrestored}
            await self._audit.log_partial_failure(
                operation="delete_expense",
                error_message=str(cause),
                orphans=orphans,
                correlation_id=correlation_id,
            )
            raise PartialConsistencyFailure(
                f"Delete of expense {expense_id} failed and "
                f"{len(unrestored)} receipt link(s) could not be restored",
                orphans=orphans,
                cause=cause,
            ) from cause

        if receipt_ids:
            await self._audit.log_links_restored(
                expense_id=expense_id,
                receipt_ids=receipt_ids,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # Receipts
    # =========================================================================

    async def upload_receipt(
        self,
        user_id: UUID,
        content: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        expense_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptMetadata:
        """
        Store a receipt file and its metadata.

        Every check runs before the blob write, so a rejected upload never
        leaves a blob behind.

        Raises:
            NotFoundError: Unknown user or expense
            OwnershipViolationError: Expense belongs to another user
            InvalidInputError: Empty, oversized or unaccepted file
            PartialConsistencyFailure: Blob stored but metadata write failed
        """
        correlation_id = correlation_id or create_correlation_id()

        await self._require_user(user_id)
        if expense_id is not None:
            await self._owned_expense(user_id, expense_id)

        name = clean_filename(filename)
        detected = detect_mime_type(content, mime_type, name)
        self._validator.validate_upload(content, detected)

        with input_errors():
            pending = ReceiptMetadata(
                user_id=user_id,
                expense_id=expense_id,
                filename=name,
                mime_type=detected,
                size_bytes=len(content),
                notes=notes or None,
                content_handle=PENDING_HANDLE,
            )

        # Step 1: bytes
        handle = await self._call(self._blobs.store(content, name, detected), BLOB)

        # Step 2: metadata
        receipt = pending.model_copy(update={"content_handle": handle})
        try:
            receipt = await self._call(self._receipts.save(receipt), RECEIPT_INDEX)
        except Exception as e:
            orphans = {"blobs": [handle]}
            await self._audit.log_orphan_blob(
                content_handle=handle,
                reason=f"metadata write failed: {e}",
                correlation_id=correlation_id,
            )
            await self._audit.log_partial_failure(
                operation="upload_receipt",
                error_message=str(e),
                orphans=orphans,
                correlation_id=correlation_id,
            )
            raise PartialConsistencyFailure(
                "Receipt content stored but its metadata could not be saved",
                orphans=orphans,
                cause=e,
            ) from e

        # Step 3: the expense may have been deleted while we uploaded
        if expense_id is not None:
            if await self._link_target_exists(receipt, expense_id):
                await self._sync_legacy_link(expense_id, receipt.id, linked=True)
            else:
                receipt = await self._drop_link(receipt, expense_id, correlation_id)

        await self._audit.log_receipt_uploaded(
            user_id=user_id,
            receipt_id=receipt.id,
            filename=receipt.filename,
            size_bytes=receipt.size_bytes,
            expense_id=receipt.expense_id,
            correlation_id=correlation_id,
        )
        return receipt

    async def _link_target_exists(self, receipt: ReceiptMetadata, expense_id: UUID) -> bool:
        expense = await self._call(self._ledger.find_expense(expense_id), LEDGER)
        return expense is not None and expense.user_id == receipt.user_id

    async def _drop_link(
        self,
        receipt: ReceiptMetadata,
        expense_id: UUID,
        correlation_id: UUID,
    ) -> ReceiptMetadata:
        """Clear a link whose expense vanished after it was verified."""
        receipt.expense_id = None
        receipt.updated_at = utcnow()
        saved = await self._call(self._receipts.save(receipt), RECEIPT_INDEX)
        await self._audit.log_dangling_repaired(
            user_id=receipt.user_id,
            receipt_id=receipt.id,
            missing_expense_id=expense_id,
            correlation_id=correlation_id,
        )
        return saved

    async def link_receipt(
        self,
        user_id: UUID,
        receipt_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptMetadata:
        """
        Link a receipt to an expense.

        Linking to the current target is a no-op. Linking to another
        expense replaces the previous link.
        """
        correlation_id = correlation_id or create_correlation_id()

        receipt = await self._owned_receipt(user_id, receipt_id)
        await self._owned_expense(user_id, expense_id)

        if receipt.expense_id == expense_id:
            return receipt

        previous = receipt.expense_id
        receipt.expense_id = expense_id
        receipt.updated_at = utcnow()
        receipt = await self._call(self._receipts.save(receipt), RECEIPT_INDEX)

        if not await self._link_target_exists(receipt, expense_id):
            await self._drop_link(receipt, expense_id, correlation_id)
            raise NotFoundError("Expense", expense_id)

        await self._sync_legacy_link(expense_id, receipt_id, linked=True)
        if previous is not None:
            await self._sync_legacy_link(previous, receipt_id, linked=False)

        await self._audit.log_receipt_linked(
            user_id=user_id,
            receipt_id=receipt_id,
            expense_id=expense_id,
            previous_expense_id=previous,
            correlation_id=correlation_id,
        )
        return receipt

    async def unlink_receipt(
        self,
        user_id: UUID,
        receipt_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptMetadata:
        """Clear a receipt's expense link. Unlinking an unlinked receipt is a no-op."""
        correlation_id = correlation_id or create_correlation_id()

        receipt = await self._owned_receipt(user_id, receipt_id)
        if receipt.expense_id is None:
            return receipt

        previous = receipt.expense_id
        receipt.expense_id = None
        receipt.updated_at = utcnow()
        receipt = await self._call(self._receipts.save(receipt), RECEIPT_INDEX)

        await self._sync_legacy_link(previous, receipt_id, linked=False)
        await self._audit.log_receipt_unlinked(
            user_id=user_id,
            receipt_id=receipt_id,
            previous_expense_id=previous,
            correlation_id=correlation_id,
        )
        return receipt

    async def delete_receipt(
        self,
        user_id: UUID,
        receipt_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a receipt: metadata first, then the blob.

        A failed blob delete is audited as an orphan; the call still succeeds
        because no metadata record points at missing bytes.
        """
        correlation_id = correlation_id or create_correlation_id()

        receipt = await self._owned_receipt(user_id, receipt_id)

        # Step 1: metadata
        await self._call(self._receipts.delete_by_id(receipt_id), RECEIPT_INDEX)
        if receipt.expense_id is not None:
            await self._sync_legacy_link(receipt.expense_id, receipt_id, linked=False)

        # Step 2: bytes
        try:
            await self._retried(lambda: self._blobs.delete(receipt.content_handle), BLOB)
        except Exception as e:
            await self._audit.log_orphan_blob(
                content_handle=receipt.content_handle,
                reason=f"blob delete failed after metadata delete: {e}",
                correlation_id=correlation_id,
            )

        await self._audit.log_receipt_deleted(
            user_id=user_id,
            receipt_id=receipt_id,
            content_handle=receipt.content_handle,
            correlation_id=correlation_id,
        )

    async def get_receipt(self, user_id: UUID, receipt_id: str) -> ReceiptMetadata:
        return await self._owned_receipt(user_id, receipt_id)

    async def download_receipt(
        self,
        user_id: UUID,
        receipt_id: str,
    ) -> tuple[ReceiptMetadata, BinaryIO]:
        """
        Metadata plus an open stream of the receipt's bytes.

        Raises:
            NotFoundError: Unknown receipt, or its blob has vanished
        """
        receipt = await self._owned_receipt(user_id, receipt_id)
        stream = await self._call(self._blobs.fetch(receipt.content_handle), BLOB)
        if stream is None:
            logger.error(
                "receipt_content_missing",
                receipt_id=receipt_id,
                content_handle=receipt.content_handle,
            )
            raise NotFoundError("Receipt content", receipt_id)
        return receipt, stream

    async def update_receipt_notes(
        self,
        user_id: UUID,
        receipt_id: str,
        notes: Optional[str],
    ) -> ReceiptMetadata:
        receipt = await self._owned_receipt(user_id, receipt_id)
        with input_errors():
            updated = ReceiptMetadata.model_validate({
                **receipt.model_dump(),
                "notes": notes or None,
                "updated_at": utcnow(),
            })
        return await self._call(self._receipts.save(updated), RECEIPT_INDEX)

    async def list_receipts(
        self,
        user_id: UUID,
        page: Optional[Page] = None,
    ) -> PagedResult[ReceiptMetadata]:
        """All of the user's receipts, newest upload first."""
        await self._require_user(user_id)
        page = page or Page(size=get_settings().app.default_page_size)
        return await self._call(self._receipts.find_by_user(user_id, page), RECEIPT_INDEX)

    async def list_unassigned_receipts(
        self,
        user_id: UUID,
        page: Optional[Page] = None,
    ) -> PagedResult[ReceiptMetadata]:
        """The user's receipts that are not linked to any expense."""
        await self._require_user(user_id)
        page = page or Page(size=get_settings().app.default_page_size)
        return await self._call(self._receipts.find_unassigned(user_id, page), RECEIPT_INDEX)

    async def receipts_for_expense(
        self,
        user_id: UUID,
        expense_id: UUID,
    ) -> list[ReceiptMetadata]:
        await self._owned_expense(user_id, expense_id)
        receipts = await self._call(self._receipts.find_by_expense_id(expense_id), RECEIPT_INDEX)
        return [r for r in receipts if r.user_id == user_id]

    # =========================================================================
    # Repair
    # =========================================================================

    async def find_dangling_receipts(self, user_id: UUID) -> list[ReceiptMetadata]:
        """
        The user's receipts that reference a missing expense, or an
        expense of another user.

        Only a failure outside this coordinator can produce them.
        """
        await self._require_user(user_id)
        linked = await self._call(self._receipts.find_linked(user_id), RECEIPT_INDEX)

        valid: dict[UUID, bool] = {}
        dangling = []
        for receipt in linked:
            if receipt.expense_id not in valid:
                valid[receipt.expense_id] = await self._link_target_exists(
                    receipt, receipt.expense_id
                )
            if not valid[receipt.expense_id]:
                dangling.append(receipt)
        return dangling

    async def repair_dangling_receipts(
        self,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """Unassign every dangling receipt of the user. Returns their IDs."""
        correlation_id = correlation_id or create_correlation_id()

        repaired = []
        for receipt in await self.find_dangling_receipts(user_id):
            await self._drop_link(receipt, receipt.expense_id, correlation_id)
            repaired.append(receipt.id)

        if repaired:
            logger.warning("dangling_receipts_repaired", user_id=str(user_id), count=len(repaired))
        return repaired

    async def sweep_orphan_blobs(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Delete blobs that no metadata record references.

        Run it while no uploads are in flight: a blob whose metadata is
        still being written looks exactly like an orphan.

        Returns:
            Handles of the blobs that were deleted
        """
        correlation_id = correlation_id or create_correlation_id()

        stored = await self._retried(self._blobs.list_handles, BLOB)
        referenced = await self._retried(self._receipts.content_handles, RECEIPT_INDEX)

        reclaimed = []
        for handle in sorted(stored - referenced):
            try:
                await self._retried(lambda: self._blobs.delete(handle), BLOB)
            except Exception as e:
                await self._audit.log_storage_error(
                    store=BLOB,
                    error_message=f"orphan {handle} not deleted: {e}",
                    correlation_id=correlation_id,
                )
                continue
            reclaimed.append(handle)
            await self._audit.log_orphan_reclaimed(
                content_handle=handle,
                correlation_id=correlation_id,
            )

        logger.info("orphan_sweep_finished", reclaimed=len(reclaimed))
        return reclaimed
