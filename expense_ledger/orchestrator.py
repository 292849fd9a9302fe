"""
Application Wiring for Expense Ledger

This module builds the components from settings:
1. Stores (ledger, receipt index, blob store, audit storage)
2. Engines (query executor, report engine)
3. Services (accounts, consistency coordinator)

DESIGN DECISION: Backends are picked by configuration only.
The engines and the coordinator are written against the storage
interfaces, so switching the blob store to Cloudinary or the receipt
index to Google Sheets is a settings change, not a code change.

Audit events are persisted to a Sheets audit log when one is configured;
otherwise the audit logger writes to the local structured log only.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.config import Settings, get_settings
from expense_ledger.consistency import ConsistencyCoordinator
from expense_ledger.queries import ExpenseQueryExecutor, ReportEngine
from expense_ledger.services.accounts import AccountService
from expense_ledger.services.blob import CloudinaryBlobStore
from expense_ledger.services.storage import (
    BlobStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsReceiptIndex,
    InMemoryBlobStore,
    InMemoryLedgerStore,
    InMemoryReceiptIndex,
    LedgerStoreInterface,
    ReceiptIndexInterface,
)
from expense_ledger.validation import InputValidator


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a caller (HTTP layer, CLI, job runner) needs."""

    ledger: LedgerStoreInterface
    receipts: ReceiptIndexInterface
    blobs: BlobStoreInterface
    audit_logger: AuditLogger
    accounts: AccountService
    queries: ExpenseQueryExecutor
    reports: ReportEngine
    coordinator: ConsistencyCoordinator


def _build_receipt_index(
    settings: Settings,
    sheets_client: Optional[GoogleSheetsClient],
) -> ReceiptIndexInterface:
    backend = settings.storage.receipt_index_backend
    if backend == "google_sheets":
        return GoogleSheetsReceiptIndex(sheets_client)
    return InMemoryReceiptIndex()


def _build_blob_store(settings: Settings) -> BlobStoreInterface:
    backend = settings.storage.blob_backend
    if backend == "cloudinary":
        return CloudinaryBlobStore(settings.cloudinary)
    return InMemoryBlobStore()


def _build_audit_logger(
    settings: Settings,
    sheets_client: Optional[GoogleSheetsClient],
) -> AuditLogger:
    if settings.storage.audit_backend == "google_sheets":
        return AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    return AuditLogger()  # Local-only logging


def create_app_components(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerStoreInterface] = None,
    receipts: Optional[ReceiptIndexInterface] = None,
    blobs: Optional[BlobStoreInterface] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to get_settings()
        ledger: Ledger store; defaults to the in-memory store
        receipts: Receipt index; defaults to the configured backend
        blobs: Blob store; defaults to the configured backend

    Returns:
        AppComponents wired against the chosen stores
    """
    settings = settings or get_settings()
    storage = settings.storage
    app = settings.app

    sheets_client = None
    if "google_sheets" in (storage.receipt_index_backend, storage.audit_backend):
        sheets_client = GoogleSheetsClient(settings.google_sheets)

    if ledger is None:
        logger.warning(
            "ledger_not_persistent",
            message="No ledger store given; expenses live in process memory only",
        )
        ledger = InMemoryLedgerStore()
    receipts = receipts or _build_receipt_index(settings, sheets_client)
    blobs = blobs or _build_blob_store(settings)
    audit_logger = _build_audit_logger(settings, sheets_client)
    validator = InputValidator(app)

    logger.info(
        "app_components_created",
        blob_backend=storage.blob_backend,
        receipt_index_backend=storage.receipt_index_backend,
        audit_backend=storage.audit_backend,
        environment=app.app_environment,
    )

    return AppComponents(
        ledger=ledger,
        receipts=receipts,
        blobs=blobs,
        audit_logger=audit_logger,
        accounts=AccountService(ledger, timeout=storage.timeout_seconds),
        queries=ExpenseQueryExecutor(
            ledger,
            validator=validator,
            timeout=storage.timeout_seconds,
        ),
        reports=ReportEngine(
            ledger,
            validator=validator,
            timeout=storage.timeout_seconds,
        ),
        coordinator=ConsistencyCoordinator(
            ledger,
            receipts,
            blobs,
            audit_logger=audit_logger,
            validator=validator,
            timeout=storage.timeout_seconds,
            retry_attempts=storage.retry_attempts,
            retry_max_wait=storage.retry_max_wait_seconds,
        ),
    )
