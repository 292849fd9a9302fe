"""
Google Sheets Receipt Index and Audit Log

DESIGN DECISION: Receipt metadata lives in a spreadsheet, one receipt per row.
Audit events are appended to a second worksheet of the same spreadsheet.
- The receipt index has no foreign keys anyway; a sheet is enough
- Non-technical users can inspect and fix rows directly
- The ledger stays in its own strongly consistent store

TRADEOFFS:
- Every lookup reads the whole sheet (fine for a personal ledger)
- No transactions; the consistency coordinator orders its writes instead
- gspread is synchronous, so calls run in a worker thread to keep the
  event loop free and let the caller's timeout apply
"""

import asyncio
import json
from datetime import datetime
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.exceptions import APIError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from expense_ledger.config import GoogleSheetsSettings, get_settings
from expense_ledger.errors import (
    OwnershipViolationError,
    StorageError,
    StorageTransientError,
)
from expense_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_ledger.models.ledger import utcnow
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.search import Page, PagedResult
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    ReceiptIndexInterface,
)


logger = structlog.get_logger(__name__)

STORE_NAME = "receipt_index"

# Column mappings for the Receipts sheet
RECEIPT_COLUMNS = [
    "id",
    "user_id",
    "expense_id",
    "filename",
    "mime_type",
    "size_bytes",
    "notes",
    "content_handle",
    "uploaded_at",
    "updated_at",
]

# Column mappings for the audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

_EXPENSE_ID_COL = RECEIPT_COLUMNS.index("expense_id") + 1
_UPDATED_AT_COL = RECEIPT_COLUMNS.index("updated_at") + 1
_CONTENT_HANDLE_IDX = RECEIPT_COLUMNS.index("content_handle")

_sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(APIError),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(StorageTransientError),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise StorageError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except (APIError, ConnectionError) as e:
                raise StorageTransientError(
                    STORE_NAME, f"failed to connect to Google Sheets: {e}"
                ) from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound as e:
                raise StorageError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_receipts_sheet(self) -> gspread.Worksheet:
        """Get or create the Receipts worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.receipts_sheet_name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self._settings.receipts_sheet_name,
                rows=1000,
                cols=len(RECEIPT_COLUMNS),
            )
            sheet.append_row(RECEIPT_COLUMNS)
        return sheet

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the audit log worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.audit_sheet_name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self._settings.audit_sheet_name,
                rows=5000,
                cols=len(AUDIT_COLUMNS),
            )
            sheet.append_row(AUDIT_COLUMNS)
        return sheet


def receipt_to_row(receipt: ReceiptMetadata) -> list[str]:
    """Convert a ReceiptMetadata to a spreadsheet row."""
    return [
        receipt.id,
        str(receipt.user_id),
        str(receipt.expense_id) if receipt.expense_id else "",
        receipt.filename,
        receipt.mime_type,
        str(receipt.size_bytes),
        receipt.notes or "",
        receipt.content_handle,
        receipt.uploaded_at.isoformat(),
        receipt.updated_at.isoformat() if receipt.updated_at else "",
    ]


def row_to_receipt(row: list) -> ReceiptMetadata:
    """Convert a spreadsheet row to a ReceiptMetadata."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    return ReceiptMetadata(
        id=safe_get(0),
        user_id=UUID(safe_get(1)),
        expense_id=UUID(safe_get(2)) if safe_get(2) else None,
        filename=safe_get(3),
        mime_type=safe_get(4),
        size_bytes=int(safe_get(5, "0")),
        notes=safe_get(6) or None,
        content_handle=safe_get(7),
        uploaded_at=datetime.fromisoformat(safe_get(8)),
        updated_at=datetime.fromisoformat(safe_get(9)) if safe_get(9) else None,
    )


class GoogleSheetsReceiptIndex(ReceiptIndexInterface):
    """
    Google Sheets implementation of the receipt index.

    Row 1 holds the headers; receipts start at row 2. Each sheet operation
    is retried as a whole; the helpers it calls are not retried again.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (OwnershipViolationError, StorageError):
            raise
        except APIError as e:
            raise StorageTransientError(STORE_NAME, f"Google Sheets API error: {e}") from e
        except Exception as e:
            raise StorageError(f"Receipt index operation failed: {e}") from e

    # Synchronous sheet access (runs in a worker thread) -----------------------

    @staticmethod
    def _raw_rows(sheet: gspread.Worksheet) -> list[tuple[int, list]]:
        """Non-blank rows with their 1-based sheet row numbers."""
        return [
            (idx, row)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
            if any(cell.strip() for cell in row)
        ]

    @staticmethod
    def _parse(rows: list[tuple[int, list]]) -> list[tuple[int, ReceiptMetadata]]:
        found = []
        for idx, row in rows:
            if not row[0]:
                continue
            try:
                found.append((idx, row_to_receipt(row)))
            except (ValueError, TypeError) as e:
                logger.warning("receipt_row_skipped", row=idx, error=str(e))
        return found

    @_sheets_retry
    def _read_rows(self) -> list[tuple[int, ReceiptMetadata]]:
        """All parseable receipts with their sheet row numbers."""
        return self._parse(self._raw_rows(self._client.get_receipts_sheet()))

    @_sheets_retry
    def _read_handles(self) -> set[str]:
        """
        Content handles of every non-blank row.

        Read from the raw column so a row that fails to parse still
        protects its blob from the orphan sweep.
        """
        handles = set()
        for _, row in self._raw_rows(self._client.get_receipts_sheet()):
            if len(row) > _CONTENT_HANDLE_IDX and row[_CONTENT_HANDLE_IDX].strip():
                handles.add(row[_CONTENT_HANDLE_IDX].strip())
        return handles

    @_sheets_retry
    def _write(self, receipt: ReceiptMetadata) -> None:
        sheet = self._client.get_receipts_sheet()
        for idx, existing in self._parse(self._raw_rows(sheet)):
            if existing.id == receipt.id:
                if existing.user_id != receipt.user_id:
                    raise OwnershipViolationError("Receipt", receipt.id)
                sheet.update(
                    range_name=f"A{idx}",
                    values=[receipt_to_row(receipt)],
                    value_input_option="RAW",
                )
                return
        sheet.append_row(receipt_to_row(receipt), value_input_option="RAW")

    @_sheets_retry
    def _delete_row(self, receipt_id: str) -> bool:
        sheet = self._client.get_receipts_sheet()
        for idx, existing in self._parse(self._raw_rows(sheet)):
            if existing.id == receipt_id:
                sheet.delete_rows(idx)
                return True
        return False

    @_sheets_retry
    def _clear_refs(self, expense_id: UUID) -> list[str]:
        sheet = self._client.get_receipts_sheet()
        now = utcnow().isoformat()
        cleared = []
        for idx, existing in self._parse(self._raw_rows(sheet)):
            if existing.expense_id == expense_id:
                sheet.update_cell(idx, _EXPENSE_ID_COL, "")
                sheet.update_cell(idx, _UPDATED_AT_COL, now)
                cleared.append(existing.id)
        return cleared

    async def _all(self) -> list[ReceiptMetadata]:
        return [receipt for _, receipt in await self._run(self._read_rows)]

    # ReceiptIndexInterface ---------------------------------------------------

    async def find_by_receipt_id(self, receipt_id: str) -> Optional[ReceiptMetadata]:
        for receipt in await self._all():
            if receipt.id == receipt_id:
                return receipt
        return None

    async def find_by_expense_id(self, expense_id: UUID) -> list[ReceiptMetadata]:
        return [r for r in await self._all() if r.expense_id == expense_id]

    async def _for_user(self, user_id: UUID) -> list[ReceiptMetadata]:
        receipts = [r for r in await self._all() if r.user_id == user_id]
        # Sort by upload time descending (newest first)
        receipts.sort(key=lambda r: r.uploaded_at, reverse=True)
        return receipts

    async def find_by_user(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        receipts = await self._for_user(user_id)
        return PagedResult(
            items=receipts[page.offset:page.offset + page.size],
            total=len(receipts),
            page=page,
        )

    async def find_unassigned(self, user_id: UUID, page: Page) -> PagedResult[ReceiptMetadata]:
        receipts = [r for r in await self._for_user(user_id) if r.expense_id is None]
        return PagedResult(
            items=receipts[page.offset:page.offset + page.size],
            total=len(receipts),
            page=page,
        )

    async def find_linked(self, user_id: UUID) -> list[ReceiptMetadata]:
        return [r for r in await self._for_user(user_id) if r.expense_id is not None]

    async def save(self, receipt: ReceiptMetadata) -> ReceiptMetadata:
        await self._run(self._write, receipt)
        return receipt

    async def delete_by_id(self, receipt_id: str) -> bool:
        return await self._run(self._delete_row, receipt_id)

    async def clear_expense_ref(self, expense_id: UUID) -> list[str]:
        return await self._run(self._clear_refs, expense_id)

    async def content_handles(self) -> set[str]:
        return await self._run(self._read_handles)


def event_to_row(event: AuditEvent) -> list[str]:
    """Convert an AuditEvent to a spreadsheet row."""
    return [
        str(event.event_id),
        event.timestamp.isoformat(),
        event.event_type.value,
        event.severity.value,
        event.entity_type or "",
        event.entity_id or "",
        str(event.user_id) if event.user_id else "",
        str(event.correlation_id) if event.correlation_id else "",
        event.description,
        json.dumps(event.details, default=str) if event.details else "",
        event.error_message or "",
    ]


def row_to_event(row: list) -> AuditEvent:
    """Convert a spreadsheet row to an AuditEvent."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    return AuditEvent(
        event_id=UUID(safe_get(0)),
        timestamp=datetime.fromisoformat(safe_get(1)),
        event_type=AuditEventType(safe_get(2)),
        severity=AuditSeverity(safe_get(3)),
        entity_type=safe_get(4) or None,
        entity_id=safe_get(5) or None,
        user_id=UUID(safe_get(6)) if safe_get(6) else None,
        correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
        description=safe_get(8),
        details=json.loads(safe_get(9)) if safe_get(9) else {},
        error_message=safe_get(10) or None,
    )


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only. Reads skip rows that no longer parse.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @_sheets_retry
    def _append(self, event: AuditEvent) -> None:
        self._client.get_audit_sheet().append_row(event_to_row(event), value_input_option="RAW")

    @_sheets_retry
    def _read_events(self) -> list[AuditEvent]:
        events = []
        for idx, row in enumerate(self._client.get_audit_sheet().get_all_values()[1:], start=2):
            if not row or not row[0]:
                continue
            try:
                events.append(row_to_event(row))
            except (ValueError, TypeError) as e:
                logger.warning("audit_row_skipped", row=idx, error=str(e))
        return events

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except APIError as e:
            raise StorageTransientError("audit", f"Google Sheets API error: {e}") from e
        except Exception as e:
            raise StorageError(f"Audit log operation failed: {e}") from e

    async def append_event(self, event: AuditEvent) -> bool:
        await self._run(self._append, event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in await self._run(self._read_events)
            if e.correlation_id == correlation_id
        ]
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = await self._run(self._read_events)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
