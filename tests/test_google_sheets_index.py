"""
Tests for the Google Sheets receipt index and audit log.

A fake worksheet stands in for gspread; no API calls are made.
"""

import pytest
from uuid import uuid4

from gspread.exceptions import APIError
from tenacity import wait_none

from expense_ledger.audit import AuditLogger
from expense_ledger.errors import OwnershipViolationError, StorageTransientError
from expense_ledger.models.audit import AuditEventBuilder, AuditEventType
from expense_ledger.models.receipt import ReceiptMetadata
from expense_ledger.models.search import Page
from expense_ledger.services.storage import GoogleSheetsAuditStorage, GoogleSheetsReceiptIndex
from expense_ledger.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    RECEIPT_COLUMNS,
    event_to_row,
    receipt_to_row,
    row_to_event,
    row_to_receipt,
)


class FakeResponse:
    status_code = 503
    text = "backend error"

    def json(self):
        return {"error": {"code": 503, "message": "backend error", "status": "UNAVAILABLE"}}


class FakeWorksheet:
    """Rows as lists of strings, with the header in row 1."""

    def __init__(self, columns=RECEIPT_COLUMNS):
        self.rows = [list(columns)]
        self.fail_reads = 0
        self.reads = 0

    def get_all_values(self):
        self.reads += 1
        if self.fail_reads:
            self.fail_reads -= 1
            raise APIError(FakeResponse())
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name=None, values=None, value_input_option=None):
        index = int(range_name[1:]) - 1
        self.rows[index] = list(values[0])

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = value

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeClient:
    def __init__(self, sheet, audit_sheet=None):
        self.sheet = sheet
        self.audit_sheet = audit_sheet

    def get_receipts_sheet(self):
        return self.sheet

    def get_audit_sheet(self):
        return self.audit_sheet


@pytest.fixture
def sheet():
    return FakeWorksheet()


@pytest.fixture
def index(sheet):
    return GoogleSheetsReceiptIndex(FakeClient(sheet))


def _receipt(user_id, expense_id=None, handle="receipts/h1") -> ReceiptMetadata:
    return ReceiptMetadata(
        user_id=user_id,
        expense_id=expense_id,
        filename="lunch.png",
        mime_type="image/png",
        size_bytes=2048,
        notes="client lunch",
        content_handle=handle,
    )


class TestRowConversion:
    """Tests for row <-> model mapping."""

    def test_row_round_trip_keeps_every_field(self):
        receipt = _receipt(uuid4(), uuid4())
        assert row_to_receipt(receipt_to_row(receipt)) == receipt

    def test_blank_cells_become_none(self):
        receipt = _receipt(uuid4())
        receipt.notes = None
        row = receipt_to_row(receipt)

        assert row[2] == "" and row[6] == "" and row[9] == ""
        restored = row_to_receipt(row)
        assert restored.expense_id is None
        assert restored.notes is None
        assert restored.updated_at is None


class TestSheetsIndex:
    """Tests for GoogleSheetsReceiptIndex over a fake sheet."""

    async def test_save_appends_then_updates_in_place(self, index, sheet):
        user = uuid4()
        receipt = await index.save(_receipt(user))
        assert len(sheet.rows) == 2

        receipt.notes = "edited"
        await index.save(receipt)

        assert len(sheet.rows) == 2
        assert (await index.find_by_receipt_id(receipt.id)).notes == "edited"

    async def test_owner_cannot_change(self, index):
        receipt = await index.save(_receipt(uuid4()))

        with pytest.raises(OwnershipViolationError):
            await index.save(receipt.model_copy(update={"user_id": uuid4()}))

    async def test_queries(self, index):
        user, expense = uuid4(), uuid4()
        linked = await index.save(_receipt(user, expense, "receipts/a"))
        free = await index.save(_receipt(user, None, "receipts/b"))
        await index.save(_receipt(uuid4(), None, "receipts/c"))

        assert [r.id for r in await index.find_by_expense_id(expense)] == [linked.id]
        assert (await index.find_by_user(user, Page())).total == 2
        assert [r.id for r in (await index.find_unassigned(user, Page())).items] == [free.id]
        assert [r.id for r in await index.find_linked(user)] == [linked.id]
        assert await index.content_handles() == {"receipts/a", "receipts/b", "receipts/c"}

    async def test_clear_expense_ref(self, index, sheet):
        user, expense = uuid4(), uuid4()
        first = await index.save(_receipt(user, expense, "receipts/a"))
        second = await index.save(_receipt(user, expense, "receipts/b"))

        cleared = await index.clear_expense_ref(expense)

        assert cleared == [first.id, second.id]
        assert await index.find_by_expense_id(expense) == []
        assert all(row[9] for row in sheet.rows[1:])

    async def test_delete_row(self, index, sheet):
        receipt = await index.save(_receipt(uuid4()))

        assert await index.delete_by_id(receipt.id)
        assert not await index.delete_by_id(receipt.id)
        assert sheet.rows == [list(RECEIPT_COLUMNS)]

    async def test_malformed_rows_are_skipped(self, index, sheet):
        sheet.rows.append(["bad", "not-a-uuid"])
        sheet.rows.append([])
        receipt = await index.save(_receipt(uuid4()))

        assert (await index.find_by_receipt_id(receipt.id)).id == receipt.id
        assert await index.find_by_receipt_id("bad") is None

    async def test_api_errors_retried_then_transient(self, index, sheet, monkeypatch):
        monkeypatch.setattr(GoogleSheetsReceiptIndex._read_rows.retry, "wait", wait_none())
        sheet.fail_reads = 3

        with pytest.raises(StorageTransientError):
            await index.find_by_receipt_id("anything")
        assert sheet.fail_reads == 0

    async def test_api_error_recovers_within_retries(self, index, sheet, monkeypatch):
        monkeypatch.setattr(GoogleSheetsReceiptIndex._read_rows.retry, "wait", wait_none())
        sheet.fail_reads = 2

        assert await index.find_by_receipt_id("anything") is None

    async def test_write_retried_as_one_operation(self, index, sheet, monkeypatch):
        """A failing read inside a write is retried by the write alone."""
        monkeypatch.setattr(GoogleSheetsReceiptIndex._write.retry, "wait", wait_none())
        sheet.fail_reads = 10

        with pytest.raises(StorageTransientError):
            await index.save(_receipt(uuid4()))
        assert sheet.reads == 3


class TestUnparseableRows:
    """Rows that fail to parse still hold on to their content."""

    async def test_content_handles_include_unparseable_rows(self, index, sheet):
        broken = await index.save(_receipt(uuid4(), handle="receipts/a"))
        await index.save(_receipt(uuid4(), handle="receipts/b"))
        sheet.rows[1][8] = "15/01/2026"

        assert await index.find_by_receipt_id(broken.id) is None
        assert await index.content_handles() == {"receipts/a", "receipts/b"}

    async def test_sweep_keeps_blob_of_unparseable_row(
        self, index, sheet, blobs, make_coordinator
    ):
        kept = await blobs.store(b"%PDF-1.4", "r.pdf", "application/pdf")
        stray = await blobs.store(b"%PDF-1.4", "s.pdf", "application/pdf")
        await index.save(_receipt(uuid4(), handle=kept))
        sheet.rows[1][8] = "15/01/2026"

        reclaimed = await make_coordinator(receipts=index).sweep_orphan_blobs()

        assert reclaimed == [stray]
        assert await blobs.list_handles() == {kept}


@pytest.fixture
def audit_sheet():
    return FakeWorksheet(AUDIT_COLUMNS)


@pytest.fixture
def audit_store(sheet, audit_sheet):
    return GoogleSheetsAuditStorage(FakeClient(sheet, audit_sheet))


class TestSheetsAuditStorage:
    """Tests for GoogleSheetsAuditStorage over a fake sheet."""

    def test_row_round_trip_keeps_every_field(self):
        event = AuditEventBuilder.expense_deleted(uuid4(), uuid4(), ["r1", "r2"], uuid4())
        assert row_to_event(event_to_row(event)) == event

    async def test_events_appended_and_read_back(self, audit_store, audit_sheet):
        correlation_id = uuid4()
        await audit_store.append_event(
            AuditEventBuilder.orphan_blob_left("receipts/a", "metadata write failed", correlation_id)
        )
        await audit_store.append_event(
            AuditEventBuilder.orphan_blob_reclaimed("receipts/a", correlation_id)
        )
        await audit_store.append_event(AuditEventBuilder.orphan_blob_reclaimed("receipts/b", uuid4()))

        assert len(audit_sheet.rows) == 4
        events = await audit_store.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.ORPHAN_BLOB_LEFT,
            AuditEventType.ORPHAN_BLOB_RECLAIMED,
        ]
        recent = await audit_store.get_recent_events(limit=1)
        assert recent[0].entity_id == "receipts/b"

    async def test_unparseable_rows_skipped(self, audit_store, audit_sheet):
        audit_sheet.rows.append(["not-a-uuid", "yesterday"])
        await audit_store.append_event(AuditEventBuilder.orphan_blob_reclaimed("receipts/a", uuid4()))

        assert len(await audit_store.get_recent_events()) == 1

    async def test_logger_persists_through_sheet(self, audit_store, audit_sheet):
        logger = AuditLogger(audit_store)

        await logger.log_orphan_reclaimed("receipts/a", uuid4())

        assert audit_sheet.rows[1][2] == AuditEventType.ORPHAN_BLOB_RECLAIMED.value

    async def test_api_failure_reported_not_raised(self, audit_store, audit_sheet, monkeypatch):
        monkeypatch.setattr(GoogleSheetsAuditStorage._append.retry, "wait", wait_none())

        def failing_append(values, value_input_option=None):
            raise APIError(FakeResponse())

        audit_sheet.append_row = failing_append
        event = AuditEventBuilder.orphan_blob_reclaimed("receipts/a", uuid4())

        with pytest.raises(StorageTransientError):
            await audit_store.append_event(event)
        assert await AuditLogger(audit_store).log(event) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
