"""
Tests for the Google Sheets backend.

The gspread client is replaced by MagicMock worksheets; no real API calls.
"""

import json
import pytest
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

from tenacity import wait_none

from freelance_books.models.audit import AuditEvent, AuditEventType
from freelance_books.models.billing import Invoice
from freelance_books.models.expense import DepreciationScheduleEntry, Expense
from freelance_books.services.storage import StorageError
from freelance_books.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    EXPENSE_COLUMNS,
    INVOICE_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsRecordStore,
    model_to_row,
    row_to_model,
)


TITLES = {
    "expenses_sheet_name": "Expenses",
    "schedules_sheet_name": "DepreciationSchedule",
    "invoices_sheet_name": "Invoices",
    "payments_sheet_name": "Payments",
    "audit_sheet_name": "AuditLog",
}


@pytest.fixture
def sheets():
    """Worksheet mocks by title, each holding only a header row."""
    return {}


@pytest.fixture
def client(sheets):
    client = MagicMock()
    for name, title in TITLES.items():
        setattr(client.settings, name, title)

    def get_worksheet(title, columns, rows=1000):
        if title not in sheets:
            sheet = MagicMock()
            sheet.get_all_values.return_value = [list(columns)]
            sheets[title] = sheet
        return sheets[title]

    client.get_worksheet.side_effect = get_worksheet
    return client


@pytest.fixture
def sheets_store(client):
    return GoogleSheetsRecordStore(client)


class TestRowConversion:
    """Tests for model_to_row / row_to_model."""

    def test_expense_row(self, make_expense):
        """Test that an expense survives the sheet format."""
        expense = make_expense(tags=["hosting"], is_billable=True)
        row = model_to_row(expense, EXPENSE_COLUMNS)

        assert row[EXPENSE_COLUMNS.index("is_billable")] == "TRUE"
        assert json.loads(row[EXPENSE_COLUMNS.index("tags")]) == ["hosting"]
        assert row[EXPENSE_COLUMNS.index("parent_id")] == ""

        loaded = row_to_model(Expense, EXPENSE_COLUMNS, row)
        assert loaded.id == expense.id
        assert loaded.amount == Decimal("119.00")
        assert loaded.tags == ["hosting"]
        assert loaded.is_billable is True
        assert loaded.parent_id is None
        assert loaded.depreciation == expense.depreciation


class TestGoogleSheetsRecordStore:
    """Tests for staged writes and reloads."""

    def test_loads_existing_rows(self, client, sheets, make_expense, owner_id):
        """Test that rows present at startup are readable."""
        expense = make_expense()
        sheet = client.get_worksheet("Expenses", EXPENSE_COLUMNS)
        sheet.get_all_values.return_value = [
            EXPENSE_COLUMNS,
            model_to_row(expense, EXPENSE_COLUMNS),
            [],
        ]

        store = GoogleSheetsRecordStore(client)

        loaded = store.get_expense(expense.id, owner_id)
        assert loaded is not None
        assert loaded.description == "Cloud hosting"

    def test_write_outside_transaction_flushes(self, sheets_store, sheets, make_expense):
        """Test that a standalone write reaches the sheet immediately."""
        expense = make_expense()
        sheets_store.insert_expense(expense)

        sheet = sheets["Expenses"]
        sheet.clear.assert_not_called()
        sheet.batch_clear.assert_not_called()
        values = sheet.update.call_args.kwargs["values"]
        assert values[0] == EXPENSE_COLUMNS
        assert values[1] == model_to_row(expense, EXPENSE_COLUMNS)

    def test_write_inside_transaction_waits_for_commit(self, sheets_store, sheets, make_expense):
        """Test that staged writes are flushed once on commit."""
        with sheets_store.transaction():
            sheets_store.insert_expense(make_expense())
            sheets_store.insert_expense(make_expense())
            sheets["Expenses"].update.assert_not_called()

        sheets["Expenses"].update.assert_called_once()
        assert len(sheets["Expenses"].update.call_args.kwargs["values"]) == 3
        sheets["Invoices"].update.assert_not_called()

    def test_rollback_writes_nothing(self, sheets_store, sheets, make_expense, owner_id):
        """Test that a rolled back transaction never reaches the sheet."""
        expense = make_expense()
        with pytest.raises(RuntimeError):
            with sheets_store.transaction():
                sheets_store.insert_expense(expense)
                raise RuntimeError("boom")

        sheets["Expenses"].update.assert_not_called()
        assert sheets_store.get_expense(expense.id, owner_id) is None

    def test_shrinking_table_clears_only_the_tail(self, client, make_expense, owner_id):
        """Test that rows past the new end are cleared after the overwrite."""
        expense = make_expense()
        client.get_worksheet("Expenses", EXPENSE_COLUMNS).get_all_values.return_value = [
            EXPENSE_COLUMNS,
            model_to_row(expense, EXPENSE_COLUMNS),
        ]
        store = GoogleSheetsRecordStore(client)

        store.delete_expense(expense.id, owner_id)

        sheet = client.get_worksheet("Expenses", EXPENSE_COLUMNS)
        assert sheet.update.call_args.kwargs["values"] == [EXPENSE_COLUMNS]
        sheet.batch_clear.assert_called_once_with(["A2:Y2"])
        sheet.clear.assert_not_called()

    def test_failed_update_keeps_sheet_contents(self, sheets_store, sheets, make_expense, owner_id, monkeypatch):
        """Test that a failing write never clears the worksheet and rolls memory back."""
        monkeypatch.setattr(GoogleSheetsRecordStore._write_table.retry, "wait", wait_none())
        sheets["Expenses"].update.side_effect = Exception("quota exceeded")
        expense = make_expense()

        with pytest.raises(StorageError):
            with sheets_store.transaction():
                sheets_store.insert_expense(expense)

        sheets["Expenses"].clear.assert_not_called()
        sheets["Expenses"].batch_clear.assert_not_called()
        assert sheets_store.get_expense(expense.id, owner_id) is None
        assert not sheets_store.in_transaction

    def test_failed_commit_restores_written_sheets(self, sheets_store, sheets, make_expense, owner_id, monkeypatch):
        """Test that worksheets flushed before a failure get the rolled-back rows back."""
        monkeypatch.setattr(GoogleSheetsRecordStore._write_table.retry, "wait", wait_none())
        sheets["DepreciationSchedule"].update.side_effect = Exception("quota exceeded")
        expense = make_expense()

        with pytest.raises(StorageError):
            with sheets_store.transaction():
                sheets_store.insert_expense(expense)
                sheets_store.insert_schedule_entries([DepreciationScheduleEntry(
                    expense_id=expense.id,
                    owner_id=owner_id,
                    year=2024,
                    amount=Decimal("100.00"),
                    cumulative_amount=Decimal("100.00"),
                    remaining_value=Decimal("0"),
                )])

        expenses_sheet = sheets["Expenses"]
        assert expenses_sheet.update.call_count == 2
        assert expenses_sheet.update.call_args.kwargs["values"] == [EXPENSE_COLUMNS]
        expenses_sheet.batch_clear.assert_called_once_with(["A2:Y2"])
        assert sheets_store.get_expense(expense.id, owner_id) is None

    def test_invoice_is_reread(self, sheets_store, sheets, owner_id):
        """Test that invoices written elsewhere are picked up."""
        invoice = Invoice(owner_id=owner_id, invoice_number="RE-1", total_amount=Decimal("100"))
        sheets["Invoices"].get_all_values.return_value = [
            INVOICE_COLUMNS,
            model_to_row(invoice, INVOICE_COLUMNS),
        ]

        loaded = sheets_store.get_invoice(invoice.id, owner_id)

        assert loaded is not None
        assert loaded.total_amount == Decimal("100")


class TestGoogleSheetsAuditStorage:
    """Tests for the audit worksheet."""

    def test_append_event(self, client):
        """Test that events are appended as rows."""
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            description="Expense updated",
            details={"fields": ["notes"]},
        )

        assert storage.append_event(event) is True

        sheet = client.get_audit_sheet.return_value
        sheet.append_row.assert_called_once_with(event.to_sheets_row(), value_input_option="RAW")

    def test_read_skips_bad_rows(self, client):
        """Test that unparseable rows are skipped, not fatal."""
        entity_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=entity_id,
            description="Expense deleted",
            details={"children_deleted": 2},
        )
        client.get_audit_sheet.return_value.get_all_values.return_value = [
            AUDIT_COLUMNS,
            event.to_sheets_row(),
            ["not-a-uuid", "yesterday", "nope"],
        ]
        storage = GoogleSheetsAuditStorage(client)

        events = storage.get_events_by_entity("expense", entity_id)

        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == {"children_deleted": 2}
        assert len(storage.get_recent_events()) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
