"""
Google Sheets Storage Implementation

DESIGN DECISION: A spreadsheet is the books a freelancer already keeps.
Expenses, schedules, invoices and payments each live in one worksheet the
owner can open, filter and export without any database.

TRADEOFFS:
- Not suitable for high-volume data (we're fine for one freelancer's books)
- No transactions. We stage writes in memory (the in-memory store's
  tables) and flush every touched worksheet on commit, so a rolled back
  backfill never reaches the sheet. A flush that fails half-way can leave
  earlier worksheets written; the error is raised as StorageError.
- Every query is a scan of the loaded table
"""

import json
from typing import Any, Optional, Type
from uuid import UUID

import gspread
from gspread.utils import rowcol_to_a1
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from freelance_books.config import GoogleSheetsSettings, get_settings
from freelance_books.models.audit import AuditEvent
from freelance_books.models.billing import Invoice, Payment
from freelance_books.models.expense import DepreciationScheduleEntry, Expense
from freelance_books.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    StorageError,
)
from freelance_books.services.storage.memory import InMemoryRecordStore, synchronized


logger = structlog.get_logger(__name__)


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "owner_id",
    "project_id",
    "created_at",
    "updated_at",
    "category",
    "description",
    "amount",
    "net_amount",
    "tax_rate",
    "tax_amount",
    "currency",
    "expense_date",
    "is_billable",
    "is_reimbursable",
    "status",
    "tags",
    "notes",
    "is_recurring",
    "recurrence_frequency",
    "recurrence_start_date",
    "recurrence_end_date",
    "parent_id",
    "next_occurrence",
    "depreciation",
]

# Column mappings for DepreciationSchedule sheet
SCHEDULE_COLUMNS = [
    "id",
    "expense_id",
    "owner_id",
    "year",
    "amount",
    "cumulative_amount",
    "remaining_value",
    "is_final_year",
]

INVOICE_COLUMNS = [
    "id",
    "owner_id",
    "client_id",
    "invoice_number",
    "total_amount",
    "currency",
]

PAYMENT_COLUMNS = [
    "id",
    "owner_id",
    "invoice_id",
    "amount",
    "payment_type",
    "payment_date",
    "payment_method",
    "transaction_id",
    "notes",
    "created_at",
]

# Column mappings for Audit sheet (see AuditEvent.to_sheets_row)
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

# Columns holding JSON documents
JSON_COLUMNS = {"tags", "depreciation", "details_json"}


def _to_cell(value: Any) -> str:
    """Render one JSON-mode value as a sheet cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def model_to_row(model: BaseModel, columns: list[str]) -> list[str]:
    """Convert a record to a spreadsheet row in column order."""
    data = model.model_dump(mode="json")
    return [_to_cell(data.get(column)) for column in columns]


def row_to_model(model_cls: Type[BaseModel], columns: list[str], row: list) -> BaseModel:
    """
    Convert a spreadsheet row back into a record.

    Empty cells are left out so model defaults apply.
    """
    data = {}
    for index, column in enumerate(columns):
        cell = row[index] if index < len(row) else ""
        if cell == "":
            continue
        data[column] = json.loads(cell) if column in JSON_COLUMNS else cell
    return model_cls.model_validate(data)


class GoogleSheetsClient:
    """
    Thin gspread wrapper shared by the record and audit stores.

    Authorizes once with the service account and opens the spreadsheet lazily.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Authorize with the service account file from settings.
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
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Open the spreadsheet named by settings, once."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet with a header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Audit worksheet, sized for a long append-only log."""
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,
        )


class GoogleSheetsRecordStore(InMemoryRecordStore):
    """
    Google Sheets implementation of the record store.

    One worksheet per table, one record per row. Worksheets are read into
    memory on construction; invoices and payments are re-read before each
    lookup outside a transaction so the reconciler sees current data.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        super().__init__()
        self._client = client or GoogleSheetsClient()
        names = self._client.settings
        self._layout = {
            "expenses": (names.expenses_sheet_name, EXPENSE_COLUMNS, Expense),
            "schedules": (names.schedules_sheet_name, SCHEDULE_COLUMNS, DepreciationScheduleEntry),
            "invoices": (names.invoices_sheet_name, INVOICE_COLUMNS, Invoice),
            "payments": (names.payments_sheet_name, PAYMENT_COLUMNS, Payment),
        }
        # Rows per worksheet, header included, as last read or written
        self._sheet_rows: dict[str, int] = {}
        self.reload()

    def _sheet(self, table: str) -> gspread.Worksheet:
        title, columns, _ = self._layout[table]
        return self._client.get_worksheet(title, columns)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_rows(self, table: str) -> list[list]:
        try:
            return self._sheet(table).get_all_values()
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table}: {e}")

    def _load_table(self, table: str) -> None:
        _, columns, model_cls = self._layout[table]
        rows = self._read_rows(table)
        self._sheet_rows[table] = max(len(rows), 1)
        records = []
        for row in rows[1:]:  # Skip header
            if not row or not row[0]:
                continue
            records.append(row_to_model(model_cls, columns, row))

        if table == "schedules":
            schedules: dict[UUID, list[DepreciationScheduleEntry]] = {}
            for entry in records:
                schedules.setdefault(entry.expense_id, []).append(entry)
            for entries in schedules.values():
                entries.sort(key=lambda e: e.year)
            self._schedules = schedules
        else:
            setattr(self, f"_{table}", {record.id: record for record in records})

    @synchronized
    def reload(self) -> None:
        """Re-read every worksheet, discarding unflushed state."""
        if self.in_transaction:
            raise StorageError("Cannot reload inside a transaction")
        for table in self.TABLES:
            self._load_table(table)

    def _table_rows(self, table: str) -> list[list[str]]:
        _, columns, _ = self._layout[table]
        if table == "schedules":
            records = [entry for rows in self._schedules.values() for entry in rows]
        else:
            records = list(self._tables()[table].values())
        return [columns] + [model_to_row(record, columns) for record in records]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write_table(self, table: str) -> None:
        """
        Replace a worksheet's contents with the staged table.

        Rows are overwritten in place and only the rows past the new end
        are cleared afterwards, so a failed update never leaves the
        worksheet empty.
        """
        _, columns, _ = self._layout[table]
        values = self._table_rows(table)
        previous = self._sheet_rows.get(table, 1)
        try:
            sheet = self._sheet(table)
            sheet.update(
                range_name="A1",
                values=values,
                value_input_option="RAW",
            )
            if previous > len(values):
                last_cell = rowcol_to_a1(previous, len(columns))
                sheet.batch_clear([f"A{len(values) + 1}:{last_cell}"])
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {table}: {e}")
        self._sheet_rows[table] = len(values)

    def _flush(self) -> None:
        for table in self.TABLES:
            if table in self._dirty:
                self._write_table(table)
                self._dirty.discard(table)

    def _changed(self, *tables: str) -> None:
        super()._changed(*tables)
        if not self.in_transaction:
            self._flush()

    def _restore_worksheets(self, tables: set[str]) -> None:
        """Write the rolled-back state over worksheets a failed commit already wrote."""
        for table in self.TABLES:
            if table not in tables:
                continue
            try:
                self._write_table(table)
            except StorageError as e:
                logger.error("sheets_restore_failed", table=table, error=str(e))

    def commit(self) -> None:
        with self._lock:
            if not self.in_transaction:
                raise StorageError("No open transaction to commit")
            pending = set(self._dirty)
            try:
                self._flush()
            except StorageError:
                written = pending - self._dirty
                logger.error(
                    "sheets_commit_failed",
                    dirty=sorted(self._dirty),
                    written=sorted(written),
                )
                super().rollback()
                self._restore_worksheets(written)
                raise
            super().commit()

    @synchronized
    def get_invoice(self, invoice_id: UUID, owner_id: UUID) -> Optional[Invoice]:
        if not self.in_transaction:
            self._load_table("invoices")
        return super().get_invoice(invoice_id, owner_id)

    @synchronized
    def list_payments(self, invoice_id: UUID, owner_id: UUID) -> list[Payment]:
        if not self.in_transaction:
            self._load_table("payments")
        return super().list_payments(invoice_id, owner_id)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail kept as one row per event.

    Rows are only ever appended; reads parse the whole sheet.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Parse one audit row; details_json maps back to details."""
        columns = [
            "details" if column == "details_json" else column
            for column in AUDIT_COLUMNS
        ]
        data = {}
        for index, column in enumerate(columns):
            cell = row[index] if index < len(row) else ""
            if cell == "":
                continue
            data[column] = json.loads(cell) if column == "details" else cell
        return AuditEvent.model_validate(data)

    def _read_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("audit_row_skipped", event_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def append_event(self, event: AuditEvent) -> bool:
        """Write one event as a new row."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = self._read_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
