"""
In-Memory Storage Implementation

DESIGN DECISION: The in-memory store is a complete backend, not a mock.
It is the default backend, the one the tests run against, and the base of
the Google Sheets store (which loads worksheets into these tables and
flushes them back on commit).

Transactions snapshot every table on begin() and restore the snapshot on
rollback(), so a failed backfill leaves no partial occurrences behind.
Records are copied on the way in and out; callers never hold a reference
into the tables.

A store-level re-entrant lock makes a transaction exclusive: it belongs to
the thread that opened it, and every other thread's reads and writes wait
until it commits or rolls back.
"""

import copy
import functools
import threading
from typing import Optional
from uuid import UUID

from freelance_books.models.audit import AuditEvent
from freelance_books.models.billing import Invoice, Payment
from freelance_books.models.expense import DepreciationScheduleEntry, Expense
from freelance_books.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
)


def synchronized(method):
    """Run a store method under the store lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed record store.

    Tables:
        expenses:  expense id -> Expense
        schedules: expense id -> list of schedule entries (ordered by year)
        invoices:  invoice id -> Invoice
        payments:  payment id -> Payment
    """

    TABLES = ("expenses", "schedules", "invoices", "payments")

    def __init__(self):
        self._expenses: dict[UUID, Expense] = {}
        self._schedules: dict[UUID, list[DepreciationScheduleEntry]] = {}
        self._invoices: dict[UUID, Invoice] = {}
        self._payments: dict[UUID, Payment] = {}
        self._snapshot: Optional[dict] = None
        self._dirty: set[str] = set()
        self._lock = threading.RLock()
        self._owner: Optional[int] = None

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _tables(self) -> dict:
        return {
            "expenses": self._expenses,
            "schedules": self._schedules,
            "invoices": self._invoices,
            "payments": self._payments,
        }

    def _restore(self, tables: dict) -> None:
        self._expenses = tables["expenses"]
        self._schedules = tables["schedules"]
        self._invoices = tables["invoices"]
        self._payments = tables["payments"]

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None and self._owner == threading.get_ident()

    def begin(self) -> None:
        # Blocks while another thread has a transaction open
        self._lock.acquire()
        if self._snapshot is not None:
            self._lock.release()
            raise StorageError("Transaction already open")
        self._owner = threading.get_ident()
        self._snapshot = copy.deepcopy(self._tables())

    def _end(self) -> None:
        self._snapshot = None
        self._owner = None
        self._dirty.clear()
        self._lock.release()

    def commit(self) -> None:
        if not self.in_transaction:
            raise StorageError("No open transaction to commit")
        self._end()

    def rollback(self) -> None:
        if not self.in_transaction:
            raise StorageError("No open transaction to roll back")
        self._restore(self._snapshot)
        self._end()

    def _changed(self, *tables: str) -> None:
        """Record that tables were written. Subclasses flush outside transactions."""
        self._dirty.update(tables)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @synchronized
    def get_expense(self, expense_id: UUID, owner_id: UUID) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        if expense is None or expense.owner_id != owner_id:
            return None
        return expense.model_copy(deep=True)

    @synchronized
    def insert_expense(self, expense: Expense) -> Expense:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        self._changed("expenses")
        return expense

    @synchronized
    def update_expense(self, expense: Expense) -> Expense:
        stored = self._expenses.get(expense.id)
        if stored is None or stored.owner_id != expense.owner_id:
            raise NotFoundError(f"Expense not found: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        self._changed("expenses")
        return expense

    @synchronized
    def delete_expense(self, expense_id: UUID, owner_id: UUID) -> bool:
        stored = self._expenses.get(expense_id)
        if stored is None or stored.owner_id != owner_id:
            return False
        del self._expenses[expense_id]
        self._schedules.pop(expense_id, None)
        self._changed("expenses", "schedules")
        return True

    @synchronized
    def list_children(self, parent_id: UUID, owner_id: UUID) -> list[Expense]:
        children = [
            expense.model_copy(deep=True)
            for expense in self._expenses.values()
            if expense.parent_id == parent_id and expense.owner_id == owner_id
        ]
        children.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
        return children

    @synchronized
    def delete_children(self, parent_id: UUID, owner_id: UUID) -> int:
        child_ids = [
            expense.id
            for expense in self._expenses.values()
            if expense.parent_id == parent_id and expense.owner_id == owner_id
        ]
        for child_id in child_ids:
            del self._expenses[child_id]
            self._schedules.pop(child_id, None)
        if child_ids:
            self._changed("expenses", "schedules")
        return len(child_ids)

    # -------------------------------------------------------------------------
    # Depreciation schedules
    # -------------------------------------------------------------------------

    @synchronized
    def get_schedule(
        self,
        expense_id: UUID,
        owner_id: UUID,
    ) -> list[DepreciationScheduleEntry]:
        entries = self._schedules.get(expense_id, [])
        return [
            entry.model_copy(deep=True)
            for entry in sorted(entries, key=lambda e: e.year)
            if entry.owner_id == owner_id
        ]

    @synchronized
    def insert_schedule_entries(
        self,
        entries: list[DepreciationScheduleEntry],
    ) -> None:
        for entry in entries:
            if entry.expense_id is None or entry.owner_id is None:
                raise StorageError("Schedule entries need expense_id and owner_id")
            rows = self._schedules.setdefault(entry.expense_id, [])
            if any(row.year == entry.year for row in rows):
                raise DuplicateError(
                    f"Schedule entry for {entry.year} already exists: {entry.expense_id}"
                )
            rows.append(entry.model_copy(deep=True))
            rows.sort(key=lambda e: e.year)
        if entries:
            self._changed("schedules")

    @synchronized
    def delete_schedule(self, expense_id: UUID, owner_id: UUID) -> int:
        rows = self._schedules.get(expense_id, [])
        kept = [row for row in rows if row.owner_id != owner_id]
        deleted = len(rows) - len(kept)
        if kept:
            self._schedules[expense_id] = kept
        else:
            self._schedules.pop(expense_id, None)
        if deleted:
            self._changed("schedules")
        return deleted

    @synchronized
    def list_schedule_entries_for_year(
        self,
        owner_id: UUID,
        year: int,
    ) -> list[DepreciationScheduleEntry]:
        return [
            entry.model_copy(deep=True)
            for rows in self._schedules.values()
            for entry in rows
            if entry.owner_id == owner_id and entry.year == year
        ]

    # -------------------------------------------------------------------------
    # Billing
    # -------------------------------------------------------------------------

    @synchronized
    def get_invoice(self, invoice_id: UUID, owner_id: UUID) -> Optional[Invoice]:
        invoice = self._invoices.get(invoice_id)
        if invoice is None or invoice.owner_id != owner_id:
            return None
        return invoice.model_copy(deep=True)

    @synchronized
    def list_payments(self, invoice_id: UUID, owner_id: UUID) -> list[Payment]:
        return [
            payment.model_copy(deep=True)
            for payment in self._payments.values()
            if payment.invoice_id == invoice_id and payment.owner_id == owner_id
        ]

    @synchronized
    def add_invoice(self, invoice: Invoice) -> Invoice:
        """Seed an invoice (invoices are written by the wider system)."""
        self._invoices[invoice.id] = invoice.model_copy(deep=True)
        self._changed("invoices")
        return invoice

    @synchronized
    def add_payment(self, payment: Payment) -> Payment:
        """Seed a payment or refund."""
        self._payments[payment.id] = payment.model_copy(deep=True)
        self._changed("payments")
        return payment


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
