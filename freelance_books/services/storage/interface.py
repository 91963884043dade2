"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against the bookkeeping database, Google Sheets or memory
2. Use in-memory storage for testing
3. Keep the generator and scheduler decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the engine needs, each scoped by owner id. A record
that belongs to another owner is reported exactly like a missing one.

Invoices and payments are read-only here; they are written by the wider
bookkeeping system.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

from freelance_books.models.audit import AuditEvent
from freelance_books.models.billing import Invoice, Payment
from freelance_books.models.expense import DepreciationScheduleEntry, Expense


class RecordStore(ABC):
    """
    Abstract interface for the engine's persistent records.

    Any storage implementation must implement these methods. Multi-row
    writes run inside transaction(); a failure inside it rolls back every
    write made since the outermost begin().
    """

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def begin(self) -> None:
        """Open a transaction."""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Make all writes since begin() durable."""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard all writes since begin()."""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True while the calling thread has a transaction open."""
        pass

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """
        Run a block atomically.

        Nested use joins the outer transaction, so a generator call made
        from inside an expense update commits or rolls back with it. A
        transaction belongs to the thread that opened it; other threads
        wait in begin() until it ends.
        """
        if self.in_transaction:
            yield self
            return

        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_expense(self, expense_id: UUID, owner_id: UUID) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Args:
            expense_id: The expense's unique identifier
            owner_id: Tenant the expense must belong to

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    def insert_expense(self, expense: Expense) -> Expense:
        """
        Insert a new expense.

        Raises:
            DuplicateError: If an expense with the same ID exists
        """
        pass

    @abstractmethod
    def update_expense(self, expense: Expense) -> Expense:
        """
        Replace a stored expense.

        Raises:
            NotFoundError: If the expense doesn't exist for its owner
        """
        pass

    @abstractmethod
    def delete_expense(self, expense_id: UUID, owner_id: UUID) -> bool:
        """
        Delete an expense together with its schedule.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    def list_children(self, parent_id: UUID, owner_id: UUID) -> list[Expense]:
        """
        List occurrences generated from a template.

        Returns:
            Children ordered by expense date, newest first
        """
        pass

    @abstractmethod
    def delete_children(self, parent_id: UUID, owner_id: UUID) -> int:
        """
        Delete every occurrence of a template, cascading their schedules.

        Returns:
            Number of deleted occurrences
        """
        pass

    # -------------------------------------------------------------------------
    # Depreciation schedules
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_schedule(
        self,
        expense_id: UUID,
        owner_id: UUID,
    ) -> list[DepreciationScheduleEntry]:
        """Schedule entries of one expense, ordered by year."""
        pass

    @abstractmethod
    def insert_schedule_entries(
        self,
        entries: list[DepreciationScheduleEntry],
    ) -> None:
        """Insert schedule entries (expense_id and owner_id must be set)."""
        pass

    @abstractmethod
    def delete_schedule(self, expense_id: UUID, owner_id: UUID) -> int:
        """
        Delete the whole schedule of one expense.

        Returns:
            Number of deleted entries
        """
        pass

    @abstractmethod
    def list_schedule_entries_for_year(
        self,
        owner_id: UUID,
        year: int,
    ) -> list[DepreciationScheduleEntry]:
        """All schedule entries of one owner falling in a tax year."""
        pass

    # -------------------------------------------------------------------------
    # Billing (read-only)
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_invoice(self, invoice_id: UUID, owner_id: UUID) -> Optional[Invoice]:
        """Retrieve an invoice, None if missing or foreign."""
        pass

    @abstractmethod
    def list_payments(self, invoice_id: UUID, owner_id: UUID) -> list[Payment]:
        """Payments and refunds recorded against an invoice, in any order."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one template update).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'expense', 'invoice')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or owned by someone else)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
