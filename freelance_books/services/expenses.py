"""
Expense Service

Create, update, read and delete expenses, keeping recurring templates and
their generated occurrences consistent.

DESIGN DECISION: The service owns the transaction. Creating a template,
computing its next occurrence and backfilling its past occurrences is one
unit of work; so is updating a template and regenerating or propagating
to its occurrences. Nothing partial is ever left behind.

Fields that occurrences inherit from their template (category,
description, notes, billable/reimbursable flags, tags) are pushed down to
existing occurrences when the template changes. Changes to the
recurrence itself (frequency, start, end) regenerate the occurrences.
"""

from contextlib import nullcontext
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from freelance_books.audit import AuditLogger, create_correlation_id
from freelance_books.config import EngineSettings, get_settings
from freelance_books.depreciation import DepreciationScheduler, InvalidDepreciationInputError
from freelance_books.models.expense import Expense, ExpenseUpdate
from freelance_books.recurrence.calculator import InvalidFrequencyError, next_occurrence
from freelance_books.recurrence.generator import RecurringExpenseGenerator, template_lock
from freelance_books.services.storage import NotFoundError, RecordStore, StorageError


RECURRENCE_FIELDS = ("recurrence_frequency", "recurrence_start_date", "recurrence_end_date")

INHERITED_FIELDS = (
    "category",
    "description",
    "notes",
    "is_billable",
    "is_reimbursable",
    "tags",
)


class ExpenseService:
    """
    Expense operations with recurring-template bookkeeping.

    Usage:
        service = ExpenseService(store)
        template = service.create_expense(expense, today=date(2024, 4, 15))
        service.update_expense(template.id, owner_id, ExpenseUpdate(notes="new"))
    """

    def __init__(
        self,
        store: RecordStore,
        generator: Optional[RecurringExpenseGenerator] = None,
        scheduler: Optional[DepreciationScheduler] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().engine
        self._scheduler = scheduler or DepreciationScheduler(
            store,
            audit_logger=self._audit,
            settings=self._settings,
        )
        self._generator = generator or RecurringExpenseGenerator(
            store,
            scheduler=self._scheduler,
            audit_logger=self._audit,
            settings=self._settings,
        )

    def _record_failure(
        self,
        error: Exception,
        operation: str,
        expense_id: UUID,
        correlation_id: UUID,
    ) -> None:
        self._audit.log_error(
            error_type=type(error).__name__,
            error_message=str(error),
            details={"expense_id": str(expense_id), "operation": operation},
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_expense(self, expense_id: UUID, owner_id: UUID) -> Expense:
        """
        Raises:
            NotFoundError: Missing or owned by someone else
        """
        expense = self._store.get_expense(expense_id, owner_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    def get_expenses_by_parent(self, parent_id: UUID, owner_id: UUID) -> list[Expense]:
        """Generated occurrences of a template, newest first."""
        return self._store.list_children(parent_id, owner_id)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_expense(
        self,
        expense: Expense,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Store a new expense.

        For a recurring template, next_occurrence is computed and all past
        occurrences are backfilled in the same transaction.

        Raises:
            InvalidFrequencyError: Unknown recurrence frequency; nothing stored
            InvalidDepreciationInputError: Partial depreciation without years/start date
        """
        correlation_id = correlation_id or create_correlation_id()
        today = today or date.today()

        if expense.is_recurring and expense.parent_id is not None:
            raise ValueError("Generated occurrences cannot be recurring templates")

        try:
            if expense.is_template:
                expense = expense.model_copy(update={
                    "next_occurrence": next_occurrence(
                        expense.recurrence_start_date,
                        expense.recurrence_frequency,
                        expense.recurrence_end_date,
                        reference_date=today,
                    ),
                })

            lock = template_lock(expense.id) if expense.is_template else nullcontext()
            with lock:
                with self._store.transaction():
                    self._store.insert_expense(expense)
                    expense = self._scheduler.apply_settings(expense, expense.depreciation)
                    if expense.is_template:
                        self._generator.backfill(expense, today, correlation_id)
        except (InvalidFrequencyError, InvalidDepreciationInputError, StorageError) as e:
            self._record_failure(e, "create_expense", expense.id, correlation_id)
            raise

        if expense.is_template:
            self._audit.log_template_created(
                template_id=expense.id,
                frequency=expense.recurrence_frequency,
                next_occurrence=(
                    expense.next_occurrence.isoformat() if expense.next_occurrence else None
                ),
                correlation_id=correlation_id,
            )
        return expense

    def update_expense(
        self,
        expense_id: UUID,
        owner_id: UUID,
        changes: ExpenseUpdate,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Apply a partial update.

        Raises:
            ValueError: No fields to update, or the result is inconsistent
            NotFoundError: Missing or owned by someone else
            InvalidFrequencyError: New frequency unknown; nothing changed
        """
        fields = changes.changes()
        if not fields:
            raise ValueError("No fields to update")

        correlation_id = correlation_id or create_correlation_id()
        today = today or date.today()
        children_updated = 0

        try:
            with template_lock(expense_id):
                with self._store.transaction():
                    current = self.get_expense(expense_id, owner_id)

                    data = current.model_dump()
                    data.update(fields)
                    data["updated_at"] = datetime.now(timezone.utc)
                    updated = Expense.model_validate(data)

                    recurrence_changed = current.is_template and any(
                        name in fields and fields[name] != getattr(current, name)
                        for name in RECURRENCE_FIELDS
                    )
                    if recurrence_changed:
                        updated.next_occurrence = next_occurrence(
                            updated.recurrence_start_date,
                            updated.recurrence_frequency,
                            updated.recurrence_end_date,
                            reference_date=today,
                        )

                    self._store.update_expense(updated)

                    if "net_amount" in fields:
                        updated = self._scheduler.apply_settings(updated, updated.depreciation)

                    if recurrence_changed:
                        self._generator.regenerate(updated, today, correlation_id)
                    elif current.is_template:
                        children_updated = self._propagate(updated, fields)
        except NotFoundError:
            raise
        except (InvalidFrequencyError, InvalidDepreciationInputError, StorageError) as e:
            self._record_failure(e, "update_expense", expense_id, correlation_id)
            raise

        self._audit.log_expense_updated(
            expense_id=expense_id,
            fields=list(fields),
            recurrence_changed=recurrence_changed,
            correlation_id=correlation_id,
        )
        if children_updated:
            self._audit.log_children_updated(
                template_id=expense_id,
                child_count=children_updated,
                fields=[name for name in INHERITED_FIELDS if name in fields],
                correlation_id=correlation_id,
            )
        return updated

    def _propagate(self, template: Expense, fields: dict) -> int:
        """Push inherited fields down to existing occurrences."""
        inherited = {name: fields[name] for name in INHERITED_FIELDS if name in fields}
        if not inherited:
            return 0

        if "description" in inherited:
            inherited["description"] = (
                f"{template.description}{self._settings.auto_generated_suffix}"
            )
        if "tags" in inherited:
            inherited["tags"] = list(template.tags)

        children = self._store.list_children(template.id, template.owner_id)
        now = datetime.now(timezone.utc)
        for child in children:
            self._store.update_expense(
                child.model_copy(update={**inherited, "updated_at": now})
            )
        return len(children)

    def delete_expense(
        self,
        expense_id: UUID,
        owner_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete an expense, its schedule and (for templates) all occurrences.

        Returns:
            Number of deleted occurrences
        """
        correlation_id = correlation_id or create_correlation_id()

        with template_lock(expense_id):
            with self._store.transaction():
                self.get_expense(expense_id, owner_id)
                children_deleted = self._store.delete_children(expense_id, owner_id)
                self._store.delete_expense(expense_id, owner_id)

        self._audit.log_expense_deleted(
            expense_id=expense_id,
            children_deleted=children_deleted,
            correlation_id=correlation_id,
        )
        return children_deleted
