"""
Recurring Expense Generator

Materializes the past occurrences of a recurring template as ordinary
expense rows linked to the template by parent_id.

DESIGN DECISION: Occurrences are never patched. Any change to a
template's frequency, start or end deletes all of its occurrences and
backfills again from scratch, inside one transaction.

Rules for one backfill run:
1. The cursor starts at the template's expense_date. If that is before
   the recurrence start, it moves to the same day of month in the start
   date's month (clamped to the month length).
2. Occurrences are produced while the cursor is strictly before today and
   not past the recurrence end date.
3. The template's own month is skipped: the template itself is that
   month's expense.
4. Capitalized templates (partial depreciation) give every occurrence a
   depreciation schedule anchored to the template's depreciation start.

IMPORTANT: The whole date list is computed before anything is written,
so an invalid frequency fails without touching storage.
"""

import calendar
import threading
import weakref
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional
from uuid import UUID

from freelance_books.audit import AuditLogger
from freelance_books.config import EngineSettings, get_settings
from freelance_books.depreciation import DepreciationScheduler, InvalidDepreciationInputError
from freelance_books.models.expense import (
    DepreciationType,
    Expense,
    ExpenseStatus,
)
from freelance_books.recurrence.calculator import (
    InvalidFrequencyError,
    add_periods,
    parse_frequency,
)
from freelance_books.services.storage import RecordStore, StorageError


_locks_guard = threading.Lock()
# Entries disappear once no caller holds the lock
_template_locks: "weakref.WeakValueDictionary[UUID, threading.RLock]" = weakref.WeakValueDictionary()


@contextmanager
def template_lock(template_id: UUID) -> Iterator[None]:
    """
    Advisory lock serializing writes to one template's occurrences.

    Re-entrant, so the expense service can hold it while calling the generator.
    """
    with _locks_guard:
        lock = _template_locks.get(template_id)
        if lock is None:
            lock = threading.RLock()
            _template_locks[template_id] = lock
    with lock:
        yield


def _same_day_in_month(month_of: date, day: int) -> date:
    last_day = calendar.monthrange(month_of.year, month_of.month)[1]
    return month_of.replace(day=min(day, last_day))


class RecurringExpenseGenerator:
    """
    Backfills generated occurrences of recurring templates.

    Usage:
        generator = RecurringExpenseGenerator(store)
        created = generator.backfill(template, today=date(2024, 4, 15))
    """

    def __init__(
        self,
        store: RecordStore,
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

    def occurrence_dates(self, template: Expense, today: Optional[date] = None) -> list[date]:
        """
        Dates a backfill run would materialize, without writing anything.

        Raises:
            ValueError: If the expense is not a recurring template
            InvalidFrequencyError: If the template's frequency is unknown
        """
        if not template.is_template:
            raise ValueError(f"Expense {template.id} is not a recurring template")

        frequency = parse_frequency(template.recurrence_frequency)
        today = today or date.today()
        start = template.recurrence_start_date
        end = template.recurrence_end_date
        template_month = (template.expense_date.year, template.expense_date.month)
        day = template.expense_date.day

        first = template.expense_date
        if first < start:
            first = _same_day_in_month(start, day)
        # Step whole months from the 1st, then clamp the template's day
        first_month = first.replace(day=1)

        dates = []
        count = 0
        cursor = first
        while cursor < today:
            if end is not None and cursor > end:
                break
            if cursor >= start and (cursor.year, cursor.month) != template_month:
                dates.append(cursor)
            count += 1
            cursor = _same_day_in_month(add_periods(first_month, frequency, count), day)

        return dates

    def build_occurrence(self, template: Expense, when: date) -> Expense:
        """A generated occurrence of template on the given date."""
        return Expense(
            owner_id=template.owner_id,
            project_id=template.project_id,
            category=template.category,
            description=f"{template.description}{self._settings.auto_generated_suffix}",
            amount=template.amount,
            net_amount=template.net_amount,
            tax_rate=template.tax_rate,
            tax_amount=template.tax_amount,
            currency=template.currency,
            expense_date=when,
            is_billable=template.is_billable,
            is_reimbursable=template.is_reimbursable,
            status=ExpenseStatus.APPROVED,
            tags=list(template.tags),
            notes=template.notes,
            is_recurring=False,
            parent_id=template.id,
            depreciation=template.depreciation.model_copy(),
        )

    def _materialize(self, template: Expense, dates: list[date]) -> list[Expense]:
        settings = template.depreciation
        created = []
        for when in dates:
            occurrence = self._store.insert_expense(self.build_occurrence(template, when))
            if settings.type == DepreciationType.PARTIAL:
                self._scheduler.write_schedule(
                    occurrence,
                    settings.years,
                    settings.start_date,
                    settings.method,
                )
            created.append(occurrence)
        return created

    def _run(
        self,
        template: Expense,
        today: Optional[date],
        regenerate: bool,
        correlation_id: Optional[UUID],
    ) -> list[Expense]:
        owns_transaction = not self._store.in_transaction
        operation = "regenerate" if regenerate else "backfill"
        try:
            dates = self.occurrence_dates(template, today)
            with template_lock(template.id):
                with self._store.transaction():
                    if regenerate:
                        self._store.delete_children(template.id, template.owner_id)
                    created = self._materialize(template, dates)
        except (InvalidFrequencyError, InvalidDepreciationInputError, StorageError) as e:
            if owns_transaction:
                self._audit.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"template_id": str(template.id), "operation": operation},
                    correlation_id=correlation_id,
                )
            raise

        self._audit.log_occurrences_generated(
            template_id=template.id,
            occurrence_dates=[d.isoformat() for d in dates],
            regenerated=regenerate,
            correlation_id=correlation_id,
        )
        return created

    def backfill(
        self,
        template: Expense,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Insert every past occurrence of a freshly created template.

        Returns:
            The created occurrences, oldest first

        Raises:
            InvalidFrequencyError: Nothing is written
            InvalidDepreciationInputError: Capitalized template without years/start date
        """
        return self._run(template, today, False, correlation_id)

    def regenerate(
        self,
        template: Expense,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Delete all occurrences of a template (and their schedules), then backfill.

        Both steps share one transaction; if backfill fails the old
        occurrences are still there.
        """
        return self._run(template, today, True, correlation_id)
