"""
Depreciation Scheduler (AfA)

Spreads the net amount of a capitalized expense over its useful life and
answers "how much of this expense is deductible in year X".

DESIGN DECISION: Linear depreciation with a pro-rata first year.
The first year counts the months from the start month to December
(inclusive); every middle year gets the full annual amount; the final
year takes whatever is left so the schedule always sums to net_amount.

Amounts are rounded to cents with ROUND_HALF_UP. Rounding residue ends up
in the final year, never silently dropped. A one-year useful life (e.g.
computer hardware since 2021) is deducted in full, without pro-rata.

Schedules are always replaced as a whole: delete, then reinsert.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from freelance_books.audit import AuditLogger
from freelance_books.config import EngineSettings, get_settings
from freelance_books.models.expense import (
    DepreciationMethod,
    DepreciationScheduleEntry,
    DepreciationSettings,
    DepreciationType,
    Expense,
    MAX_DEPRECIATION_YEARS,
    MAX_SCHEDULE_YEAR,
    MIN_SCHEDULE_YEAR,
)
from freelance_books.services.storage import NotFoundError, RecordStore, StorageError


CENT = Decimal("0.01")


class InvalidDepreciationInputError(ValueError):
    """Partial depreciation without a usable useful life or start date."""
    pass


def _to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _first_year_amount(net_amount: Decimal, years: int, start_date: date) -> Decimal:
    """Pro-rata share for the months from start_date's month to December."""
    months = 13 - start_date.month
    return _to_cents(net_amount / years * months / 12)


def _check_inputs(
    years: Optional[int],
    start_date: Optional[date],
    max_years: int = MAX_DEPRECIATION_YEARS,
) -> None:
    if years is None or start_date is None:
        raise InvalidDepreciationInputError(
            "Depreciation years and start date are required for partial depreciation"
        )
    if years < 1 or years > max_years:
        raise InvalidDepreciationInputError(
            f"Depreciation years must be between 1 and {max_years}, got {years}"
        )
    last_year = start_date.year + years - 1
    if start_date.year < MIN_SCHEDULE_YEAR or last_year > MAX_SCHEDULE_YEAR:
        raise InvalidDepreciationInputError(
            f"Depreciation must fall within {MIN_SCHEDULE_YEAR}-{MAX_SCHEDULE_YEAR}, "
            f"got {start_date.year}-{last_year}"
        )


def calculate_schedule(
    net_amount: Decimal,
    years: Optional[int],
    start_date: Optional[date],
    method: DepreciationMethod = DepreciationMethod.LINEAR,
    expense_id: Optional[UUID] = None,
    owner_id: Optional[UUID] = None,
) -> list[DepreciationScheduleEntry]:
    """
    Compute a linear depreciation schedule.

    Args:
        net_amount: Amount to depreciate (net of VAT)
        years: Useful life in years
        start_date: Start of depreciation; its month drives the pro-rata
        method: Stored label; degressive is computed as linear
        expense_id: Expense to attach the entries to
        owner_id: Owner to attach the entries to

    Returns:
        One entry per year starting at start_date.year

    Raises:
        InvalidDepreciationInputError: Missing years/start date, or years < 1
    """
    _check_inputs(years, start_date)
    if net_amount < 0:
        raise InvalidDepreciationInputError("Net amount cannot be negative")

    annual = net_amount / years
    first_year = _first_year_amount(net_amount, years, start_date)

    entries = []
    cumulative = Decimal("0.00")
    for i in range(years):
        is_final = i == years - 1
        if is_final:
            amount = net_amount - cumulative
        elif i == 0:
            amount = first_year
        else:
            amount = _to_cents(annual)
        # Never depreciate more than what is left
        amount = _to_cents(min(amount, net_amount - cumulative))

        cumulative += amount
        entries.append(DepreciationScheduleEntry(
            expense_id=expense_id,
            owner_id=owner_id,
            year=start_date.year + i,
            amount=amount,
            cumulative_amount=_to_cents(cumulative),
            remaining_value=_to_cents(net_amount - cumulative),
            is_final_year=is_final,
        ))

    return entries


def tax_deductible_amount(settings: DepreciationSettings, net_amount: Decimal) -> Decimal:
    """
    Amount deductible in the expense's first year.

    none/immediate and one-year partial: the full net amount.
    Multi-year partial: the pro-rata first-year amount.
    """
    if settings.type != DepreciationType.PARTIAL:
        return net_amount
    _check_inputs(settings.years, settings.start_date)
    if settings.years == 1:
        return net_amount
    return _first_year_amount(net_amount, settings.years, settings.start_date)


def apply_deductible_percentage(
    net_amount: Decimal,
    percentage: Decimal,
    scheduled_amount: Optional[Decimal] = None,
) -> Decimal:
    """
    Apply partial tax deductibility (e.g. 50% for mixed private use).

    Uses the scheduled amount when one is positive, the net amount otherwise.
    """
    base = scheduled_amount if scheduled_amount is not None and scheduled_amount > 0 else net_amount
    return _to_cents(base * Decimal(percentage) / 100)


class DepreciationScheduler:
    """
    Store-backed depreciation operations.

    Every write runs in a store transaction; when called from inside the
    generator or the expense service it joins their transaction.
    """

    def __init__(
        self,
        store: RecordStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().engine

    def _get_expense(self, expense_id: UUID, owner_id: UUID) -> Expense:
        expense = self._store.get_expense(expense_id, owner_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    def _validate(self, settings: DepreciationSettings) -> None:
        if settings.type == DepreciationType.PARTIAL:
            _check_inputs(
                settings.years,
                settings.start_date,
                self._settings.max_depreciation_years,
            )

    def write_schedule(
        self,
        expense: Expense,
        years: int,
        start_date: date,
        method: DepreciationMethod,
    ) -> list[DepreciationScheduleEntry]:
        entries = calculate_schedule(
            expense.net_amount,
            years,
            start_date,
            method,
            expense_id=expense.id,
            owner_id=expense.owner_id,
        )
        self._store.delete_schedule(expense.id, expense.owner_id)
        self._store.insert_schedule_entries(entries)
        return entries

    def replace_schedule(
        self,
        expense_id: UUID,
        owner_id: UUID,
        years: int,
        start_date: date,
        method: DepreciationMethod = DepreciationMethod.LINEAR,
        correlation_id: Optional[UUID] = None,
    ) -> list[DepreciationScheduleEntry]:
        """
        Recompute and store the schedule of one expense.

        The schedule is computed before the old one is deleted, and both
        writes share a transaction, so a failure leaves the prior schedule.

        Raises:
            NotFoundError: Expense missing or owned by someone else
            InvalidDepreciationInputError: Unusable years/start date
        """
        owns_transaction = not self._store.in_transaction
        try:
            with self._store.transaction():
                expense = self._get_expense(expense_id, owner_id)
                _check_inputs(years, start_date, self._settings.max_depreciation_years)
                entries = self.write_schedule(expense, years, start_date, method)
        except NotFoundError:
            raise
        except (InvalidDepreciationInputError, StorageError) as e:
            if owns_transaction:
                self._audit.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"expense_id": str(expense_id), "operation": "replace_schedule"},
                    correlation_id=correlation_id,
                )
            raise

        self._audit.log_schedule_replaced(
            expense_id=expense_id,
            years=years,
            start_year=start_date.year,
            correlation_id=correlation_id,
        )
        return entries

    def get_schedule(
        self,
        expense_id: UUID,
        owner_id: UUID,
    ) -> list[DepreciationScheduleEntry]:
        """Stored schedule of one expense, ordered by year."""
        self._get_expense(expense_id, owner_id)
        return sorted(
            self._store.get_schedule(expense_id, owner_id),
            key=lambda e: e.year,
        )

    def amount_for_year(self, expense_id: UUID, owner_id: UUID, year: int) -> Decimal:
        """
        Deductible amount of one expense in a tax year.

        Partial: the scheduled amount for that year, 0 outside the schedule.
        none/immediate: the net amount in the expense's own year, else 0.
        """
        expense = self._get_expense(expense_id, owner_id)

        if expense.depreciation.type != DepreciationType.PARTIAL:
            if expense.expense_date.year == year:
                return expense.net_amount
            return Decimal("0")

        for entry in self._store.get_schedule(expense_id, owner_id):
            if entry.year == year:
                return entry.amount
        return Decimal("0")

    def apply_settings(
        self,
        expense: Expense,
        settings: DepreciationSettings,
        schedule_start: Optional[date] = None,
    ) -> Expense:
        """
        Apply settings to a stored expense inside the caller's transaction.

        schedule_start overrides settings.start_date as the schedule anchor;
        occurrences of a template depreciate from the template's start date.
        """
        settings = settings.model_copy()
        if settings.type == DepreciationType.PARTIAL:
            start = schedule_start or settings.start_date
            self.write_schedule(expense, settings.years, start, settings.method)
        else:
            settings.years = None
            settings.start_date = None
            self._store.delete_schedule(expense.id, expense.owner_id)

        settings.tax_deductible_amount = tax_deductible_amount(settings, expense.net_amount)
        updated = expense.model_copy(update={"depreciation": settings})
        return self._store.update_expense(updated)

    def update_settings(
        self,
        expense_id: UUID,
        owner_id: UUID,
        settings: DepreciationSettings,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Change how an expense is depreciated.

        For a recurring template every generated occurrence inherits the
        settings and, when partial, gets a schedule anchored to the
        template's start date. Template and occurrences change together.

        Raises:
            NotFoundError: Expense missing or owned by someone else
            InvalidDepreciationInputError: Partial without years/start date
        """
        children_updated = 0
        owns_transaction = not self._store.in_transaction
        try:
            self._validate(settings)
            with self._store.transaction():
                expense = self._get_expense(expense_id, owner_id)
                updated = self.apply_settings(expense, settings)

                if expense.is_template:
                    for child in self._store.list_children(expense.id, owner_id):
                        self.apply_settings(
                            child,
                            settings,
                            schedule_start=updated.depreciation.start_date,
                        )
                        children_updated += 1
        except NotFoundError:
            raise
        except (InvalidDepreciationInputError, StorageError) as e:
            if owns_transaction:
                self._audit.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"expense_id": str(expense_id), "operation": "update_settings"},
                    correlation_id=correlation_id,
                )
            raise

        self._audit.log_depreciation_settings_updated(
            expense_id=expense_id,
            depreciation_type=settings.type.value,
            tax_deductible_amount=str(updated.depreciation.tax_deductible_amount),
            children_updated=children_updated,
            correlation_id=correlation_id,
        )
        return updated

    def deductible_amount_for_year(self, expense_id: UUID, owner_id: UUID, year: int) -> Decimal:
        """amount_for_year reduced to the expense's tax-deductible percentage."""
        amount = self.amount_for_year(expense_id, owner_id, year)
        if amount <= 0:
            return Decimal("0")
        expense = self._get_expense(expense_id, owner_id)
        return apply_deductible_percentage(
            expense.net_amount,
            expense.depreciation.tax_deductible_percentage,
            scheduled_amount=amount,
        )

    def deductible_total_for_year(self, owner_id: UUID, year: int) -> Decimal:
        """
        Deductible depreciation of one owner in a tax year.

        Each scheduled amount is reduced to its expense's tax-deductible
        percentage before summing.
        """
        total = Decimal("0")
        for entry in self._store.list_schedule_entries_for_year(owner_id, year):
            expense = self._store.get_expense(entry.expense_id, owner_id)
            percentage = (
                expense.depreciation.tax_deductible_percentage
                if expense is not None
                else Decimal("100")
            )
            total += apply_deductible_percentage(entry.amount, percentage, scheduled_amount=entry.amount)
        return _to_cents(total)
