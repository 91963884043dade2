"""
Shared fixtures.

Every service test runs against the in-memory store with a fixed "today",
so results do not depend on the date the suite runs.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from freelance_books.audit import AuditLogger
from freelance_books.config import EngineSettings
from freelance_books.depreciation import DepreciationScheduler
from freelance_books.models.expense import DepreciationSettings, Expense
from freelance_books.recurrence import RecurringExpenseGenerator
from freelance_books.services.expenses import ExpenseService
from freelance_books.services.storage import InMemoryAuditStorage, InMemoryRecordStore
from freelance_books.validation import BillingReconciler


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def other_owner_id():
    return uuid4()


@pytest.fixture
def engine_settings():
    return EngineSettings(
        billing_threshold=Decimal("1.50"),
        storage_backend="memory",
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def scheduler(store, audit_logger, engine_settings):
    return DepreciationScheduler(store, audit_logger=audit_logger, settings=engine_settings)


@pytest.fixture
def generator(store, scheduler, audit_logger, engine_settings):
    return RecurringExpenseGenerator(
        store,
        scheduler=scheduler,
        audit_logger=audit_logger,
        settings=engine_settings,
    )


@pytest.fixture
def service(store, generator, scheduler, audit_logger, engine_settings):
    return ExpenseService(
        store,
        generator=generator,
        scheduler=scheduler,
        audit_logger=audit_logger,
        settings=engine_settings,
    )


@pytest.fixture
def reconciler(store, audit_logger, engine_settings):
    return BillingReconciler(store, audit_logger=audit_logger, settings=engine_settings)


@pytest.fixture
def make_expense(owner_id):
    """Factory for valid expenses; keyword arguments override the defaults."""
    def _make(**overrides) -> Expense:
        data = dict(
            owner_id=owner_id,
            category="software",
            description="Cloud hosting",
            amount=Decimal("119.00"),
            net_amount=Decimal("100.00"),
            tax_rate=Decimal("19"),
            tax_amount=Decimal("19.00"),
            expense_date=date(2024, 1, 15),
        )
        data.update(overrides)
        return Expense(**data)
    return _make


@pytest.fixture
def make_template(make_expense):
    """Factory for monthly recurring templates starting 2024-01-01."""
    def _make(**overrides) -> Expense:
        data = dict(
            is_recurring=True,
            recurrence_frequency="monthly",
            recurrence_start_date=date(2024, 1, 1),
        )
        data.update(overrides)
        return make_expense(**data)
    return _make


@pytest.fixture
def partial_settings():
    return DepreciationSettings(
        type="partial",
        years=3,
        start_date=date(2024, 7, 1),
        useful_life_category="Office furniture",
    )
