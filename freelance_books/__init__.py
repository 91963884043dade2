"""
Freelance Books - Recurring Obligation & Billing Reconciliation Engine

The bookkeeping core of a freelancer's books: recurring expenses,
depreciation (AfA) schedules and invoice/payment reconciliation.

DESIGN PRINCIPLES:
1. Occurrences and schedules are rebuilt, never patched
2. One operation, one transaction
3. No silent corrections: findings are reported, not fixed
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Freelance Books Team"

from freelance_books.audit import AuditLogger, create_correlation_id
from freelance_books.depreciation import (
    DepreciationScheduler,
    InvalidDepreciationInputError,
)
from freelance_books.orchestrator import BooksEngine, create_engine_components
from freelance_books.recurrence import (
    InvalidFrequencyError,
    RecurringExpenseGenerator,
    next_occurrence,
)
from freelance_books.services.expenses import ExpenseService
from freelance_books.services.storage import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)
from freelance_books.validation import BillingReconciler

__all__ = [
    "AuditLogger",
    "BillingReconciler",
    "BooksEngine",
    "ConnectionError",
    "DepreciationScheduler",
    "DuplicateError",
    "ExpenseService",
    "InvalidDepreciationInputError",
    "InvalidFrequencyError",
    "NotFoundError",
    "RecurringExpenseGenerator",
    "StorageError",
    "create_correlation_id",
    "create_engine_components",
    "next_occurrence",
]
