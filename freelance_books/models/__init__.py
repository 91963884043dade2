"""
Data Models Package

This package contains all Pydantic models used by the engine.
All data flowing through the system must conform to these schemas.
"""

from freelance_books.models.expense import (
    DepreciationMethod,
    DepreciationScheduleEntry,
    DepreciationSettings,
    DepreciationType,
    Expense,
    ExpenseStatus,
    ExpenseUpdate,
    Frequency,
)
from freelance_books.models.billing import (
    BillingStatus,
    BillingValidationResult,
    DuplicatePaymentCheck,
    Invoice,
    Payment,
    PaymentType,
    ProposedPaymentResult,
)
from freelance_books.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "DepreciationMethod",
    "DepreciationScheduleEntry",
    "DepreciationSettings",
    "DepreciationType",
    "Expense",
    "ExpenseStatus",
    "ExpenseUpdate",
    "Frequency",
    # Billing models
    "BillingStatus",
    "BillingValidationResult",
    "DuplicatePaymentCheck",
    "Invoice",
    "Payment",
    "PaymentType",
    "ProposedPaymentResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
