"""Billing validation package."""

from freelance_books.validation.billing import (
    BillingReconciler,
    classify_balance,
    classify_payments,
    duplicate_count,
    total_paid,
)

__all__ = [
    "BillingReconciler",
    "classify_balance",
    "classify_payments",
    "duplicate_count",
    "total_paid",
]
