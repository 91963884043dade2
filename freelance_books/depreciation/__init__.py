"""Depreciation (AfA) schedules and tax-deductible amounts."""

from freelance_books.depreciation.scheduler import (
    DepreciationScheduler,
    InvalidDepreciationInputError,
    apply_deductible_percentage,
    calculate_schedule,
    tax_deductible_amount,
)

__all__ = [
    "DepreciationScheduler",
    "InvalidDepreciationInputError",
    "apply_deductible_percentage",
    "calculate_schedule",
    "tax_deductible_amount",
]
