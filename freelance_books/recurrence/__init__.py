"""Recurring expense scheduling."""

from freelance_books.recurrence.calculator import (
    InvalidFrequencyError,
    add_periods,
    next_occurrence,
    parse_frequency,
)
from freelance_books.recurrence.generator import RecurringExpenseGenerator

__all__ = [
    "InvalidFrequencyError",
    "RecurringExpenseGenerator",
    "add_periods",
    "next_occurrence",
    "parse_frequency",
]
