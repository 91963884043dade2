"""
Recurrence Calculator

Pure date arithmetic for recurring expense templates.

DESIGN DECISION: The k-th occurrence of a series is always computed from
its anchor (anchor + k periods), never by stepping a cursor month by month.
relativedelta clamps to the month length, so a series anchored on the 31st
lands on Feb 28/29 and returns to the 31st in March instead of drifting.

All values are calendar dates. There is no time-of-day component anywhere.
"""

from datetime import date
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from freelance_books.models.expense import Frequency


class InvalidFrequencyError(ValueError):
    """Recurrence frequency is not monthly, quarterly or yearly."""
    pass


# Length of one period per frequency
PERIODS = {
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}


def parse_frequency(value: Union[str, Frequency, None]) -> Frequency:
    """
    Resolve a stored frequency string.

    Raises:
        InvalidFrequencyError: For anything but monthly/quarterly/yearly
    """
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(value)
    except ValueError:
        raise InvalidFrequencyError(f"Unknown recurrence frequency: {value}")


def add_periods(
    anchor: date,
    frequency: Union[str, Frequency],
    count: int,
) -> date:
    """Date of the count-th occurrence after anchor."""
    period = PERIODS[parse_frequency(frequency)]
    return anchor + period * count


def next_occurrence(
    start_date: date,
    frequency: Union[str, Frequency],
    end_date: Optional[date] = None,
    reference_date: Optional[date] = None,
) -> Optional[date]:
    """
    First occurrence of a series strictly after reference_date.

    Args:
        start_date: First date of the series
        frequency: monthly, quarterly or yearly
        end_date: Last allowed date of the series (inclusive)
        reference_date: "Today"; defaults to date.today()

    Returns:
        start_date itself while the series has not started yet, the next
        occurrence otherwise, or None once the series has ended.

    Raises:
        InvalidFrequencyError: If frequency is unknown
    """
    freq = parse_frequency(frequency)
    today = reference_date or date.today()

    if start_date > today:
        return start_date

    count = 0
    cursor = start_date
    while cursor <= today:
        if end_date is not None and cursor > end_date:
            return None
        count += 1
        cursor = add_periods(start_date, freq, count)

    if end_date is not None and cursor > end_date:
        return None
    return cursor
