"""Deadline computation for loan terms"""

from datetime import date, datetime

from lending_ledger.domain.exceptions import ValidationError
from lending_ledger.utils.date_utils import add_months_clamped, end_of_day


def compute_deadline(issued: date | datetime, months_to_pay: int) -> datetime:
    """
    Compute the repayment deadline for a loan.

    Requirements:
    - Month overflow carries into the year
    - Day is clamped to the last valid day of the target month
    - Clock time is end-of-day so same-day payments are never overdue

    Args:
        issued: Issue date (time of day is ignored)
        months_to_pay: Number of calendar months, must be positive

    Returns:
        Deadline at 23:59:59 of the computed date

    Example:
        2025-01-31 + 1 month → 2025-02-28 23:59:59
        2028-01-31 + 1 month → 2028-02-29 23:59:59 (leap year)
    """
    if months_to_pay <= 0:
        raise ValidationError("Months to pay must be positive")

    issued_date = issued.date() if isinstance(issued, datetime) else issued
    return end_of_day(add_months_clamped(issued_date, months_to_pay))
