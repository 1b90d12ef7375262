"""Balance rules for disbursements, reconstructions and payments.

Validation helpers raise ``ValidationError`` and run before a transaction is
opened. Precondition helpers raise ``PreconditionFailed`` and run inside the
transaction against freshly read state. Balance helpers return the new balance
and never mutate anything themselves.
"""

from dataclasses import replace
from datetime import datetime

from lending_ledger.domain.deadlines import compute_deadline
from lending_ledger.domain.exceptions import PreconditionFailed, ValidationError
from lending_ledger.domain.models import LoanTerms
from lending_ledger.utils.date_utils import start_of_day


def validate_terms(terms: LoanTerms, max_months: int, require_amount: bool = True) -> LoanTerms:
    """Check loan terms and fill in the deadline when it was not supplied"""
    if require_amount and (terms.amount_cents is None or terms.amount_cents <= 0):
        raise ValidationError("Amount must be greater than zero")
    if terms.interest_cents is None or terms.interest_cents < 0:
        raise ValidationError("Interest must not be negative")
    if not 1 <= terms.months_to_pay <= max_months:
        raise ValidationError(f"Months to pay must be between 1 and {max_months}")
    if terms.issued_at is None:
        raise ValidationError("Issue date is required")

    deadline = terms.deadline or compute_deadline(terms.issued_at, terms.months_to_pay)
    if deadline <= terms.issued_at:
        raise ValidationError("Deadline must be after the issue date")

    return replace(terms, deadline=deadline)


def validate_payment_amount(amount_cents: int) -> None:
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")


def validate_edited_amount(amount_cents: int) -> None:
    if amount_cents is None or amount_cents < 0:
        raise ValidationError("Payment amount must not be negative")


def ensure_can_disburse(balance_cents: int) -> None:
    """A new loan may only be released once the previous one is fully paid"""
    if balance_cents != 0:
        raise PreconditionFailed("Balance must be zero to create a new disbursement")


def ensure_can_reconstruct(balance_cents: int) -> None:
    if balance_cents <= 0:
        raise PreconditionFailed("Balance must be greater than zero to reconstruct")


def ensure_payment_window(paid_at: datetime, issued_at: datetime, deadline: datetime) -> None:
    """Payments must fall between the issue day and the deadline, inclusive"""
    if paid_at < start_of_day(issued_at.date()) or paid_at > deadline:
        raise PreconditionFailed(
            f"Payment date must be between {issued_at.date().isoformat()} "
            f"and {deadline.date().isoformat()}"
        )


def apply_payment(balance_cents: int, amount_cents: int) -> int:
    """Balance after a new payment"""
    if amount_cents > balance_cents:
        raise PreconditionFailed("Payment exceeds balance")
    return balance_cents - amount_cents


def reprice_payment(balance_cents: int, old_amount_cents: int, new_amount_cents: int) -> int:
    """Balance after changing a payment: reverse the old amount, apply the new one"""
    max_allowed = balance_cents + old_amount_cents
    if new_amount_cents < 0 or new_amount_cents > max_allowed:
        raise PreconditionFailed(f"Payment amount must be between 0 and {max_allowed}")
    return max_allowed - new_amount_cents


def reverse_payment(balance_cents: int, amount_cents: int) -> int:
    """Balance after deleting a payment"""
    return balance_cents + amount_cents


def adjust_principal(balance_cents: int, old_amount_cents: int, new_amount_cents: int) -> int:
    """Balance after correcting the principal of the current disbursement"""
    if new_amount_cents <= 0:
        raise ValidationError("Amount must be greater than zero")
    new_balance = balance_cents + new_amount_cents - old_amount_cents
    if new_balance < 0:
        raise PreconditionFailed("Amount is lower than the payments already recorded")
    return new_balance
