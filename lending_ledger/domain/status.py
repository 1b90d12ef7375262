"""Loan status resolution - the overdue rule applied on every read and write"""

from datetime import datetime
from typing import Optional

from lending_ledger.domain.models import Disbursement, LoanStatus


def resolve_status(
    balance_cents: int,
    deadline: datetime,
    now: datetime,
    is_recon: bool = False,
) -> LoanStatus:
    """
    Resolve the status of a client's current loan.

    First match wins:
    1. balance <= 0      → Paid
    2. now > deadline    → Overdue (overrides Recon)
    3. otherwise         → Recon for reconstructed loans, OnGoing for the rest
    """
    if balance_cents <= 0:
        return LoanStatus.PAID
    if now > deadline:
        return LoanStatus.OVERDUE
    return LoanStatus.RECON if is_recon else LoanStatus.ONGOING


def resolve_client_status(
    balance_cents: int,
    stored_status: LoanStatus,
    current: Optional[Disbursement],
    now: datetime,
) -> LoanStatus:
    """Resolve status for a client, keeping the stored one when no loan was ever issued"""
    if current is None:
        return stored_status
    return resolve_status(balance_cents, current.deadline, now, current.is_recon)
