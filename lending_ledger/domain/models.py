"""Domain models - pure Python dataclasses representing ledger entities"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


RELEASE_REMARKS = "Release"
RECON_REMARKS = "Recon"


class LoanStatus(str, Enum):
    """Status shared by clients and disbursements"""

    NO_DATA = "NoData"
    ONGOING = "OnGoing"
    RECON = "Recon"
    OVERDUE = "Overdue"
    PAID = "Paid"

    @classmethod
    def parse(cls, value: Optional[str]) -> "LoanStatus":
        """Normalize stored status strings, including legacy spellings"""
        if value is None:
            return cls.NO_DATA
        if value in ("", "Active", "Ongoing"):
            return cls.ONGOING
        return cls(value)


@dataclass(frozen=True)
class StaffSession:
    """Staff member acting on the ledger"""

    user_id: str
    user_name: str = ""


@dataclass
class LoanTerms:
    """Operator-supplied terms for a disbursement or reconstruction"""

    interest_cents: int
    months_to_pay: int
    issued_at: datetime
    deadline: Optional[datetime] = None
    amount_cents: Optional[int] = None  # ignored by reconstruct


@dataclass
class TermsUpdate:
    """Partial update of an existing disbursement"""

    amount_cents: Optional[int] = None
    interest_cents: Optional[int] = None
    months_to_pay: Optional[int] = None
    issued_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    remarks: Optional[str] = None


@dataclass
class Client:
    """Borrower with a running balance"""

    id: str
    name: str
    nickname: str
    balance_cents: int
    status: LoanStatus
    is_private: bool
    current_disbursement_id: Optional[str] = None


@dataclass
class Disbursement:
    """One loan issuance"""

    id: str
    client_id: str
    amount_cents: int
    interest_cents: int
    months_to_pay: int
    issued_at: datetime
    deadline: datetime
    status: LoanStatus
    remarks: str
    penalty_cents: Optional[int] = None

    @property
    def is_recon(self) -> bool:
        return self.remarks == RECON_REMARKS


@dataclass
class DailyPayment:
    """Single payment against a disbursement"""

    id: str
    client_id: str
    disbursement_id: str
    amount_cents: int
    paid_at: datetime
    recorded_by: str


@dataclass
class ClientLedger:
    """Client with its current disbursement, as shown on the detail view"""

    client: Client
    current_disbursement: Optional[Disbursement]


@dataclass
class PaymentQuery:
    """Filters for listing payments"""

    client_id: Optional[str] = None
    disbursement_id: Optional[str] = None
    day: Optional[date] = None
    limit: int = 100


@dataclass
class DisbursementQuery:
    """Filters for the disbursement register; each one narrows the issue date"""

    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[date] = None
    limit: int = 500


@dataclass
class RegisterEntry:
    """Disbursement row of the register, with the borrower's name"""

    disbursement: Disbursement
    client_name: str
