"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import List, Optional

from lending_ledger.domain.models import Client, DailyPayment, Disbursement, LoanStatus, RegisterEntry
from lending_ledger.utils.date_utils import as_naive_local


class _LocalTimes(BaseModel):
    """Incoming timestamps are stored as naive local time"""

    @field_validator("issued_at", "deadline", "paid_at", mode="after", check_fields=False)
    @classmethod
    def _to_local(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_local(value) if value is not None else None


class ClientCreateRequest(BaseModel):
    """Request body for POST /v1/clients"""

    name: str = Field(..., min_length=1, description="Client full name")
    nickname: str = ""
    is_private: bool = False
    client_pin: Optional[str] = Field(None, description="Required when is_private is true")


class ClientUpdateRequest(BaseModel):
    """Request body for PATCH /v1/clients/{client_id}"""

    name: Optional[str] = None
    nickname: Optional[str] = None
    is_private: Optional[bool] = None
    client_pin: Optional[str] = None


class ClientResponse(BaseModel):
    id: str
    name: str
    nickname: str
    balance_cents: int
    status: LoanStatus
    is_private: bool
    current_disbursement_id: Optional[str] = None

    @classmethod
    def from_domain(cls, client: Client) -> "ClientResponse":
        return cls(
            id=client.id,
            name=client.name,
            nickname=client.nickname,
            balance_cents=client.balance_cents,
            status=client.status,
            is_private=client.is_private,
            current_disbursement_id=client.current_disbursement_id,
        )


class ClientListResponse(BaseModel):
    clients: List[ClientResponse]


class DisbursementRequest(_LocalTimes):
    """Request body for POST /v1/clients/{client_id}/disbursements"""

    amount_cents: int = Field(..., gt=0, description="Principal in cents")
    interest_cents: int = Field(..., ge=0)
    months_to_pay: int = Field(..., ge=1)
    issued_at: datetime
    deadline: Optional[datetime] = Field(None, description="Computed from months_to_pay when omitted")
    pin: str = Field(..., min_length=1, description="Acting staff member's PIN")


class ReconRequest(_LocalTimes):
    """Request body for POST /v1/clients/{client_id}/recon"""

    interest_cents: int = Field(..., ge=0)
    months_to_pay: int = Field(..., ge=1)
    issued_at: datetime
    deadline: Optional[datetime] = None
    pin: str = Field(..., min_length=1)


class TermsUpdateRequest(_LocalTimes):
    """Request body for PATCH /v1/disbursements/{disbursement_id}"""

    amount_cents: Optional[int] = Field(None, gt=0)
    interest_cents: Optional[int] = Field(None, ge=0)
    months_to_pay: Optional[int] = Field(None, ge=1)
    issued_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    remarks: Optional[str] = None
    pin: str = Field(..., min_length=1)


class DisbursementResponse(BaseModel):
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

    @classmethod
    def from_domain(cls, disbursement: Disbursement) -> "DisbursementResponse":
        return cls(
            id=disbursement.id,
            client_id=disbursement.client_id,
            amount_cents=disbursement.amount_cents,
            interest_cents=disbursement.interest_cents,
            months_to_pay=disbursement.months_to_pay,
            issued_at=disbursement.issued_at,
            deadline=disbursement.deadline,
            status=disbursement.status,
            remarks=disbursement.remarks,
            penalty_cents=disbursement.penalty_cents,
        )


class DisbursementListResponse(BaseModel):
    client_id: str
    disbursements: List[DisbursementResponse]


class RegisterItem(DisbursementResponse):
    client_name: str

    @classmethod
    def from_entry(cls, entry: RegisterEntry) -> "RegisterItem":
        return cls(
            **DisbursementResponse.from_domain(entry.disbursement).model_dump(),
            client_name=entry.client_name,
        )


class DisbursementRegisterResponse(BaseModel):
    """Response for GET /v1/disbursements"""

    disbursements: List[RegisterItem]


class ClientDetailResponse(BaseModel):
    """Response for GET /v1/clients/{client_id}"""

    client: ClientResponse
    current_disbursement: Optional[DisbursementResponse] = None


class PaymentRequest(_LocalTimes):
    """Request body for POST /v1/clients/{client_id}/payments"""

    amount_cents: int = Field(..., gt=0)
    paid_at: datetime
    disbursement_id: Optional[str] = None
    penalty_cents: Optional[int] = Field(None, ge=0, description="Recorded on the disbursement only")
    pin: str = Field(..., min_length=1)


class PaymentEditRequest(BaseModel):
    """Request body for PATCH /v1/payments/{payment_id}"""

    amount_cents: int = Field(..., ge=0)
    pin: str = Field(..., min_length=1)


class PaymentResponse(BaseModel):
    id: str
    client_id: str
    disbursement_id: str
    amount_cents: int
    paid_at: datetime
    recorded_by: str

    @classmethod
    def from_domain(cls, payment: DailyPayment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            client_id=payment.client_id,
            disbursement_id=payment.disbursement_id,
            amount_cents=payment.amount_cents,
            paid_at=payment.paid_at,
            recorded_by=payment.recorded_by,
        )


class PaymentListResponse(BaseModel):
    day: Optional[date] = None
    payments: List[PaymentResponse]


class PinVerifyRequest(BaseModel):
    pin: str


class PinVerifyResponse(BaseModel):
    verified: bool


class StatusChangeItem(BaseModel):
    client_id: str
    from_status: LoanStatus
    to_status: LoanStatus


class SweepResponse(BaseModel):
    """Response for POST /v1/sweeps/overdue"""

    changed: List[StatusChangeItem]
