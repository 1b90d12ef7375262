"""Daily payment endpoints"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, Response

from lending_ledger.api.dependencies import (
    get_credential_gate,
    get_ledger_service,
    get_request_id,
    get_staff_session,
)
from lending_ledger.api.errors import internal_error, to_http_exception
from lending_ledger.api.v1.schemas import (
    PaymentEditRequest,
    PaymentListResponse,
    PaymentRequest,
    PaymentResponse,
)
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.domain.models import PaymentQuery, StaffSession
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/clients/{client_id}/payments", response_model=PaymentResponse, status_code=201)
def pay(
    client_id: str,
    request_body: PaymentRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Record a payment and reduce the client's balance"""
    try:
        payment = service.pay(
            staff,
            client_id,
            amount_cents=request_body.amount_cents,
            paid_at=request_body.paid_at,
            pin=request_body.pin,
            disbursement_id=request_body.disbursement_id,
            penalty_cents=request_body.penalty_cents,
        )
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PaymentResponse.from_domain(payment)


@router.get("/clients/{client_id}/payments", response_model=PaymentListResponse)
def list_client_payments(
    client_id: str,
    disbursement_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    x_client_pin: Optional[str] = Header(None),
    gate: CredentialGate = Depends(get_credential_gate),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Payments of one client, newest first"""
    try:
        gate.require_client_pin(client_id, x_client_pin)
        payments = service.list_payments(
            PaymentQuery(client_id=client_id, disbursement_id=disbursement_id, limit=limit)
        )
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PaymentListResponse(payments=[PaymentResponse.from_domain(p) for p in payments])


@router.get("/payments", response_model=PaymentListResponse)
def list_daily_payments(
    day: date = Query(..., description="Collection day"),
    limit: int = Query(100, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Everything collected on one day across all clients"""
    try:
        payments = service.list_payments(PaymentQuery(day=day, limit=limit))
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PaymentListResponse(day=day, payments=[PaymentResponse.from_domain(p) for p in payments])


@router.patch("/payments/{payment_id}", response_model=PaymentResponse)
def edit_payment(
    payment_id: str,
    request_body: PaymentEditRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Change a payment amount; the balance absorbs the difference"""
    try:
        payment = service.edit_payment(staff, payment_id, request_body.amount_cents, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PaymentResponse.from_domain(payment)


@router.delete("/payments/{payment_id}", status_code=204)
def delete_payment(
    payment_id: str,
    x_staff_pin: str = Header(..., description="Acting staff member's PIN"),
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Remove a payment and restore its amount to the balance"""
    try:
        service.delete_payment(staff, payment_id, x_staff_pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return Response(status_code=204)
