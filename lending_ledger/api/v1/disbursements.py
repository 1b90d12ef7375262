"""Disbursement endpoints - release, reconstruct and correct loans"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query

from lending_ledger.api.dependencies import (
    get_credential_gate,
    get_ledger_service,
    get_request_id,
    get_staff_session,
)
from lending_ledger.api.errors import internal_error, to_http_exception
from lending_ledger.api.v1.schemas import (
    DisbursementListResponse,
    DisbursementRegisterResponse,
    DisbursementRequest,
    DisbursementResponse,
    ReconRequest,
    RegisterItem,
    TermsUpdateRequest,
)
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.domain.models import DisbursementQuery, LoanTerms, StaffSession, TermsUpdate
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/clients/{client_id}/disbursements", response_model=DisbursementResponse, status_code=201)
def disburse(
    client_id: str,
    request_body: DisbursementRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """
    Release a new loan to a client.

    Flow:
    1. Validate terms and compute the deadline when omitted
    2. Verify the staff PIN
    3. Re-read the client inside the transaction; balance must be zero
    4. Create the disbursement and set the balance to the principal
    """
    terms = LoanTerms(
        amount_cents=request_body.amount_cents,
        interest_cents=request_body.interest_cents,
        months_to_pay=request_body.months_to_pay,
        issued_at=request_body.issued_at,
        deadline=request_body.deadline,
    )
    try:
        disbursement = service.disburse(staff, client_id, terms, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return DisbursementResponse.from_domain(disbursement)


@router.post("/clients/{client_id}/recon", response_model=DisbursementResponse, status_code=201)
def reconstruct(
    client_id: str,
    request_body: ReconRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Move the outstanding balance into a new disbursement under new terms"""
    terms = LoanTerms(
        interest_cents=request_body.interest_cents,
        months_to_pay=request_body.months_to_pay,
        issued_at=request_body.issued_at,
        deadline=request_body.deadline,
    )
    try:
        disbursement = service.reconstruct(staff, client_id, terms, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return DisbursementResponse.from_domain(disbursement)


@router.get("/clients/{client_id}/disbursements", response_model=DisbursementListResponse)
def list_disbursements(
    client_id: str,
    x_client_pin: Optional[str] = Header(None),
    gate: CredentialGate = Depends(get_credential_gate),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """All disbursements of a client, newest first"""
    try:
        gate.require_client_pin(client_id, x_client_pin)
        disbursements = service.list_disbursements(client_id)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return DisbursementListResponse(
        client_id=client_id,
        disbursements=[DisbursementResponse.from_domain(d) for d in disbursements],
    )


@router.patch("/disbursements/{disbursement_id}", response_model=DisbursementResponse)
def update_terms(
    disbursement_id: str,
    request_body: TermsUpdateRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Correct interest, schedule, remarks or principal of a disbursement"""
    update = TermsUpdate(
        amount_cents=request_body.amount_cents,
        interest_cents=request_body.interest_cents,
        months_to_pay=request_body.months_to_pay,
        issued_at=request_body.issued_at,
        deadline=request_body.deadline,
        remarks=request_body.remarks,
    )
    try:
        disbursement = service.update_terms(staff, disbursement_id, update, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return DisbursementResponse.from_domain(disbursement)


@router.get("/disbursements", response_model=DisbursementRegisterResponse)
def disbursement_register(
    year: Optional[int] = Query(None, description="Issue year"),
    month: Optional[int] = Query(None, description="Issue month (1-12), in any year unless year is set"),
    day: Optional[date] = Query(None, description="Exact issue day"),
    limit: int = Query(500, ge=1, le=5000),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Disbursements of every client, newest first"""
    try:
        entries = service.disbursement_register(
            DisbursementQuery(year=year, month=month, day=day, limit=limit)
        )
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return DisbursementRegisterResponse(disbursements=[RegisterItem.from_entry(e) for e in entries])
