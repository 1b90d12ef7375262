"""Client endpoints - create, profile, detail and listing"""

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
    ClientCreateRequest,
    ClientDetailResponse,
    ClientListResponse,
    ClientResponse,
    ClientUpdateRequest,
    DisbursementResponse,
)
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.domain.models import LoanStatus, StaffSession
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    request_body: ClientCreateRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Register a new client with zero balance and no loan history"""
    try:
        client = service.create_client(
            name=request_body.name,
            nickname=request_body.nickname,
            is_private=request_body.is_private,
            client_pin=request_body.client_pin,
        )
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return ClientResponse.from_domain(client)


@router.get("/clients", response_model=ClientListResponse)
def list_clients(
    status: Optional[LoanStatus] = Query(None, description="Only clients with this status"),
    search: Optional[str] = Query(None, description="Match on name or nickname"),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """List clients after bringing overdue statuses up to date"""
    try:
        clients = service.list_clients(status=status, search=search)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return ClientListResponse(clients=[ClientResponse.from_domain(c) for c in clients])


@router.get("/clients/{client_id}", response_model=ClientDetailResponse)
def get_client(
    client_id: str,
    x_client_pin: Optional[str] = Header(None, description="Required for private clients"),
    gate: CredentialGate = Depends(get_credential_gate),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """
    Client detail with its current disbursement.

    Private clients are only shown when X-Client-PIN matches their PIN.
    """
    try:
        gate.require_client_pin(client_id, x_client_pin)
        detail = service.get_client(client_id)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)

    current = detail.current_disbursement
    return ClientDetailResponse(
        client=ClientResponse.from_domain(detail.client),
        current_disbursement=DisbursementResponse.from_domain(current) if current else None,
    )


@router.patch("/clients/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: str,
    request_body: ClientUpdateRequest,
    staff: StaffSession = Depends(get_staff_session),
    service: LedgerService = Depends(get_ledger_service),
    request_id: str = Depends(get_request_id),
):
    """Edit name, nickname or privacy settings"""
    try:
        client = service.update_profile(
            client_id,
            name=request_body.name,
            nickname=request_body.nickname,
            is_private=request_body.is_private,
            client_pin=request_body.client_pin,
        )
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return ClientResponse.from_domain(client)
