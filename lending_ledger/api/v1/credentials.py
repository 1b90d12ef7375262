"""PIN verification endpoints"""

from fastapi import APIRouter, Depends

from lending_ledger.api.dependencies import get_credential_gate, get_request_id
from lending_ledger.api.errors import internal_error, to_http_exception
from lending_ledger.api.v1.schemas import PinVerifyRequest, PinVerifyResponse
from lending_ledger.domain.exceptions import LedgerError
from lending_ledger.services.credentials import CredentialGate

router = APIRouter()


@router.post("/users/{user_id}/verify-pin", response_model=PinVerifyResponse)
def verify_user_pin(
    user_id: str,
    request_body: PinVerifyRequest,
    gate: CredentialGate = Depends(get_credential_gate),
    request_id: str = Depends(get_request_id),
):
    """Confirm a staff member's PIN before showing a confirmation step"""
    try:
        gate.require_user_pin(user_id, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PinVerifyResponse(verified=True)


@router.post("/clients/{client_id}/verify-pin", response_model=PinVerifyResponse)
def verify_client_pin(
    client_id: str,
    request_body: PinVerifyRequest,
    gate: CredentialGate = Depends(get_credential_gate),
    request_id: str = Depends(get_request_id),
):
    """Unlock a private client's detail view"""
    try:
        gate.require_client_pin(client_id, request_body.pin)
    except LedgerError as e:
        raise to_http_exception(e, request_id)
    except Exception as e:
        raise internal_error(e, request_id)
    return PinVerifyResponse(verified=True)
