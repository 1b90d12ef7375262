"""Dependency injection for FastAPI endpoints"""

from fastapi import Header, HTTPException, Request
from lending_ledger.domain.models import StaffSession
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService
from lending_ledger.services.sweeper import OverdueSweeper


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_staff_session(
    x_staff_user: str | None = Header(None, description="Acting staff user ID"),
    x_staff_name: str | None = Header(None),
) -> StaffSession:
    """Identify the staff member performing a change"""
    if not x_staff_user:
        raise HTTPException(status_code=401, detail="X-Staff-User header is required")
    return StaffSession(user_id=x_staff_user, user_name=x_staff_name or "")


def get_ledger_service(request: Request) -> LedgerService:
    """Provide the ledger service built by the application factory"""
    return request.app.state.ledger_service


def get_credential_gate(request: Request) -> CredentialGate:
    return request.app.state.credential_gate


def get_sweeper(request: Request) -> OverdueSweeper:
    return request.app.state.sweeper
