"""Translate ledger errors into HTTP responses"""

import logging
from fastapi import HTTPException

from lending_ledger.domain.exceptions import (
    AuthFailed,
    CredentialsLocked,
    InvalidFlowTransition,
    LedgerError,
    PreconditionFailed,
    RecordNotFound,
    StoreUnavailable,
    ValidationError,
)


def to_http_exception(error: LedgerError, request_id: str) -> HTTPException:
    """Map the ledger error taxonomy to status codes, logging as we go"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))

    if isinstance(error, RecordNotFound):
        return HTTPException(status_code=404, detail=str(error))

    if isinstance(error, (PreconditionFailed, InvalidFlowTransition)):
        logging.warning(f"Precondition failed: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=409, detail=str(error))

    if isinstance(error, CredentialsLocked):
        logging.warning(f"Credentials locked: {error}", extra={"request_id": request_id})
        return HTTPException(
            status_code=429,
            detail=str(error),
            headers={"Retry-After": str(int(error.retry_after_seconds) + 1)},
        )

    if isinstance(error, AuthFailed):
        return HTTPException(status_code=401, detail=str(error))

    if isinstance(error, StoreUnavailable):
        logging.error(f"Store unavailable: {error}", extra={"request_id": request_id})
        return HTTPException(status_code=503, detail="Ledger store unavailable")

    logging.error(f"Unexpected ledger error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


def internal_error(error: Exception, request_id: str) -> HTTPException:
    logging.error(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
