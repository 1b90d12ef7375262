"""Domain-specific exceptions"""


class LedgerError(Exception):
    """Base exception for the ledger domain"""

    pass


class ValidationError(LedgerError):
    """Request is malformed: amount out of range, missing field, invalid date"""

    pass


class PreconditionFailed(LedgerError):
    """Business rule violated when re-checked inside the transaction"""

    pass


class RecordNotFound(PreconditionFailed):
    """Client, disbursement, payment or user does not exist"""

    pass


class AuthFailed(LedgerError):
    """Submitted PIN does not match the stored secret"""

    pass


class CredentialsLocked(AuthFailed):
    """Too many failed PIN attempts for this subject"""

    def __init__(self, message: str, retry_after_seconds: float):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class InvalidFlowTransition(LedgerError):
    """Confirmation flow was driven out of order"""

    pass


class StoreUnavailable(LedgerError):
    """Database or transaction infrastructure failed; safe to retry"""

    pass
