"""Credential gate - PIN checks before ledger changes and private client access"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import AuthFailed, CredentialsLocked
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner, UnitOfWork
from lending_ledger.infrastructure.observability.logging import log_pin_failure
from lending_ledger.infrastructure.observability.metrics import pin_verification_counter

USER_SUBJECT = "user"
CLIENT_SUBJECT = "client"


def pin_matches(stored: Optional[str], candidate: Optional[str]) -> bool:
    """Exact, case-sensitive comparison after trimming surrounding whitespace"""
    if stored is None or candidate is None:
        return False
    stored = str(stored).strip()
    return bool(stored) and stored == candidate.strip()


@dataclass
class _AttemptState:
    failures: int = 0
    locked_until: float = 0.0


class CredentialGate:
    """
    Verify staff and client PINs.

    Consecutive failures are counted per subject; after ``max_attempts``
    failures the subject is locked for ``lockout_seconds`` and further
    attempts are refused without comparing. A success resets the count.
    """

    def __init__(
        self,
        transactions: TransactionRunner,
        max_attempts: int | None = None,
        lockout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transactions = transactions
        self.max_attempts = max_attempts or settings.pin_max_attempts
        self.lockout_seconds = settings.pin_lockout_seconds if lockout_seconds is None else lockout_seconds
        self.clock = clock
        self._attempts: Dict[Tuple[str, str], _AttemptState] = {}
        self._lock = threading.Lock()

    def verify(self, subject: str, subject_id: str, candidate: str) -> bool:
        """Return True when the PIN matches; raises CredentialsLocked while locked out"""
        key = (subject, subject_id)
        self._check_lockout(key)

        stored = self.transactions.read(lambda uow: self._stored_secret(uow, subject, subject_id))
        if stored is None:
            # Public client: nothing to check
            return True

        if not (candidate or "").strip():
            # Missing PIN is rejected without counting a failure
            pin_verification_counter.labels(subject=subject, outcome="missing").inc()
            return False

        if pin_matches(stored, candidate):
            with self._lock:
                self._attempts.pop(key, None)
            pin_verification_counter.labels(subject=subject, outcome="accepted").inc()
            return True

        self._record_failure(key)
        pin_verification_counter.labels(subject=subject, outcome="rejected").inc()
        return False

    def require_user_pin(self, user_id: str, candidate: str) -> None:
        if not self.verify(USER_SUBJECT, user_id, candidate):
            raise AuthFailed("Incorrect PIN")

    def require_client_pin(self, client_id: str, candidate: Optional[str]) -> None:
        if not self.verify(CLIENT_SUBJECT, client_id, candidate or ""):
            raise AuthFailed("Incorrect client PIN")

    def _stored_secret(self, uow: UnitOfWork, subject: str, subject_id: str) -> Optional[str]:
        if subject == USER_SUBJECT:
            return uow.users.get(subject_id).pin
        client = uow.clients.get(subject_id)
        if not client.is_private:
            return None
        return client.client_pin or ""

    def _check_lockout(self, key: Tuple[str, str]) -> None:
        with self._lock:
            state = self._attempts.get(key)
            if state is None or state.locked_until == 0.0:
                return
            remaining = state.locked_until - self.clock()
            if remaining <= 0:
                # Lock expired, start counting afresh
                self._attempts.pop(key, None)
                return

        pin_verification_counter.labels(subject=key[0], outcome="locked").inc()
        raise CredentialsLocked(
            f"Too many failed attempts, try again in {int(remaining) + 1}s",
            retry_after_seconds=remaining,
        )

    def _record_failure(self, key: Tuple[str, str]) -> None:
        with self._lock:
            state = self._attempts.setdefault(key, _AttemptState())
            state.failures += 1
            locked = state.failures >= self.max_attempts
            if locked:
                state.locked_until = self.clock() + self.lockout_seconds
            failures = state.failures
        log_pin_failure(key[0], key[1], failures, locked)
