"""Overdue sweeper - keeps stored statuses in line with balances and deadlines"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from lending_ledger.config import settings
from lending_ledger.domain.models import LoanStatus
from lending_ledger.domain.status import resolve_client_status
from lending_ledger.infrastructure.database.models import ClientRecord
from lending_ledger.infrastructure.database.repositories import disbursement_to_domain
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner, UnitOfWork
from lending_ledger.infrastructure.observability.logging import log_status_transition
from lending_ledger.infrastructure.observability.metrics import record_status_transition

logger = logging.getLogger(__name__)

StatusChange = Tuple[str, LoanStatus, LoanStatus]


def reconcile(uow: UnitOfWork, client: ClientRecord, now: datetime) -> LoanStatus:
    """
    Write the resolved status to the client and its current disbursement.

    Idempotent: rows are only touched when the stored status differs, so
    calling it on an up-to-date client is free. Must run inside the same
    transaction that changed the balance or the current disbursement.
    """
    current = uow.disbursements.get_current(client)
    stored = LoanStatus.parse(client.status)
    resolved = resolve_client_status(
        client.balance_cents,
        stored,
        disbursement_to_domain(current) if current is not None else None,
        now,
    )

    if client.status != resolved.value:
        client.status = resolved.value
    if current is not None and current.status != resolved.value:
        current.status = resolved.value
    return resolved


def publish_status_change(client_id: str, before: LoanStatus, after: LoanStatus, trigger: str) -> None:
    """Emit logs and metrics for a committed status change"""
    if before == after:
        return
    record_status_transition(before.value, after.value)
    log_status_transition(client_id, before.value, after.value, trigger)


class OverdueSweeper:
    """
    Apply the overdue rule when clients are read and on scheduled sweeps.

    Reads that trigger a write are suppressed for the same client during
    ``cooldown_seconds`` so the re-read caused by that write does not write
    again.
    """

    def __init__(
        self,
        transactions: TransactionRunner,
        clock: Callable[[], datetime] = datetime.now,
        cooldown_seconds: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.transactions = transactions
        self.clock = clock
        self.cooldown_seconds = (
            settings.status_sweep_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.monotonic = monotonic
        self._last_write: Dict[str, float] = {}
        self._lock = threading.Lock()

    def refresh(self, client_id: str) -> Optional[LoanStatus]:
        """
        Reconcile one client on read.

        Returns the new status when a write happened, None when the status was
        already current or the client is cooling down after a recent write.
        """
        with self._lock:
            now = self.monotonic()
            for stale in [k for k, t in self._last_write.items() if now - t >= self.cooldown_seconds]:
                del self._last_write[stale]
            if client_id in self._last_write:
                return None

        change = self._reconcile_one(client_id, trigger="read")
        if change is None:
            return None

        with self._lock:
            self._last_write[client_id] = self.monotonic()
        return change[2]

    def sweep_all(self) -> List[StatusChange]:
        """Reconcile every client that has a current disbursement"""
        client_ids = self.transactions.read(
            lambda uow: [c.id for c in uow.clients.list_with_current_disbursement()]
        )

        changes = []
        for client_id in client_ids:
            change = self._reconcile_one(client_id, trigger="sweep")
            if change is not None:
                changes.append(change)

        logger.info("Overdue sweep finished", extra={"clients": len(client_ids), "changed": len(changes)})
        return changes

    def _reconcile_one(self, client_id: str, trigger: str) -> Optional[StatusChange]:
        now = self.clock()

        def apply(uow: UnitOfWork) -> Tuple[LoanStatus, LoanStatus]:
            client = uow.clients.get(client_id)
            before = LoanStatus.parse(client.status)
            return before, reconcile(uow, client, now)

        before, after = self.transactions.run(apply)
        if before == after:
            return None
        publish_status_change(client_id, before, after, trigger)
        return client_id, before, after
