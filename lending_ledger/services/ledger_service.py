"""Ledger state machine - every balance or status change goes through here"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Generic, List, Optional, Set, Tuple, TypeVar

from lending_ledger.config import settings
from lending_ledger.domain import ledger
from lending_ledger.domain.exceptions import (
    AuthFailed,
    LedgerError,
    PreconditionFailed,
    StoreUnavailable,
    ValidationError,
)
from lending_ledger.domain.models import (
    RECON_REMARKS,
    RELEASE_REMARKS,
    Client,
    ClientLedger,
    DailyPayment,
    Disbursement,
    DisbursementQuery,
    LoanStatus,
    LoanTerms,
    PaymentQuery,
    RegisterEntry,
    StaffSession,
    TermsUpdate,
)
from lending_ledger.domain.pin_flow import PinConfirmationFlow
from lending_ledger.infrastructure.database.models import (
    ClientRecord,
    DailyPaymentRecord,
    DisbursementRecord,
)
from lending_ledger.infrastructure.database.repositories import (
    client_to_domain,
    disbursement_to_domain,
    payment_to_domain,
)
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner, UnitOfWork
from lending_ledger.infrastructure.observability.logging import log_ledger_operation
from lending_ledger.infrastructure.observability.metrics import (
    ledger_operation_duration_histogram,
    record_operation,
)
from lending_ledger.services.credentials import USER_SUBJECT, CredentialGate
from lending_ledger.services.sweeper import OverdueSweeper, publish_status_change, reconcile

logger = logging.getLogger(__name__)

T = TypeVar("T")


def outcome_for(error: LedgerError) -> str:
    """Metric label for a failed operation"""
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, PreconditionFailed):
        return "precondition"
    if isinstance(error, AuthFailed):
        return "auth"
    if isinstance(error, StoreUnavailable):
        return "store"
    return "error"


class LedgerService:
    """
    Client, disbursement and payment operations.

    Mutating operations follow the same sequence: validate the request and
    its business-rule preconditions against current state, verify the acting
    staff member's PIN, then run one atomic transaction that re-reads the
    client, re-checks the same preconditions, applies the balance change and
    reconciles the status.
    """

    def __init__(
        self,
        transactions: TransactionRunner,
        gate: CredentialGate,
        sweeper: OverdueSweeper,
        clock: Callable[[], datetime] = datetime.now,
        max_months: int | None = None,
    ):
        self.transactions = transactions
        self.gate = gate
        self.sweeper = sweeper
        self.clock = clock
        self.max_months = max_months or settings.max_months_to_pay

    # ------------------------------------------------------------------
    # Clients

    def create_client(
        self,
        name: str,
        nickname: str = "",
        is_private: bool = False,
        client_pin: Optional[str] = None,
    ) -> Client:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Client name is required")
        if is_private and not (client_pin or "").strip():
            raise ValidationError("Private clients need a PIN")

        def apply(uow: UnitOfWork) -> Client:
            record = uow.clients.add(
                ClientRecord(
                    name=name,
                    nickname=(nickname or "").strip(),
                    balance_cents=0,
                    status=LoanStatus.NO_DATA.value,
                    is_private=is_private,
                    client_pin=client_pin.strip() if is_private else None,
                )
            )
            return client_to_domain(record)

        client = self.transactions.run(apply)
        logger.info("Client created", extra={"client_id": client.id})
        return client

    def update_profile(
        self,
        client_id: str,
        name: Optional[str] = None,
        nickname: Optional[str] = None,
        is_private: Optional[bool] = None,
        client_pin: Optional[str] = None,
    ) -> Client:
        """Change display fields and privacy; never touches balance or status"""
        if name is not None and not name.strip():
            raise ValidationError("Client name is required")

        def apply(uow: UnitOfWork) -> Client:
            record = uow.clients.get(client_id)
            if name is not None:
                record.name = name.strip()
            if nickname is not None:
                record.nickname = nickname.strip()
            if is_private is not None:
                record.is_private = is_private
            if client_pin is not None:
                record.client_pin = client_pin.strip()
            if record.is_private and not (record.client_pin or "").strip():
                raise ValidationError("Private clients need a PIN")
            return client_to_domain(record)

        return self.transactions.run(apply)

    def get_client(self, client_id: str) -> ClientLedger:
        """Client with its current disbursement, after applying the overdue rule"""
        self.sweeper.refresh(client_id)

        def load(uow: UnitOfWork) -> ClientLedger:
            record = uow.clients.get(client_id)
            current = uow.disbursements.get_current(record)
            return ClientLedger(
                client=client_to_domain(record),
                current_disbursement=disbursement_to_domain(current) if current is not None else None,
            )

        return self.transactions.read(load)

    def list_clients(self, status: Optional[LoanStatus] = None, search: Optional[str] = None) -> List[Client]:
        ids = self.transactions.read(
            lambda uow: [c.id for c in uow.clients.list_with_current_disbursement()]
        )
        for client_id in ids:
            self.sweeper.refresh(client_id)

        return self.transactions.read(
            lambda uow: [client_to_domain(c) for c in uow.clients.list(status=status, search=search)]
        )

    def list_disbursements(self, client_id: str) -> List[Disbursement]:
        def load(uow: UnitOfWork) -> List[Disbursement]:
            uow.clients.get(client_id)
            return [disbursement_to_domain(d) for d in uow.disbursements.list_by_client(client_id)]

        return self.transactions.read(load)

    def disbursement_register(self, criteria: DisbursementQuery) -> List[RegisterEntry]:
        """Disbursements across all clients, newest first, filtered by issue date"""
        if criteria.month is not None and not 1 <= criteria.month <= 12:
            raise ValidationError("Month must be between 1 and 12")

        return self.transactions.read(
            lambda uow: [
                RegisterEntry(disbursement=disbursement_to_domain(record), client_name=name)
                for record, name in uow.disbursements.search(criteria)
            ]
        )

    def list_payments(self, criteria: PaymentQuery) -> List[DailyPayment]:
        return self.transactions.read(
            lambda uow: [payment_to_domain(p) for p in uow.payments.search(criteria)]
        )

    def get_payment(self, payment_id: str) -> DailyPayment:
        return self.transactions.read(lambda uow: payment_to_domain(uow.payments.get(payment_id)))

    # ------------------------------------------------------------------
    # Loans

    def disburse(self, session: StaffSession, client_id: str, terms: LoanTerms, pin: str) -> Disbursement:
        """Release a new loan; the client's balance must be zero"""
        checked: List[LoanTerms] = []

        def check(uow: UnitOfWork) -> ClientRecord:
            client = uow.clients.get(client_id)
            ledger.ensure_can_disburse(client.balance_cents)
            return client

        def validate() -> None:
            checked.append(ledger.validate_terms(terms, self.max_months))
            self.transactions.read(check)

        def apply(uow: UnitOfWork) -> _Change:
            final = checked[0]
            client = check(uow)
            before = LoanStatus.parse(client.status)

            record = uow.disbursements.add(
                DisbursementRecord(
                    client_id=client.id,
                    amount_cents=final.amount_cents,
                    interest_cents=final.interest_cents,
                    months_to_pay=final.months_to_pay,
                    issued_at=final.issued_at,
                    deadline=final.deadline,
                    remarks=RELEASE_REMARKS,
                    status=LoanStatus.ONGOING.value,
                )
            )
            client.balance_cents = final.amount_cents
            client.status = LoanStatus.ONGOING.value
            client.current_disbursement_id = record.id
            return self._settle(uow, client, before, lambda: disbursement_to_domain(record))

        return self._confirmed("disburse", session, client_id, pin, validate, apply)

    def reconstruct(self, session: StaffSession, client_id: str, terms: LoanTerms, pin: str) -> Disbursement:
        """Carry the outstanding balance into a new disbursement under new terms"""
        checked: List[LoanTerms] = []

        def check(uow: UnitOfWork) -> ClientRecord:
            client = uow.clients.get(client_id)
            ledger.ensure_can_reconstruct(client.balance_cents)
            return client

        def validate() -> None:
            checked.append(ledger.validate_terms(terms, self.max_months, require_amount=False))
            self.transactions.read(check)

        def apply(uow: UnitOfWork) -> _Change:
            final = checked[0]
            client = check(uow)
            before = LoanStatus.parse(client.status)

            record = uow.disbursements.add(
                DisbursementRecord(
                    client_id=client.id,
                    amount_cents=client.balance_cents,
                    interest_cents=final.interest_cents,
                    months_to_pay=final.months_to_pay,
                    issued_at=final.issued_at,
                    deadline=final.deadline,
                    remarks=RECON_REMARKS,
                    status=LoanStatus.RECON.value,
                    previous_disbursement_id=client.current_disbursement_id,
                )
            )
            client.status = LoanStatus.RECON.value
            client.current_disbursement_id = record.id
            return self._settle(uow, client, before, lambda: disbursement_to_domain(record))

        return self._confirmed("reconstruct", session, client_id, pin, validate, apply)

    def update_terms(
        self,
        session: StaffSession,
        disbursement_id: str,
        update: TermsUpdate,
        pin: str,
    ) -> Disbursement:
        """Correct the terms of an existing disbursement"""
        amount_changes = update.amount_cents is not None

        def check(uow: UnitOfWork) -> Tuple[DisbursementRecord, ClientRecord]:
            record = uow.disbursements.get(disbursement_id)
            client = uow.clients.get(record.client_id)
            if amount_changes and update.amount_cents != record.amount_cents:
                if client.current_disbursement_id != record.id:
                    raise PreconditionFailed("Only the current disbursement's amount can be changed")
                ledger.adjust_principal(client.balance_cents, record.amount_cents, update.amount_cents)
            return record, client

        def validate() -> None:
            if amount_changes and update.amount_cents <= 0:
                raise ValidationError("Amount must be greater than zero")
            if update.interest_cents is not None and update.interest_cents < 0:
                raise ValidationError("Interest must not be negative")
            if update.months_to_pay is not None and not 1 <= update.months_to_pay <= self.max_months:
                raise ValidationError(f"Months to pay must be between 1 and {self.max_months}")
            if update.remarks is not None and not update.remarks.strip():
                raise ValidationError("Remarks must not be empty")
            self.transactions.read(check)

        def apply(uow: UnitOfWork) -> _Change:
            record, client = check(uow)
            before = LoanStatus.parse(client.status)

            if amount_changes and update.amount_cents != record.amount_cents:
                client.balance_cents = ledger.adjust_principal(
                    client.balance_cents, record.amount_cents, update.amount_cents
                )
                record.amount_cents = update.amount_cents

            if update.interest_cents is not None:
                record.interest_cents = update.interest_cents
            if update.remarks is not None:
                record.remarks = update.remarks.strip()

            schedule_changed = update.months_to_pay is not None or update.issued_at is not None
            if update.months_to_pay is not None:
                record.months_to_pay = update.months_to_pay
            if update.issued_at is not None:
                record.issued_at = update.issued_at
            if update.deadline is not None or schedule_changed:
                terms = ledger.validate_terms(
                    LoanTerms(
                        interest_cents=record.interest_cents,
                        months_to_pay=record.months_to_pay,
                        issued_at=record.issued_at,
                        deadline=update.deadline,
                    ),
                    self.max_months,
                    require_amount=False,
                )
                record.deadline = terms.deadline

            return self._settle(uow, client, before, lambda: disbursement_to_domain(record))

        return self._confirmed("update_terms", session, disbursement_id, pin, validate, apply)

    # ------------------------------------------------------------------
    # Payments

    def pay(
        self,
        session: StaffSession,
        client_id: str,
        amount_cents: int,
        paid_at: datetime,
        pin: str,
        disbursement_id: Optional[str] = None,
        penalty_cents: Optional[int] = None,
    ) -> DailyPayment:
        """Record a payment against the client's current disbursement"""

        def check(uow: UnitOfWork) -> Tuple[ClientRecord, DisbursementRecord, int]:
            client = uow.clients.get(client_id)
            current = uow.disbursements.get_current(client)
            if current is None:
                raise PreconditionFailed("Client has no active disbursement")
            if disbursement_id is not None and disbursement_id != current.id:
                raise PreconditionFailed("Payments can only be recorded against the current disbursement")

            ledger.ensure_payment_window(paid_at, current.issued_at, current.deadline)
            return client, current, ledger.apply_payment(client.balance_cents, amount_cents)

        def validate() -> None:
            ledger.validate_payment_amount(amount_cents)
            if paid_at is None:
                raise ValidationError("Payment date is required")
            if penalty_cents is not None and penalty_cents < 0:
                raise ValidationError("Penalty must not be negative")
            self.transactions.read(check)

        def apply(uow: UnitOfWork) -> _Change:
            client, current, new_balance = check(uow)
            before = LoanStatus.parse(client.status)

            record = uow.payments.add(
                DailyPaymentRecord(
                    client_id=client.id,
                    disbursement_id=current.id,
                    amount_cents=amount_cents,
                    paid_at=paid_at,
                    recorded_by=session.user_id,
                )
            )
            client.balance_cents = new_balance
            if penalty_cents is not None:
                # Recorded for reference only, never added to the balance
                current.penalty_cents = penalty_cents
            return self._settle(uow, client, before, lambda: payment_to_domain(record))

        return self._confirmed("pay", session, client_id, pin, validate, apply)

    def edit_payment(self, session: StaffSession, payment_id: str, new_amount_cents: int, pin: str) -> DailyPayment:
        """Change a payment amount, reversing the old amount and applying the new one"""

        def check(uow: UnitOfWork) -> Tuple[DailyPaymentRecord, ClientRecord, int]:
            record = uow.payments.get(payment_id)
            client = uow.clients.get(record.client_id)
            self._ensure_in_current_loan(uow, client, record)
            new_balance = ledger.reprice_payment(client.balance_cents, record.amount_cents, new_amount_cents)
            return record, client, new_balance

        def validate() -> None:
            ledger.validate_edited_amount(new_amount_cents)
            self.transactions.read(check)

        def apply(uow: UnitOfWork) -> _Change:
            record, client, new_balance = check(uow)
            before = LoanStatus.parse(client.status)

            client.balance_cents = new_balance
            if record.amount_cents != new_amount_cents:
                record.amount_cents = new_amount_cents
            return self._settle(uow, client, before, lambda: payment_to_domain(record))

        return self._confirmed("edit_payment", session, payment_id, pin, validate, apply)

    def delete_payment(self, session: StaffSession, payment_id: str, pin: str) -> Client:
        """Remove a payment and give its amount back to the balance"""

        def check(uow: UnitOfWork) -> Tuple[DailyPaymentRecord, ClientRecord]:
            record = uow.payments.get(payment_id)
            client = uow.clients.get(record.client_id)
            self._ensure_in_current_loan(uow, client, record)
            return record, client

        def apply(uow: UnitOfWork) -> _Change:
            record, client = check(uow)
            before = LoanStatus.parse(client.status)

            client.balance_cents = ledger.reverse_payment(client.balance_cents, record.amount_cents)
            uow.payments.delete(record)
            return self._settle(uow, client, before, lambda: client_to_domain(client))

        return self._confirmed(
            "delete_payment", session, payment_id, pin, lambda: self.transactions.read(check), apply
        )

    def _ensure_in_current_loan(self, uow: UnitOfWork, client: ClientRecord, payment: DailyPaymentRecord) -> None:
        """
        Only payments that still count toward the outstanding balance can change.

        That is the current disbursement plus, when it is a reconstruction, the
        chain of disbursements whose balance it carried forward, followed through
        the predecessor pointer back to the release that started it.
        """
        live: Set[str] = set()
        disbursement = uow.disbursements.get_current(client)
        while disbursement is not None:
            live.add(disbursement.id)
            if disbursement.previous_disbursement_id is None:
                break
            disbursement = uow.disbursements.get(disbursement.previous_disbursement_id)

        if payment.disbursement_id not in live:
            raise PreconditionFailed("Payment belongs to a closed loan and can no longer be changed")

    # ------------------------------------------------------------------

    def _settle(
        self,
        uow: UnitOfWork,
        client: ClientRecord,
        before: LoanStatus,
        build: Callable[[], T],
    ) -> "_Change[T]":
        """Reconcile the status inside the transaction and snapshot the outcome"""
        after = reconcile(uow, client, self.clock())
        return _Change(
            result=build(),
            client_id=client.id,
            before=before,
            after=after,
            balance_cents=client.balance_cents,
        )

    def _confirmed(
        self,
        operation: str,
        session: StaffSession,
        subject_id: str,
        pin: str,
        validate: Callable[[], None],
        apply: Callable[[UnitOfWork], "_Change[T]"],
    ) -> T:
        """Validate, check the staff PIN, then commit ``apply`` atomically"""
        flow = PinConfirmationFlow(operation)
        start_time = time.time()

        def verify() -> bool:
            if not self.gate.verify(USER_SUBJECT, session.user_id, pin):
                raise AuthFailed("Incorrect PIN")
            return True

        try:
            flow.submit(validate)
            flow.request_pin()
            flow.confirm(verify)
            change = flow.commit(lambda: self.transactions.run(apply))
        except LedgerError as e:
            record_operation(operation, outcome_for(e))
            log_ledger_operation(operation, subject_id, session.user_id, outcome_for(e))
            raise

        duration = time.time() - start_time
        ledger_operation_duration_histogram.labels(operation=operation).observe(duration)
        record_operation(operation, "ok")
        publish_status_change(change.client_id, change.before, change.after, operation)
        log_ledger_operation(
            operation, change.client_id, session.user_id, "ok", change.balance_cents, duration * 1000
        )
        return change.result


@dataclass
class _Change(Generic[T]):
    """Committed result of a mutating operation plus the status it moved"""

    result: T
    client_id: str
    before: LoanStatus
    after: LoanStatus
    balance_cents: int
