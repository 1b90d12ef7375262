"""Unit tests for the ledger state machine against a real database"""

import pytest
from datetime import datetime
from lending_ledger.domain.exceptions import AuthFailed, PreconditionFailed, RecordNotFound, ValidationError
from lending_ledger.domain.models import LoanStatus, LoanTerms, PaymentQuery, TermsUpdate
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner
from lending_ledger.services.ledger_service import LedgerService


PIN = "1234"
PAY_DAY = datetime(2025, 3, 10, 8, 30)


def _balance(service: LedgerService, client_id: str) -> int:
    return service.get_client(client_id).client.balance_cents


def _status(service: LedgerService, client_id: str) -> LoanStatus:
    return service.get_client(client_id).client.status


def _payments_total(service: LedgerService, disbursement_id: str) -> int:
    payments = service.list_payments(PaymentQuery(disbursement_id=disbursement_id))
    return sum(p.amount_cents for p in payments)


def test_new_client_has_no_data(borrower):
    assert borrower.balance_cents == 0
    assert borrower.status == LoanStatus.NO_DATA
    assert borrower.current_disbursement_id is None


def test_private_client_requires_pin(service):
    with pytest.raises(ValidationError):
        service.create_client("Jose Reyes", is_private=True)


def test_disburse_sets_balance_and_status(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    assert disbursement.amount_cents == 1_000_000
    assert disbursement.remarks == "Release"
    assert disbursement.status == LoanStatus.ONGOING
    assert disbursement.deadline == datetime(2025, 5, 1, 23, 59, 59)

    detail = service.get_client(borrower.id)
    assert detail.client.balance_cents == 1_000_000
    assert detail.client.status == LoanStatus.ONGOING
    assert detail.client.current_disbursement_id == disbursement.id
    assert detail.current_disbursement.id == disbursement.id


def test_disburse_rejects_outstanding_balance(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)

    with pytest.raises(PreconditionFailed, match="Balance must be zero"):
        service.disburse(staff, borrower.id, release_terms, PIN)

    assert len(service.list_disbursements(borrower.id)) == 1
    assert _balance(service, borrower.id) == 1_000_000


def test_disburse_with_wrong_pin_writes_nothing(service, staff, borrower, release_terms):
    with pytest.raises(AuthFailed):
        service.disburse(staff, borrower.id, release_terms, "9999")

    assert service.list_disbursements(borrower.id) == []
    assert _status(service, borrower.id) == LoanStatus.NO_DATA


def test_invalid_terms_fail_before_pin_check(service, staff, borrower, release_terms, gate):
    too_long = LoanTerms(amount_cents=1_000, interest_cents=0, months_to_pay=9, issued_at=release_terms.issued_at)
    # Validation fails first so the wrong PIN is never checked
    with pytest.raises(ValidationError):
        service.disburse(staff, borrower.id, too_long, "9999")
    assert gate._attempts == {}


def test_disburse_unknown_client(service, staff, release_terms):
    with pytest.raises(RecordNotFound):
        service.disburse(staff, "missing", release_terms, PIN)


def test_concurrent_disburse_only_one_succeeds(session_factory, gate, sweeper, clock, staff, borrower, release_terms):
    """The loser re-reads a non-zero balance on retry and fails"""
    winner = LedgerService(TransactionRunner(session_factory, backoff_base=0), gate, sweeper, clock=clock)

    class InterleavingRunner(TransactionRunner):
        """Lets the competing disbursement commit right after our first read"""

        attempts = 0

        def run(self, fn):
            def interleaved(uow):
                self.attempts += 1
                uow.clients.get(borrower.id)
                if self.attempts == 1:
                    winner.disburse(staff, borrower.id, release_terms, PIN)
                return fn(uow)

            return super().run(interleaved)

    runner = InterleavingRunner(session_factory, backoff_base=0)
    loser = LedgerService(runner, gate, sweeper, clock=clock)
    loser_terms = LoanTerms(
        amount_cents=300_000,
        interest_cents=30_000,
        months_to_pay=1,
        issued_at=release_terms.issued_at,
    )

    with pytest.raises(PreconditionFailed):
        loser.disburse(staff, borrower.id, loser_terms, PIN)

    assert runner.attempts == 2
    disbursements = winner.list_disbursements(borrower.id)
    assert len(disbursements) == 1
    assert disbursements[0].amount_cents == 1_000_000
    assert _balance(winner, borrower.id) == 1_000_000


def test_pay_reduces_balance_and_records_staff(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    payment = service.pay(staff, borrower.id, 25_000, PAY_DAY, PIN)

    assert payment.disbursement_id == disbursement.id
    assert payment.recorded_by == staff.user_id
    assert _balance(service, borrower.id) == 975_000
    assert _status(service, borrower.id) == LoanStatus.ONGOING


def test_pay_in_full_marks_paid(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)

    detail = service.get_client(borrower.id)
    assert detail.client.balance_cents == 0
    assert detail.client.status == LoanStatus.PAID
    assert detail.current_disbursement.id == disbursement.id
    assert detail.current_disbursement.status == LoanStatus.PAID


def test_pay_more_than_balance_is_rejected(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)

    with pytest.raises(PreconditionFailed, match="exceeds balance"):
        service.pay(staff, borrower.id, 1_000_001, PAY_DAY, PIN)
    assert _balance(service, borrower.id) == 1_000_000


def test_pay_without_disbursement_is_rejected(service, staff, borrower):
    with pytest.raises(PreconditionFailed, match="no active disbursement"):
        service.pay(staff, borrower.id, 100, PAY_DAY, PIN)


def test_pay_outside_loan_window_is_rejected(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)

    with pytest.raises(PreconditionFailed):
        service.pay(staff, borrower.id, 100, datetime(2025, 2, 27, 12, 0), PIN)
    with pytest.raises(PreconditionFailed):
        service.pay(staff, borrower.id, 100, datetime(2025, 5, 2, 0, 0), PIN)


def test_pay_against_old_disbursement_is_rejected(service, staff, borrower, release_terms):
    first = service.disburse(staff, borrower.id, release_terms, PIN)
    service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    service.disburse(staff, borrower.id, release_terms, PIN)

    with pytest.raises(PreconditionFailed, match="current disbursement"):
        service.pay(staff, borrower.id, 100, PAY_DAY, PIN, disbursement_id=first.id)


def test_penalty_is_recorded_without_touching_balance(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)

    service.pay(staff, borrower.id, 10_000, PAY_DAY, PIN, penalty_cents=5_000)

    detail = service.get_client(borrower.id)
    assert detail.client.balance_cents == 990_000
    assert detail.current_disbursement.penalty_cents == 5_000


def test_balance_matches_principal_minus_payments(service, staff, borrower, release_terms):
    """Balance == amount - sum(current payments) after every step"""
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    def assert_consistent():
        expected = disbursement.amount_cents - _payments_total(service, disbursement.id)
        assert _balance(service, borrower.id) == expected

    first = service.pay(staff, borrower.id, 100_000, PAY_DAY, PIN)
    assert_consistent()
    second = service.pay(staff, borrower.id, 250_000, PAY_DAY, PIN)
    assert_consistent()
    service.edit_payment(staff, first.id, 150_000, PIN)
    assert_consistent()
    service.delete_payment(staff, second.id, PIN)
    assert_consistent()
    service.pay(staff, borrower.id, 850_000, PAY_DAY, PIN)
    assert_consistent()
    assert _status(service, borrower.id) == LoanStatus.PAID
    service.edit_payment(staff, first.id, 0, PIN)
    assert_consistent()
    assert _status(service, borrower.id) == LoanStatus.ONGOING


def test_noop_edit_changes_nothing(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 10_000, PAY_DAY, PIN)
    before = service.get_client(borrower.id).client

    edited = service.edit_payment(staff, payment.id, 10_000, PIN)

    after = service.get_client(borrower.id).client
    assert edited.amount_cents == 10_000
    assert after.balance_cents == before.balance_cents
    assert after.status == before.status


def test_edit_cannot_push_balance_negative(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 10_000, PAY_DAY, PIN)

    with pytest.raises(PreconditionFailed):
        service.edit_payment(staff, payment.id, 1_000_001, PIN)
    assert service.get_payment(payment.id).amount_cents == 10_000

    service.edit_payment(staff, payment.id, 1_000_000, PIN)
    assert _status(service, borrower.id) == LoanStatus.PAID


def test_negative_edit_is_a_validation_error(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 10_000, PAY_DAY, PIN)

    with pytest.raises(ValidationError):
        service.edit_payment(staff, payment.id, -1, PIN)


def test_delete_then_recreate_restores_balance(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 40_000, PAY_DAY, PIN)
    balance_before_delete = _balance(service, borrower.id)

    service.delete_payment(staff, payment.id, PIN)
    assert _balance(service, borrower.id) == balance_before_delete + 40_000

    service.pay(staff, borrower.id, 40_000, PAY_DAY, PIN)
    assert _balance(service, borrower.id) == balance_before_delete


def test_delete_moves_paid_client_back_to_ongoing(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    assert _status(service, borrower.id) == LoanStatus.PAID

    client = service.delete_payment(staff, payment.id, PIN)

    assert client.status == LoanStatus.ONGOING
    assert client.balance_cents == 1_000_000
    with pytest.raises(RecordNotFound):
        service.get_payment(payment.id)


def test_delete_unknown_payment(service, staff):
    with pytest.raises(RecordNotFound):
        service.delete_payment(staff, "missing", PIN)


def test_reconstruct_requires_balance(service, staff, borrower, release_terms):
    with pytest.raises(PreconditionFailed):
        service.reconstruct(staff, borrower.id, release_terms, PIN)


def test_reconstruct_carries_balance_forward(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, LoanTerms(
        amount_cents=200_000,
        interest_cents=20_000,
        months_to_pay=1,
        issued_at=release_terms.issued_at,
    ), PIN)
    service.pay(staff, borrower.id, 80_000, PAY_DAY, PIN)

    recon_terms = LoanTerms(interest_cents=12_000, months_to_pay=3, issued_at=datetime(2025, 3, 10, 9, 0))
    recon = service.reconstruct(staff, borrower.id, recon_terms, PIN)

    assert recon.amount_cents == 120_000
    assert recon.remarks == "Recon"
    assert recon.status == LoanStatus.RECON
    assert recon.deadline == datetime(2025, 6, 10, 23, 59, 59)

    detail = service.get_client(borrower.id)
    assert detail.client.balance_cents == 120_000
    assert detail.client.status == LoanStatus.RECON
    assert detail.client.current_disbursement_id == recon.id
    assert len(service.list_disbursements(borrower.id)) == 2


def test_recon_status_survives_payment_changes(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    recon_terms = LoanTerms(interest_cents=0, months_to_pay=2, issued_at=datetime(2025, 3, 5, 9, 0))
    service.reconstruct(staff, borrower.id, recon_terms, PIN)

    payment = service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    assert _status(service, borrower.id) == LoanStatus.PAID

    service.edit_payment(staff, payment.id, 500_000, PIN)
    assert _status(service, borrower.id) == LoanStatus.RECON

    service.delete_payment(staff, payment.id, PIN)
    assert _status(service, borrower.id) == LoanStatus.RECON
    assert _balance(service, borrower.id) == 1_000_000


def test_payment_before_recon_can_still_be_corrected(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    early = service.pay(staff, borrower.id, 100_000, PAY_DAY, PIN)
    recon_terms = LoanTerms(interest_cents=0, months_to_pay=2, issued_at=datetime(2025, 3, 10, 9, 0))
    service.reconstruct(staff, borrower.id, recon_terms, PIN)

    service.delete_payment(staff, early.id, PIN)

    assert _balance(service, borrower.id) == 1_000_000


def test_payment_of_closed_loan_cannot_change(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    old = service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    second = LoanTerms(amount_cents=1_000_000, interest_cents=0, months_to_pay=1, issued_at=datetime(2025, 3, 10, 9, 0))
    service.disburse(staff, borrower.id, second, PIN)

    with pytest.raises(PreconditionFailed, match="closed loan"):
        service.delete_payment(staff, old.id, PIN)
    assert _balance(service, borrower.id) == 1_000_000


def test_update_terms_recomputes_deadline(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    updated = service.update_terms(staff, disbursement.id, TermsUpdate(months_to_pay=4, interest_cents=90_000), PIN)

    assert updated.deadline == datetime(2025, 7, 1, 23, 59, 59)
    assert updated.interest_cents == 90_000
    assert _balance(service, borrower.id) == 1_000_000


def test_update_terms_amount_adjusts_balance(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)
    service.pay(staff, borrower.id, 200_000, PAY_DAY, PIN)

    service.update_terms(staff, disbursement.id, TermsUpdate(amount_cents=1_200_000), PIN)
    assert _balance(service, borrower.id) == 1_000_000

    with pytest.raises(PreconditionFailed):
        service.update_terms(staff, disbursement.id, TermsUpdate(amount_cents=100_000), PIN)


def test_shortening_deadline_into_the_past_marks_overdue(service, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)

    service.update_terms(staff, disbursement.id, TermsUpdate(deadline=datetime(2025, 3, 5, 23, 59, 59)), PIN)

    assert _status(service, borrower.id) == LoanStatus.OVERDUE


def test_update_profile_keeps_ledger_fields(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)

    updated = service.update_profile(borrower.id, nickname="Mare", is_private=True, client_pin="5555")

    assert updated.nickname == "Mare"
    assert updated.is_private is True
    assert updated.balance_cents == 1_000_000
    assert updated.status == LoanStatus.ONGOING


def test_list_clients_filters(service, staff, borrower, release_terms):
    other = service.create_client("Pedro Lim")
    service.disburse(staff, borrower.id, release_terms, PIN)

    assert [c.id for c in service.list_clients(status=LoanStatus.ONGOING)] == [borrower.id]
    assert [c.id for c in service.list_clients(search="pedro")] == [other.id]
    assert len(service.list_clients()) == 2


def test_daily_list_by_day(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    service.pay(staff, borrower.id, 1_000, datetime(2025, 3, 9, 16, 0), PIN)
    today = service.pay(staff, borrower.id, 2_000, PAY_DAY, PIN)

    payments = service.list_payments(PaymentQuery(day=PAY_DAY.date()))

    assert [p.id for p in payments] == [today.id]


def test_business_rules_are_checked_before_the_pin(service, staff, borrower, release_terms, gate):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 10_000, PAY_DAY, PIN)

    with pytest.raises(PreconditionFailed, match="Balance must be zero"):
        service.disburse(staff, borrower.id, release_terms, "9999")
    with pytest.raises(PreconditionFailed, match="exceeds balance"):
        service.pay(staff, borrower.id, 2_000_000, PAY_DAY, "9999")
    with pytest.raises(PreconditionFailed):
        service.edit_payment(staff, payment.id, 5_000_000, "9999")
    with pytest.raises(PreconditionFailed):
        service.update_terms(staff, disbursement.id, TermsUpdate(amount_cents=1_000), "9999")
    with pytest.raises(RecordNotFound):
        service.delete_payment(staff, "missing", "9999")

    assert gate._attempts == {}
    # The staff member is not locked out by rejected requests
    service.pay(staff, borrower.id, 100, PAY_DAY, PIN)


def test_reconstruct_with_zero_balance_skips_the_pin(service, staff, borrower, release_terms, gate):
    with pytest.raises(PreconditionFailed):
        service.reconstruct(staff, borrower.id, release_terms, "9999")
    assert gate._attempts == {}


def test_backdated_release_does_not_reopen_old_payments(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    old = service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    backdated = LoanTerms(amount_cents=50_000, interest_cents=0, months_to_pay=1, issued_at=datetime(2025, 2, 20, 9, 0))
    current = service.disburse(staff, borrower.id, backdated, PIN)

    with pytest.raises(PreconditionFailed, match="closed loan"):
        service.delete_payment(staff, old.id, PIN)
    with pytest.raises(PreconditionFailed, match="closed loan"):
        service.edit_payment(staff, old.id, 0, PIN)

    assert _balance(service, borrower.id) == current.amount_cents - _payments_total(service, current.id)


def test_recon_chain_ends_at_its_release(service, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    closed = service.pay(staff, borrower.id, 1_000_000, PAY_DAY, PIN)
    release = service.disburse(staff, borrower.id, LoanTerms(
        amount_cents=100_000,
        interest_cents=0,
        months_to_pay=1,
        issued_at=datetime(2025, 2, 25, 9, 0),
    ), PIN)
    early = service.pay(staff, borrower.id, 30_000, PAY_DAY, PIN)
    service.reconstruct(staff, borrower.id, LoanTerms(
        interest_cents=0,
        months_to_pay=2,
        issued_at=datetime(2025, 3, 10, 9, 0),
    ), PIN)

    service.delete_payment(staff, early.id, PIN)
    assert _balance(service, borrower.id) == release.amount_cents
    with pytest.raises(PreconditionFailed, match="closed loan"):
        service.delete_payment(staff, closed.id, PIN)


class _RacingRunner(TransactionRunner):
    """Runs ``competitor`` after our first read so our first commit conflicts"""

    def __init__(self, session_factory, client_id, competitor):
        super().__init__(session_factory, backoff_base=0)
        self.client_id = client_id
        self.competitor = competitor
        self.attempts = 0

    def run(self, fn):
        def interleaved(uow):
            self.attempts += 1
            uow.clients.get(self.client_id)
            if self.attempts == 1:
                self.competitor()
            return fn(uow)

        return super().run(interleaved)


def test_concurrent_pays_cannot_overdraw(session_factory, service, gate, sweeper, clock, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    runner = _RacingRunner(
        session_factory,
        borrower.id,
        lambda: service.pay(staff, borrower.id, 700_000, PAY_DAY, PIN),
    )
    racing = LedgerService(runner, gate, sweeper, clock=clock)

    with pytest.raises(PreconditionFailed, match="exceeds balance"):
        racing.pay(staff, borrower.id, 400_000, PAY_DAY, PIN)

    assert runner.attempts == 2
    payments = service.list_payments(PaymentQuery(client_id=borrower.id))
    assert [p.amount_cents for p in payments] == [700_000]
    assert _balance(service, borrower.id) == 300_000


def test_concurrent_deletes_restore_the_amount_once(session_factory, service, gate, sweeper, clock, staff, borrower, release_terms):
    service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 250_000, PAY_DAY, PIN)
    runner = _RacingRunner(
        session_factory,
        borrower.id,
        lambda: service.delete_payment(staff, payment.id, PIN),
    )
    racing = LedgerService(runner, gate, sweeper, clock=clock)

    with pytest.raises(RecordNotFound):
        racing.delete_payment(staff, payment.id, PIN)

    assert _balance(service, borrower.id) == 1_000_000


def test_concurrent_edit_and_pay_keep_balance_consistent(session_factory, service, gate, sweeper, clock, staff, borrower, release_terms):
    disbursement = service.disburse(staff, borrower.id, release_terms, PIN)
    payment = service.pay(staff, borrower.id, 100_000, PAY_DAY, PIN)
    runner = _RacingRunner(
        session_factory,
        borrower.id,
        lambda: service.pay(staff, borrower.id, 200_000, PAY_DAY, PIN),
    )
    racing = LedgerService(runner, gate, sweeper, clock=clock)

    racing.edit_payment(staff, payment.id, 150_000, PIN)

    assert runner.attempts == 2
    expected = disbursement.amount_cents - _payments_total(service, disbursement.id)
    assert _balance(service, borrower.id) == expected == 650_000
