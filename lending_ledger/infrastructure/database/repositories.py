"""Data access layer for ledger collections"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from sqlalchemy import extract
from sqlalchemy.orm import Session
from lending_ledger.infrastructure.database.models import (
    ClientRecord,
    DisbursementRecord,
    DailyPaymentRecord,
    UserRecord,
)
from lending_ledger.domain.exceptions import RecordNotFound
from lending_ledger.domain.models import (
    Client,
    Disbursement,
    DailyPayment,
    DisbursementQuery,
    LoanStatus,
    PaymentQuery,
)
from lending_ledger.utils.date_utils import start_of_day


def client_to_domain(record: ClientRecord) -> Client:
    return Client(
        id=record.id,
        name=record.name,
        nickname=record.nickname,
        balance_cents=record.balance_cents,
        status=LoanStatus.parse(record.status),
        is_private=record.is_private,
        current_disbursement_id=record.current_disbursement_id,
    )


def disbursement_to_domain(record: DisbursementRecord) -> Disbursement:
    return Disbursement(
        id=record.id,
        client_id=record.client_id,
        amount_cents=record.amount_cents,
        interest_cents=record.interest_cents,
        months_to_pay=record.months_to_pay,
        issued_at=record.issued_at,
        deadline=record.deadline,
        status=LoanStatus.parse(record.status),
        remarks=record.remarks,
        penalty_cents=record.penalty_cents,
    )


def payment_to_domain(record: DailyPaymentRecord) -> DailyPayment:
    return DailyPayment(
        id=record.id,
        client_id=record.client_id,
        disbursement_id=record.disbursement_id,
        amount_cents=record.amount_cents,
        paid_at=record.paid_at,
        recorded_by=record.recorded_by,
    )


class ClientRepository:
    """Repository for clients"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, client_id: str) -> ClientRecord:
        record = self.db.get(ClientRecord, client_id)
        if record is None:
            raise RecordNotFound(f"Client {client_id} not found")
        return record

    def add(self, record: ClientRecord) -> ClientRecord:
        self.db.add(record)
        self.db.flush()  # Get ID without committing
        return record

    def list(self, status: Optional[LoanStatus] = None, search: Optional[str] = None) -> List[ClientRecord]:
        query = self.db.query(ClientRecord)
        if status is not None:
            query = query.filter(ClientRecord.status == status.value)
        if search:
            pattern = f"%{search}%"
            query = query.filter(ClientRecord.name.ilike(pattern) | ClientRecord.nickname.ilike(pattern))
        return query.order_by(ClientRecord.name).all()

    def list_with_current_disbursement(self) -> List[ClientRecord]:
        return (
            self.db.query(ClientRecord)
            .filter(ClientRecord.current_disbursement_id.isnot(None))
            .all()
        )


class DisbursementRepository:
    """Repository for disbursements"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, disbursement_id: str) -> DisbursementRecord:
        record = self.db.get(DisbursementRecord, disbursement_id)
        if record is None:
            raise RecordNotFound(f"Disbursement {disbursement_id} not found")
        return record

    def get_current(self, client: ClientRecord) -> Optional[DisbursementRecord]:
        if client.current_disbursement_id is None:
            return None
        return self.get(client.current_disbursement_id)

    def add(self, record: DisbursementRecord) -> DisbursementRecord:
        self.db.add(record)
        self.db.flush()
        return record

    def list_by_client(self, client_id: str) -> List[DisbursementRecord]:
        """Fetch a client's disbursements, newest first"""
        return (
            self.db.query(DisbursementRecord)
            .filter(DisbursementRecord.client_id == client_id)
            .order_by(DisbursementRecord.issued_at.desc())
            .all()
        )

    def search(self, criteria: DisbursementQuery) -> List[Tuple[DisbursementRecord, str]]:
        """Disbursements of all clients with the client name, newest first"""
        query = self.db.query(DisbursementRecord, ClientRecord.name).join(
            ClientRecord, ClientRecord.id == DisbursementRecord.client_id
        )
        if criteria.year is not None:
            query = query.filter(extract("year", DisbursementRecord.issued_at) == criteria.year)
        if criteria.month is not None:
            query = query.filter(extract("month", DisbursementRecord.issued_at) == criteria.month)
        if criteria.day is not None:
            start: datetime = start_of_day(criteria.day)
            query = query.filter(
                DisbursementRecord.issued_at >= start,
                DisbursementRecord.issued_at < start + timedelta(days=1),
            )
        rows = query.order_by(DisbursementRecord.issued_at.desc()).limit(criteria.limit).all()
        return [(record, name) for record, name in rows]


class PaymentRepository:
    """Repository for daily payments"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_id: str) -> DailyPaymentRecord:
        record = self.db.get(DailyPaymentRecord, payment_id)
        if record is None:
            raise RecordNotFound(f"Payment {payment_id} not found")
        return record

    def add(self, record: DailyPaymentRecord) -> DailyPaymentRecord:
        self.db.add(record)
        self.db.flush()
        return record

    def delete(self, record: DailyPaymentRecord) -> None:
        self.db.delete(record)

    def search(self, criteria: PaymentQuery) -> List[DailyPaymentRecord]:
        """Fetch payments matching the filters, newest first"""
        query = self.db.query(DailyPaymentRecord)
        if criteria.client_id is not None:
            query = query.filter(DailyPaymentRecord.client_id == criteria.client_id)
        if criteria.disbursement_id is not None:
            query = query.filter(DailyPaymentRecord.disbursement_id == criteria.disbursement_id)
        if criteria.day is not None:
            start: datetime = start_of_day(criteria.day)
            query = query.filter(
                DailyPaymentRecord.paid_at >= start,
                DailyPaymentRecord.paid_at < start + timedelta(days=1),
            )
        return query.order_by(DailyPaymentRecord.paid_at.desc()).limit(criteria.limit).all()


class UserRepository:
    """Repository for staff users"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> UserRecord:
        record = self.db.get(UserRecord, user_id)
        if record is None:
            raise RecordNotFound(f"User {user_id} not found")
        return record
