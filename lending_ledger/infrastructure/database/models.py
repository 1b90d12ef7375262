"""SQLAlchemy ORM models for the ledger collections.

Column names follow the stored document shapes (``ClientName``, ``Balance``,
``DateToday``...) while attributes use Python names. Every row carries a
``version`` counter used for optimistic concurrency: a flush against a row
that changed since it was read raises ``StaleDataError``.
"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Integer, ForeignKey, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


class ClientRecord(Base):
    """Borrower with running balance"""

    __tablename__ = "Clients"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column("ClientName", Text, nullable=False)
    nickname = Column("Nickname", Text, nullable=False, default="")
    balance_cents = Column("Balance", BigInteger, nullable=False, default=0)
    status = Column("Status", String(16), nullable=False, default="NoData", index=True)
    is_private = Column("isPrivate", Boolean, nullable=False, default=False)
    client_pin = Column("ClientPIN", Text, nullable=True)
    current_disbursement_id = Column("CurrentDisbursementID", String(32), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class DisbursementRecord(Base):
    """Loan issuance"""

    __tablename__ = "Disbursement"

    id = Column(String(32), primary_key=True, default=new_id)
    client_id = Column("clientId", String(32), ForeignKey("Clients.id"), nullable=False, index=True)
    amount_cents = Column("Amount", BigInteger, nullable=False)
    interest_cents = Column("Interest", BigInteger, nullable=False, default=0)
    months_to_pay = Column("MonthsToPay", Integer, nullable=False)
    issued_at = Column("DateToday", DateTime, nullable=False)
    deadline = Column("Deadline", DateTime, nullable=False)
    remarks = Column("Remarks", Text, nullable=False, default="Release")
    status = Column("Status", String(16), nullable=False, default="OnGoing")
    penalty_cents = Column("Penalty", BigInteger, nullable=True)
    # Set on reconstructions: the disbursement whose balance was carried forward
    previous_disbursement_id = Column("PreviousDisbursementID", String(32), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class DailyPaymentRecord(Base):
    """Payment recorded against a disbursement"""

    __tablename__ = "DailyList"

    id = Column(String(32), primary_key=True, default=new_id)
    client_id = Column("clientId", String(32), ForeignKey("Clients.id"), nullable=False, index=True)
    disbursement_id = Column(
        "DisbursementID", String(32), ForeignKey("Disbursement.id"), nullable=False, index=True
    )
    amount_cents = Column("Amount", BigInteger, nullable=False)
    paid_at = Column("DateToday", DateTime, nullable=False, index=True)
    recorded_by = Column("UserID", String(64), nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class UserRecord(Base):
    """Staff member allowed to confirm ledger changes"""

    __tablename__ = "Users"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(Text, nullable=False)
    pin = Column("PIN", Text, nullable=False)
