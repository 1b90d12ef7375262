"""Pytest fixtures for testing"""

import os

# Point the default engine at SQLite before the app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from datetime import datetime
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from lending_ledger.api.main import create_app
from lending_ledger.domain.models import Client, LoanTerms, StaffSession
from lending_ledger.infrastructure.database.models import Base, UserRecord
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService
from lending_ledger.services.sweeper import OverdueSweeper


NOW = datetime(2025, 3, 10, 12, 0, 0)
STAFF_ID = "staff-1"
STAFF_PIN = "1234"


class FrozenClock:
    """Callable clock whose time tests can move"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Fresh SQLite database per test"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    db = factory()
    db.add(UserRecord(id=STAFF_ID, name="Ana Cruz", pin=STAFF_PIN))
    db.commit()
    db.close()

    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def transactions(session_factory: sessionmaker) -> TransactionRunner:
    return TransactionRunner(session_factory, backoff_base=0)


@pytest.fixture
def gate(transactions: TransactionRunner, monotonic: FakeMonotonic) -> CredentialGate:
    return CredentialGate(transactions, max_attempts=3, lockout_seconds=60, clock=monotonic)


@pytest.fixture
def sweeper(transactions: TransactionRunner, clock: FrozenClock, monotonic: FakeMonotonic) -> OverdueSweeper:
    return OverdueSweeper(transactions, clock=clock, cooldown_seconds=5, monotonic=monotonic)


@pytest.fixture
def service(
    transactions: TransactionRunner,
    gate: CredentialGate,
    sweeper: OverdueSweeper,
    clock: FrozenClock,
) -> LedgerService:
    return LedgerService(transactions, gate, sweeper, clock=clock)


@pytest.fixture
def staff() -> StaffSession:
    return StaffSession(user_id=STAFF_ID, user_name="Ana Cruz")


@pytest.fixture
def borrower(service: LedgerService) -> Client:
    return service.create_client("Maria Santos", nickname="Maring")


@pytest.fixture
def release_terms() -> LoanTerms:
    """10,000.00 loan issued on March 1st, due in two months"""
    return LoanTerms(
        amount_cents=1_000_000,
        interest_cents=150_000,
        months_to_pay=2,
        issued_at=datetime(2025, 3, 1, 9, 0, 0),
    )


@pytest.fixture
def client(session_factory: sessionmaker, clock: FrozenClock) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(session_factory=session_factory, clock=clock)
    return TestClient(app)
