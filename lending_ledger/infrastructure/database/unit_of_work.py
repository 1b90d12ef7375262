"""Atomic read-then-write transactions with optimistic retry"""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from lending_ledger.config import settings
from lending_ledger.domain.exceptions import StoreUnavailable
from lending_ledger.infrastructure.database.repositories import (
    ClientRepository,
    DisbursementRepository,
    PaymentRepository,
    UserRepository,
)
from lending_ledger.infrastructure.observability.metrics import transaction_retry_counter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    """Repositories bound to one database session"""

    def __init__(self, db: Session):
        self.db = db
        self.clients = ClientRepository(db)
        self.disbursements = DisbursementRepository(db)
        self.payments = PaymentRepository(db)
        self.users = UserRepository(db)


class TransactionRunner:
    """
    Run a function as one atomic transaction.

    Retry strategy:
    - The whole function is re-run from a fresh session when another writer
      changed a row it read (version mismatch on flush)
    - Exponential backoff: base, 2*base, 4*base...
    - Domain errors roll back and propagate unchanged
    - Infrastructure failures surface as StoreUnavailable
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.session_factory = session_factory
        self.max_retries = max_retries or settings.transaction_max_retries
        self.backoff_base = settings.transaction_backoff_base if backoff_base is None else backoff_base

    def run(self, fn: Callable[[UnitOfWork], T]) -> T:
        attempt = 0
        while True:
            db = self.session_factory()
            try:
                result = fn(UnitOfWork(db))
                db.commit()
                return result

            except StaleDataError as e:
                db.rollback()
                attempt += 1
                transaction_retry_counter.inc()

                if attempt >= self.max_retries:
                    raise StoreUnavailable("Transaction kept conflicting with concurrent writes") from e

                logger.info("Write conflict, retrying transaction", extra={"attempt": attempt})
                time.sleep(self.backoff_base * (2 ** (attempt - 1)))

            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Store failure: {e}")
                raise StoreUnavailable("Ledger store is unavailable") from e

            except Exception:
                db.rollback()
                raise

            finally:
                db.close()

    def read(self, fn: Callable[[UnitOfWork], T]) -> T:
        """Run a read-only query in its own session"""
        db = self.session_factory()
        try:
            return fn(UnitOfWork(db))
        except SQLAlchemyError as e:
            logger.error(f"Store failure: {e}")
            raise StoreUnavailable("Ledger store is unavailable") from e
        finally:
            db.close()
