"""FastAPI application factory"""

from datetime import datetime
from typing import Callable

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from lending_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from lending_ledger.api.v1 import clients, credentials, disbursements, payments, sweeps
from lending_ledger.infrastructure.database.unit_of_work import TransactionRunner
from lending_ledger.infrastructure.observability.logging import setup_logging
from lending_ledger.services.credentials import CredentialGate
from lending_ledger.services.ledger_service import LedgerService
from lending_ledger.services.sweeper import OverdueSweeper
from lending_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app(
    session_factory: sessionmaker | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    """Create and configure FastAPI application"""
    if session_factory is None:
        from lending_ledger.infrastructure.database.session import get_session_factory

        session_factory = get_session_factory()

    app = FastAPI(
        title="Lending Ledger",
        description="Client balances, disbursements and daily payments",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Services live for the whole process: PIN lockouts and sweep cooldowns are in-memory
    transactions = TransactionRunner(session_factory)
    gate = CredentialGate(transactions)
    sweeper = OverdueSweeper(transactions, clock=clock)
    app.state.credential_gate = gate
    app.state.sweeper = sweeper
    app.state.ledger_service = LedgerService(transactions, gate, sweeper, clock=clock)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(clients.router, prefix="/v1", tags=["clients"])
    app.include_router(disbursements.router, prefix="/v1", tags=["disbursements"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(credentials.router, prefix="/v1", tags=["credentials"])
    app.include_router(sweeps.router, prefix="/v1", tags=["sweeps"])

    return app


app = create_app()
