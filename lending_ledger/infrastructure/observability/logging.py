"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from lending_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_ledger_operation(
    operation: str,
    client_id: str,
    actor_id: str,
    outcome: str,
    balance_cents: int | None = None,
    duration_ms: float | None = None,
) -> None:
    """Log structured outcome of a balance-affecting operation"""
    logging.getLogger("lending_ledger.ledger").info(
        "Ledger operation completed" if outcome == "ok" else "Ledger operation rejected",
        extra={
            "step": operation,
            "client_id": client_id,
            "actor_id": actor_id,
            "outcome": outcome,
            "balance_cents": balance_cents,
            "duration_ms": duration_ms,
        },
    )


def log_status_transition(client_id: str, from_status: str, to_status: str, trigger: str) -> None:
    logging.getLogger("lending_ledger.status").info(
        "Client status changed",
        extra={
            "client_id": client_id,
            "from_status": from_status,
            "to_status": to_status,
            "trigger": trigger,
        },
    )


def log_pin_failure(subject: str, subject_id: str, failures: int, locked: bool) -> None:
    logging.getLogger("lending_ledger.credentials").warning(
        "PIN verification failed",
        extra={
            "subject": subject,
            "subject_id": subject_id,
            "consecutive_failures": failures,
            "locked": locked,
        },
    )
