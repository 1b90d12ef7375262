"""Prometheus metrics for ledger operations, status changes and PIN checks"""

from prometheus_client import Counter, Histogram

# Ledger operation metrics
ledger_operation_counter = Counter(
    "ledger_operations_total",
    "Ledger operations attempted",
    ["operation", "outcome"],  # outcome: ok | validation | precondition | auth | store
)

ledger_operation_duration_histogram = Histogram(
    "ledger_operation_duration_seconds",
    "Ledger operation latency including retries",
    ["operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

status_transition_counter = Counter(
    "ledger_status_transitions_total",
    "Client status changes written by the ledger",
    ["from_status", "to_status"],
)

transaction_retry_counter = Counter(
    "ledger_transaction_retries_total",
    "Transactions retried after a concurrent write conflict",
)

# Credential gate
pin_verification_counter = Counter(
    "pin_verifications_total",
    "PIN verification attempts",
    ["subject", "outcome"],  # subject: user | client; outcome: accepted | rejected | locked
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_operation(operation: str, outcome: str) -> None:
    ledger_operation_counter.labels(operation=operation, outcome=outcome).inc()


def record_status_transition(from_status: str, to_status: str) -> None:
    status_transition_counter.labels(from_status=from_status, to_status=to_status).inc()
