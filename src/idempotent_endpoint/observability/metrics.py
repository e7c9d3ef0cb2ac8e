"""Prometheus metrics for the idempotent endpoint.

Metrics include:

- Admit decisions by kind (proceed, replay, replay_error, in_flight, conflict)
- Terminal transitions and stale writes
- Reclaimed abandoned claims
- Backend errors by operation
- Handler execution time
- Responses by outcome and status code
- Expiry sweep tracking

Examples:
    Recording a decision::

        from idempotent_endpoint.observability.metrics import record_decision

        record_decision("REPLAY")

    Recording handler execution time::

        from idempotent_endpoint.observability.metrics import record_handler_duration

        record_handler_duration(0.150)
"""

from prometheus_client import Counter, Histogram

# Labels: decision (PROCEED, REPLAY, REPLAY_ERROR, IN_FLIGHT, CONFLICT)
decisions_total = Counter(
    "idempotency_decisions_total",
    "Total number of admit decisions by kind",
    ["decision"],
)

# Labels: status (COMPLETED, FAILED)
transitions_total = Counter(
    "idempotency_transitions_total",
    "Total number of IN_PROGRESS records moved to a terminal status",
    ["status"],
)

stale_writes_total = Counter(
    "idempotency_stale_writes_total",
    "Total number of completions rejected because the claim was reclaimed",
)

reclaims_total = Counter(
    "idempotency_reclaims_total",
    "Total number of abandoned IN_PROGRESS claims reclaimed",
)

# Labels: operation (get_item, put_item_if_absent, ...)
backend_errors_total = Counter(
    "idempotency_backend_errors_total",
    "Total number of backend calls that failed",
    ["operation"],
)

# Only tracks new executions, not replays
handler_duration_seconds = Histogram(
    "idempotency_handler_duration_seconds",
    "Business logic execution time in seconds (new executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

# Labels: outcome (executed, replay, replay_error, in_flight, conflict, ...), status_code
responses_total = Counter(
    "idempotency_responses_total",
    "Total number of responses returned by the endpoint",
    ["outcome", "status_code"],
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of expiry sweeps performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by sweeps",
)


def record_decision(decision: str) -> None:
    """Record an admit decision.

    Examples:
        >>> record_decision("PROCEED")
    """
    decisions_total.labels(decision=decision).inc()


def record_transition(status: str) -> None:
    transitions_total.labels(status=status).inc()


def record_stale_write() -> None:
    stale_writes_total.inc()


def record_reclaim() -> None:
    reclaims_total.inc()


def record_backend_error(operation: str | None) -> None:
    backend_errors_total.labels(operation=operation or "unknown").inc()


def record_handler_duration(seconds: float) -> None:
    """Record business logic execution time.

    This should only be called for new executions, not replays.
    """
    handler_duration_seconds.observe(seconds)


def record_response(outcome: str, status_code: int) -> None:
    """Record a response returned to a client.

    Examples:
        >>> record_response("replay", 200)
        >>> record_response("conflict", 409)
    """
    responses_total.labels(outcome=outcome, status_code=str(status_code)).inc()


def record_cleanup(records_removed: int) -> None:
    """Record an expiry sweep.

    Examples:
        >>> record_cleanup(42)
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
