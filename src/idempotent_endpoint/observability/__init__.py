"""Observability utilities for the idempotent endpoint.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for decisions, transitions and backend health
- Structured logging with contextual information
"""

from idempotent_endpoint.observability.logging import (
    configure_logging,
    get_logger,
    request_context,
)
from idempotent_endpoint.observability.metrics import (
    record_backend_error,
    record_cleanup,
    record_decision,
    record_handler_duration,
    record_response,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "request_context",
    "record_decision",
    "record_backend_error",
    "record_handler_duration",
    "record_response",
    "record_cleanup",
]
