"""
Idempotency-key store and coordinator for a single POST endpoint.

This package guarantees that, for each idempotency key, the business logic
runs at most once per fingerprint within the record's lifetime. Duplicates
receive the recorded outcome, concurrent duplicates are told to retry, and
key reuse with a different payload is rejected as a conflict.
"""

__version__ = "0.1.0"

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.core.coordinator import IdempotencyCoordinator
from idempotent_endpoint.core.handler import IdempotentHandler, Request
from idempotent_endpoint.expiry import ExpiryPolicy
from idempotent_endpoint.models import (
    Decision,
    DecisionKind,
    ErrorInfo,
    IdempotencyRecord,
    RecordStatus,
)

__all__ = [
    "__version__",
    "IdempotencyConfig",
    "IdempotencyCoordinator",
    "IdempotentHandler",
    "Request",
    "ExpiryPolicy",
    "Decision",
    "DecisionKind",
    "ErrorInfo",
    "IdempotencyRecord",
    "RecordStatus",
]
