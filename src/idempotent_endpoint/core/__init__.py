"""Core logic for the idempotent endpoint.

This package contains:
- Coordinator: the per-key state machine (IN_PROGRESS -> COMPLETED/FAILED)
- Handler: runs business logic only when the coordinator grants a claim
- Replay: response construction for executed and replayed outcomes
- Cleanup: expiry sweep for backends without native TTL

The core logic is framework-agnostic; adapters wrap it for web frameworks.
"""

from idempotent_endpoint.core.coordinator import IdempotencyCoordinator
from idempotent_endpoint.core.handler import IdempotentHandler, Request
from idempotent_endpoint.core.replay import EndpointResponse, replay_response

__all__ = [
    "IdempotencyCoordinator",
    "IdempotentHandler",
    "Request",
    "EndpointResponse",
    "replay_response",
]
